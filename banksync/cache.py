"""Persisted bank cache backed by SQLite."""

from __future__ import annotations

import hashlib
import json
import os
import sqlite3
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path

from .errors import SchemaError
from .records import (
    SCHEMA_VERSION,
    BankCache,
    BankRecord,
    BankRole,
    EventRecord,
    LoadOutcome,
    ParameterRecord,
    ParameterType,
)

DEFAULT_CACHE_DIR = Path(os.path.expanduser("~")) / ".banksync"
CACHE_DIR = DEFAULT_CACHE_DIR
_CACHE_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "banksync_cache_dir_override",
    default=None,
)
DB_FILENAME = "cache.db"


def _source_key(source_dir: Path) -> str:
    base = str(Path(os.path.abspath(source_dir)))
    return hashlib.sha1(base.encode("utf-8")).hexdigest()


def _resolve_cache_dir() -> Path:
    override = _CACHE_DIR_OVERRIDE.get()
    return override if override is not None else CACHE_DIR


@contextmanager
def cache_dir_context(path: Path | str | None):
    """Temporarily override the cache directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CACHE_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CACHE_DIR_OVERRIDE.reset(token)


def ensure_cache_dir() -> Path:
    cache_dir = _resolve_cache_dir()
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def set_cache_dir(path: Path | str | None) -> None:
    global CACHE_DIR
    if path is None:
        CACHE_DIR = DEFAULT_CACHE_DIR
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    CACHE_DIR = dir_path


def cache_db_path() -> Path:
    """Return the absolute path to the shared SQLite cache database."""

    cache_dir = ensure_cache_dir()
    return cache_dir / DB_FILENAME


def _connect(db_path: Path, *, readonly: bool = False) -> sqlite3.Connection:
    if readonly:
        db_uri = f"file:{db_path.as_posix()}?mode=ro"
        conn = sqlite3.connect(db_uri, uri=True)
    else:
        conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.OperationalError as exc:
        if "readonly" not in str(exc).lower():
            raise
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    conn.execute("PRAGMA foreign_keys = ON;")
    if readonly:
        conn.execute("PRAGMA query_only = ON;")
    return conn


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS cache_metadata (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_key TEXT NOT NULL UNIQUE,
            source_dir TEXT NOT NULL,
            schema_version INTEGER NOT NULL,
            marker_time INTEGER NOT NULL,
            generated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS bank (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cache_id INTEGER NOT NULL REFERENCES cache_metadata(id) ON DELETE CASCADE,
            path TEXT NOT NULL,
            sub_dir TEXT NOT NULL DEFAULT '',
            last_modified INTEGER NOT NULL,
            role TEXT NOT NULL,
            platform_sizes TEXT NOT NULL DEFAULT '{}',
            load_ok INTEGER NOT NULL DEFAULT 1,
            load_reason TEXT,
            studio_path TEXT,
            global_parameters TEXT NOT NULL DEFAULT '[]',
            UNIQUE(cache_id, path)
        );

        CREATE TABLE IF NOT EXISTS event (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            cache_id INTEGER NOT NULL REFERENCES cache_metadata(id) ON DELETE CASCADE,
            guid TEXT NOT NULL,
            path TEXT NOT NULL,
            is_3d INTEGER NOT NULL,
            is_one_shot INTEGER NOT NULL,
            is_stream INTEGER NOT NULL,
            length INTEGER NOT NULL,
            min_distance REAL NOT NULL,
            max_distance REAL NOT NULL,
            UNIQUE(cache_id, path)
        );

        CREATE TABLE IF NOT EXISTS event_bank (
            event_id INTEGER NOT NULL REFERENCES event(id) ON DELETE CASCADE,
            bank_path TEXT NOT NULL,
            PRIMARY KEY(event_id, bank_path)
        );

        CREATE TABLE IF NOT EXISTS event_parameter (
            event_id INTEGER NOT NULL REFERENCES event(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            name TEXT NOT NULL,
            guid TEXT,
            minimum REAL NOT NULL,
            maximum REAL NOT NULL,
            default_value REAL NOT NULL,
            type TEXT NOT NULL,
            labels TEXT NOT NULL DEFAULT '[]',
            is_global INTEGER NOT NULL,
            studio_path TEXT NOT NULL DEFAULT '',
            PRIMARY KEY(event_id, position)
        );

        CREATE TABLE IF NOT EXISTS global_parameter (
            cache_id INTEGER NOT NULL REFERENCES cache_metadata(id) ON DELETE CASCADE,
            guid TEXT NOT NULL,
            name TEXT NOT NULL,
            minimum REAL NOT NULL,
            maximum REAL NOT NULL,
            default_value REAL NOT NULL,
            type TEXT NOT NULL,
            labels TEXT NOT NULL DEFAULT '[]',
            studio_path TEXT NOT NULL DEFAULT '',
            PRIMARY KEY(cache_id, guid)
        );

        CREATE INDEX IF NOT EXISTS idx_bank_lookup ON bank(cache_id, path);
        CREATE INDEX IF NOT EXISTS idx_event_lookup ON event(cache_id, path);
        """
    )


def store_cache(source_dir: Path, cache: BankCache) -> Path:
    """Replace the persisted cache for *source_dir* with *cache*."""

    db_path = cache_db_path()
    conn = _connect(db_path)
    try:
        _ensure_schema(conn)
        key = _source_key(source_dir)
        generated_at = datetime.now(timezone.utc).isoformat()
        with conn:
            conn.execute("BEGIN IMMEDIATE;")
            conn.execute("DELETE FROM cache_metadata WHERE source_key = ?", (key,))
            cursor = conn.execute(
                """
                INSERT INTO cache_metadata (
                    source_key,
                    source_dir,
                    schema_version,
                    marker_time,
                    generated_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    key,
                    str(source_dir),
                    cache.schema_version,
                    cache.last_build_marker_time,
                    generated_at,
                ),
            )
            cache_id = cursor.lastrowid

            conn.executemany(
                """
                INSERT INTO bank (
                    cache_id,
                    path,
                    sub_dir,
                    last_modified,
                    role,
                    platform_sizes,
                    load_ok,
                    load_reason,
                    studio_path,
                    global_parameters
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        cache_id,
                        bank.path,
                        bank.sub_dir,
                        bank.last_modified,
                        bank.role.value,
                        json.dumps(bank.platform_sizes, sort_keys=True),
                        1 if bank.load_outcome.ok else 0,
                        bank.load_outcome.reason,
                        bank.studio_path,
                        json.dumps(sorted(bank.global_parameter_guids)),
                    )
                    for bank in cache.banks.values()
                ],
            )

            for event in cache.events.values():
                cursor = conn.execute(
                    """
                    INSERT INTO event (
                        cache_id,
                        guid,
                        path,
                        is_3d,
                        is_one_shot,
                        is_stream,
                        length,
                        min_distance,
                        max_distance
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        cache_id,
                        event.guid,
                        event.path,
                        int(event.is_3d),
                        int(event.is_one_shot),
                        int(event.is_stream),
                        event.length,
                        event.min_distance,
                        event.max_distance,
                    ),
                )
                event_id = cursor.lastrowid
                conn.executemany(
                    "INSERT INTO event_bank (event_id, bank_path) VALUES (?, ?)",
                    ((event_id, bank_path) for bank_path in sorted(event.banks)),
                )
                conn.executemany(
                    """
                    INSERT INTO event_parameter (
                        event_id,
                        position,
                        name,
                        guid,
                        minimum,
                        maximum,
                        default_value,
                        type,
                        labels,
                        is_global,
                        studio_path
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        (
                            event_id,
                            position,
                            param.name,
                            param.guid,
                            param.minimum,
                            param.maximum,
                            param.default,
                            param.type.value,
                            json.dumps(list(param.labels)),
                            int(param.is_global),
                            param.studio_path,
                        )
                        for position, param in enumerate(event.parameters)
                    ),
                )

            conn.executemany(
                """
                INSERT INTO global_parameter (
                    cache_id,
                    guid,
                    name,
                    minimum,
                    maximum,
                    default_value,
                    type,
                    labels,
                    studio_path
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        cache_id,
                        guid,
                        param.name,
                        param.minimum,
                        param.maximum,
                        param.default,
                        param.type.value,
                        json.dumps(list(param.labels)),
                        param.studio_path,
                    )
                    for guid, param in cache.parameters.items()
                ],
            )
        return db_path
    finally:
        conn.close()


def load_cache(source_dir: Path) -> BankCache:
    """Load the persisted cache for *source_dir*.

    Raises ``FileNotFoundError`` when nothing is stored and
    :class:`SchemaError` when the stored schema differs from ours; stale
    data is never partially migrated.
    """

    db_path = cache_db_path()
    if not db_path.exists():
        raise FileNotFoundError(db_path)

    conn = _connect(db_path, readonly=True)
    try:
        if not _table_exists(conn, "cache_metadata"):
            raise FileNotFoundError(db_path)
        meta = conn.execute(
            """
            SELECT id, schema_version, marker_time
            FROM cache_metadata
            WHERE source_key = ?
            """,
            (_source_key(source_dir),),
        ).fetchone()
        if meta is None:
            raise FileNotFoundError(db_path)
        version = int(meta["schema_version"] or 0)
        if version != SCHEMA_VERSION:
            raise SchemaError(version, SCHEMA_VERSION)
        cache_id = meta["id"]

        cache = BankCache(
            schema_version=version,
            last_build_marker_time=int(meta["marker_time"]),
        )
        for row in conn.execute(
            "SELECT * FROM bank WHERE cache_id = ? ORDER BY path ASC",
            (cache_id,),
        ):
            cache.banks[row["path"]] = BankRecord(
                path=row["path"],
                sub_dir=row["sub_dir"],
                last_modified=int(row["last_modified"]),
                platform_sizes={
                    name: int(size)
                    for name, size in json.loads(row["platform_sizes"] or "{}").items()
                },
                role=BankRole(row["role"]),
                load_outcome=LoadOutcome(ok=bool(row["load_ok"]), reason=row["load_reason"]),
                studio_path=row["studio_path"],
                global_parameter_guids=set(json.loads(row["global_parameters"] or "[]")),
            )

        events_by_id: dict[int, EventRecord] = {}
        for row in conn.execute(
            "SELECT * FROM event WHERE cache_id = ? ORDER BY path ASC",
            (cache_id,),
        ):
            event = EventRecord(
                guid=row["guid"],
                path=row["path"],
                is_3d=bool(row["is_3d"]),
                is_one_shot=bool(row["is_one_shot"]),
                is_stream=bool(row["is_stream"]),
                length=int(row["length"]),
                min_distance=float(row["min_distance"]),
                max_distance=float(row["max_distance"]),
            )
            events_by_id[int(row["id"])] = event
            cache.events[event.path] = event

        for row in conn.execute(
            """
            SELECT eb.event_id, eb.bank_path
            FROM event_bank AS eb
            JOIN event AS e ON e.id = eb.event_id
            WHERE e.cache_id = ?
            """,
            (cache_id,),
        ):
            events_by_id[int(row["event_id"])].banks.add(row["bank_path"])

        for row in conn.execute(
            """
            SELECT p.*
            FROM event_parameter AS p
            JOIN event AS e ON e.id = p.event_id
            WHERE e.cache_id = ?
            ORDER BY p.event_id ASC, p.position ASC
            """,
            (cache_id,),
        ):
            events_by_id[int(row["event_id"])].parameters.append(
                ParameterRecord(
                    name=row["name"],
                    minimum=float(row["minimum"]),
                    maximum=float(row["maximum"]),
                    default=float(row["default_value"]),
                    guid=row["guid"],
                    type=ParameterType(row["type"]),
                    labels=tuple(json.loads(row["labels"] or "[]")),
                    is_global=bool(row["is_global"]),
                    studio_path=row["studio_path"],
                )
            )

        for row in conn.execute(
            "SELECT * FROM global_parameter WHERE cache_id = ? ORDER BY name ASC",
            (cache_id,),
        ):
            cache.parameters[row["guid"]] = ParameterRecord(
                name=row["name"],
                minimum=float(row["minimum"]),
                maximum=float(row["maximum"]),
                default=float(row["default_value"]),
                guid=row["guid"],
                type=ParameterType(row["type"]),
                labels=tuple(json.loads(row["labels"] or "[]")),
                is_global=True,
                studio_path=row["studio_path"],
            )

        cache.recompute_roles()
        cache.reindex()
        return cache
    finally:
        conn.close()


def clear_cache(source_dir: Path) -> int:
    """Remove the persisted cache for *source_dir*."""
    db_path = cache_db_path()
    if not db_path.exists():
        return 0

    conn = _connect(db_path)
    try:
        _ensure_schema(conn)
        with conn:
            cursor = conn.execute(
                "DELETE FROM cache_metadata WHERE source_key = ?",
                (_source_key(source_dir),),
            )
        return cursor.rowcount
    finally:
        conn.close()


def list_cache_entries() -> list[dict[str, object]]:
    """Return metadata for every cached source currently stored."""

    db_path = cache_db_path()
    if not db_path.exists():
        return []

    try:
        conn = _connect(db_path, readonly=True)
    except sqlite3.OperationalError:
        return []
    try:
        if not _table_exists(conn, "cache_metadata"):
            return []
        rows = conn.execute(
            """
            SELECT
                source_dir,
                schema_version,
                marker_time,
                generated_at,
                (
                    SELECT COUNT(*)
                    FROM bank
                    WHERE cache_id = cache_metadata.id
                ) AS bank_count,
                (
                    SELECT COUNT(*)
                    FROM event
                    WHERE cache_id = cache_metadata.id
                ) AS event_count
            FROM cache_metadata
            ORDER BY generated_at DESC
            """
        ).fetchall()
        return [
            {
                "source_dir": row["source_dir"],
                "schema_version": row["schema_version"],
                "marker_time": row["marker_time"],
                "generated_at": row["generated_at"],
                "bank_count": int(row["bank_count"] or 0),
                "event_count": int(row["event_count"] or 0),
            }
            for row in rows
        ]
    finally:
        conn.close()


def clear_all_cache() -> int:
    """Remove the entire cache database, returning number of sources removed."""

    db_path = cache_db_path()
    if not db_path.exists():
        return 0

    conn = _connect(db_path)
    try:
        _ensure_schema(conn)
        count_row = conn.execute("SELECT COUNT(*) AS total FROM cache_metadata").fetchone()
        total = int(count_row["total"] if count_row is not None else 0)
    finally:
        conn.close()

    if db_path.exists():
        db_path.unlink()
    for suffix in ("-wal", "-shm"):
        sidecar = Path(f"{db_path}{suffix}")
        if sidecar.exists():
            sidecar.unlink()

    return total
