"""Centralized user-facing text for banksync."""

from __future__ import annotations


class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "banksync – keep an event cache in step with built audio banks."
    HELP_SOURCE_PATH = "Directory containing built banks (defaults to the configured source)."
    HELP_SYNC_FORCE = "Re-read every bank even when the build marker is unchanged."
    HELP_WATCH_TICK = "Seconds between coordinator ticks."
    HELP_LIST_KIND = "What to list: banks, events or parameters."
    HELP_CLEAR_ALL = "Remove every cached source, not just the selected one."
    HELP_VERBOSE = "Enable debug logging."
    HELP_SET_SOURCE = "Persist the bank source directory."
    HELP_CLEAR_SOURCE = "Remove the stored bank source directory."
    HELP_SET_COOLDOWN = "Set the refresh cooldown: seconds, 'prompt' or 'manual'."
    HELP_SET_POLL = "Set the backstop poll interval in seconds."
    HELP_SET_RETRIES = "Set the retry budget for unstable builds."
    HELP_SET_PLATFORMS = "Set the per-platform build folders (repeatable)."
    HELP_SET_PLATFORM = "Set the platform folder scanned for content."
    HELP_SET_TIMEOUT = "Set the rebuild timeout in seconds (0 disables)."
    HELP_SET_EXCLUDE = "Set gitignore-style patterns excluded from scanning (repeatable)."
    HELP_SHOW_CONFIG = "Show current configuration."
    HELP_SHOW_CACHE_ALL = "List every cached bank source."

    ERROR_SOURCE_MISSING = (
        "No bank source directory configured. "
        "Set one via `banksync config --set-source <dir>` or pass --path."
    )
    ERROR_SOURCE_INVALID = "Bank source directory does not exist: {path}"
    ERROR_COOLDOWN_INVALID = (
        "Invalid cooldown '{value}'. Use a non-negative number of seconds, 'prompt' or 'manual'."
    )
    ERROR_NEGATIVE = "{field} must be >= 0"
    ERROR_CONFIG_JSON_INVALID = "Config payload must be a JSON object."
    ERROR_CONFIG_VALUE_INVALID = "Invalid value for config field '{field}'."
    ERROR_READER_UNKNOWN = "Unknown bank reader '{name}'. Available: {allowed}."
    ERROR_BANK_INVALID = "{path} is not a valid bank: {reason}"
    ERROR_BUILD_UNSTABLE = "The build marker {path} is still being written."
    ERROR_BUILD_UNSTABLE_PERSISTENT = (
        "The build marker {path} has been locked for {attempts} attempts; "
        "is the authoring tool still building?"
    )
    ERROR_BUILD_TIMEOUT = "Rebuilding the cache took longer than {seconds:g}s."
    ERROR_SCHEMA_MISMATCH = "Cached data uses schema {found}, expected {expected}."

    INFO_NO_BANKS = (
        "Directory {path} doesn't contain any banks.\n"
        "Build the banks in the authoring tool or check the configured path."
    )
    INFO_SYNC_RUNNING = "Refreshing bank cache for {path}..."
    INFO_SYNC_DONE = "Cache updated: {banks} banks, {events} events, {parameters} parameters."
    INFO_SYNC_UNCHANGED = "Cache already matches the latest build; nothing to do."
    INFO_CACHE_EMPTY = "No cached banks for {path}."
    INFO_CACHE_CLEARED = "Removed {count} cached entr{plural}."
    INFO_CACHE_CLEAR_NONE = "No cached data found."
    INFO_CACHE_ALL_EMPTY = "No cached bank sources."
    INFO_CACHE_ALL_HEADER = "Cached bank sources"
    INFO_STATUS_HEADER = "Bank cache for {path}"
    INFO_STATUS_SUMMARY = (
        "Schema: {schema}\n"
        "Last build: {built}\n"
        "Banks: {banks} ({masters} master)\n"
        "Events: {events}\n"
        "Global parameters: {parameters}"
    )
    INFO_STATUS_CURRENT = "Cache matches the latest build."
    INFO_STATUS_STALE = "Banks changed since the last refresh; run `banksync sync`."
    INFO_WATCH_STARTED = "Watching {path} (Ctrl+C to stop)."
    INFO_WATCH_STOPPED = "Stopped watching."
    INFO_WATCH_CHANGED = "The source banks changed {ago} ago."
    INFO_WATCH_COUNTDOWN = "Refreshing banks in {remaining}..."
    INFO_WATCH_PROMPT = "Banks changed; run `banksync sync` to refresh."
    INFO_CHECKPOINT_ADOPTED = "Picked up the bank cache refreshed elsewhere for {path}."
    INFO_WATCH_REFRESHED = "Banks refreshed."
    INFO_WATCH_FAILED = "Bank refresh failed: {reason}"
    INFO_SOURCE_SET = "Bank source set to {value}."
    INFO_SOURCE_CLEARED = "Bank source cleared."
    INFO_COOLDOWN_SET = "Refresh cooldown set to {value}."
    INFO_POLL_SET = "Poll interval set to {value}s."
    INFO_RETRIES_SET = "Stability retry budget set to {value}."
    INFO_PLATFORMS_SET = "Platform folders set to {value}."
    INFO_PLATFORM_SET = "Content platform set to {value}."
    INFO_TIMEOUT_SET = "Rebuild timeout set to {value}s."
    INFO_EXCLUDE_SET = "Exclude patterns set to {value}."
    INFO_CONFIG_SUMMARY = (
        "Source: {source}\n"
        "Cooldown: {cooldown}\n"
        "Poll interval: {poll}s\n"
        "Stability retries: {retries}\n"
        "Platforms: {platforms}\n"
        "Content platform: {platform}\n"
        "Exclude patterns: {exclude}\n"
        "Rebuild timeout: {timeout}s\n"
        "Reader: {reader}"
    )

    TABLE_BANKS_TITLE = "Banks"
    TABLE_EVENTS_TITLE = "Events"
    TABLE_PARAMETERS_TITLE = "Global parameters"
    TABLE_HEADER_INDEX = "#"
    TABLE_HEADER_NAME = "Name"
    TABLE_HEADER_ROLE = "Role"
    TABLE_HEADER_SIZE = "Size"
    TABLE_HEADER_PATH = "Path"
    TABLE_HEADER_GUID = "GUID"
    TABLE_HEADER_BANKS = "Banks"
    TABLE_HEADER_RANGE = "Range"
    TABLE_HEADER_DEFAULT = "Default"
    TABLE_HEADER_SOURCE = "Source"
    TABLE_HEADER_EVENTS = "Events"
    TABLE_HEADER_GENERATED = "Generated"
