import json

import pytest

from banksync.errors import BankOpenError
from banksync.providers.json_bank import JsonBankReader
from banksync.reader import get_reader
from banksync.records import ParameterType


def _bank(tmp_path, document, name="sfx.bank"):
    path = tmp_path / name
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def test_open_reads_events_and_parameters(tmp_path):
    path = _bank(
        tmp_path,
        {
            "guid": "{ABC-1}",
            "path": "bank:/SFX",
            "events": [
                {
                    "guid": "E1",
                    "path": "event:/Explosion",
                    "is_one_shot": True,
                    "max_distance": 25,
                    "parameters": [
                        {"name": "Size", "guid": "P1", "min": 0, "max": 3, "flags": ["discrete"]},
                        {"name": "Mode", "guid": "P2", "labels": ["a", "b"]},
                        {"name": "Speed", "guid": "P3", "flags": ["ReadOnly"]},
                    ],
                }
            ],
            "parameters": [{"name": "Weather", "guid": "G1"}],
        },
    )
    reader = JsonBankReader()

    handle = reader.open(path)
    event = reader.enumerate_events(handle)[0]

    assert reader.identity(handle) == "abc-1"
    assert reader.studio_path(handle) == "bank:/SFX"
    assert event.guid == "e1"
    assert event.is_one_shot is True
    assert event.max_distance == 25.0
    assert [p.type for p in event.parameters] == [
        ParameterType.DISCRETE,
        ParameterType.LABELED,
        ParameterType.CONTINUOUS,
    ]
    assert event.parameters[1].labels == ("a", "b")
    assert event.parameters[2].is_readonly is True
    assert [p.name for p in reader.enumerate_global_parameters()] == ["Weather"]
    assert reader.enumerate_global_parameters()[0].is_global is True


def test_global_parameters_track_open_banks(tmp_path):
    first = _bank(tmp_path, {"guid": "b1", "parameters": [{"name": "Weather", "guid": "g1"}]}, "a.bank")
    second = _bank(
        tmp_path,
        {"guid": "b2", "parameters": [{"name": "Weather", "guid": "g1"}, {"name": "Time", "guid": "g2"}]},
        "b.bank",
    )
    reader = JsonBankReader()
    handle_a = reader.open(first)
    handle_b = reader.open(second)

    assert [p.guid for p in reader.enumerate_global_parameters()] == ["g1", "g2"]

    reader.close(handle_b)
    assert [p.guid for p in reader.enumerate_global_parameters()] == ["g1"]
    reader.close(handle_a)
    reader.close(handle_a)
    assert reader.enumerate_global_parameters() == []


@pytest.mark.parametrize(
    "content, reason",
    [
        ("not json", "not a valid bank document"),
        ("[1, 2]", "not a valid bank document"),
        ('{"events": []}', "identity GUID"),
        ('{"guid": "b1", "events": {"x": 1}}', "malformed entry"),
        ('{"guid": "b1", "events": [{"path": "event:/A"}]}', "malformed entry"),
    ],
)
def test_open_rejects_bad_documents(tmp_path, content, reason):
    path = tmp_path / "bad.bank"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(BankOpenError) as excinfo:
        JsonBankReader().open(path)

    assert reason in str(excinfo.value)


def test_open_missing_file(tmp_path):
    with pytest.raises(BankOpenError):
        JsonBankReader().open(tmp_path / "missing.bank")


def test_get_reader_resolves_names():
    assert isinstance(get_reader(None), JsonBankReader)
    assert isinstance(get_reader(" JSON "), JsonBankReader)
    with pytest.raises(ValueError):
        get_reader("fmod")
