from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from parkspeak.hearing_core import HearingResult, HearingTestState, Phase, Trial, create_initial_state
from parkspeak.persistence import SCHEMA_VERSION, SqliteHearingStore, open_db
from parkspeak.results import (
    HearingTestRecord,
    hearing_record_from_state,
    trials_from_json,
    trials_to_json,
)


def _record(srt_db: float = -6.5, *, ambient: float | None = 38.5) -> HearingTestRecord:
    trials = (
        Trial(digits=(1, 2, 3), snr_db=4.0, response=(1, 2, 3), correct=True),
        Trial(digits=(5, 0, 9), snr_db=0.0, response=(5, 9, 0), correct=False),
    )
    return HearingTestRecord(
        srt_db=srt_db,
        result=HearingResult.NORMAL,
        trials=trials,
        ambient_noise_db=ambient,
        language="en",
    )


def test_trials_json_uses_audit_shape() -> None:
    trials = (
        Trial(digits=(3, 1, 4), snr_db=-2.0, response=(3, 1, 4), correct=True),
        Trial(digits=(7, 2, 8), snr_db=-4.0),
    )
    payload = json.loads(trials_to_json(trials))
    assert payload == [
        {"digits": [3, 1, 4], "snrDb": -2.0, "response": [3, 1, 4], "correct": True},
        {"digits": [7, 2, 8], "snrDb": -4.0, "response": None, "correct": None},
    ]
    assert trials_from_json(trials_to_json(trials)) == trials


def test_trials_from_json_rejects_non_list() -> None:
    with pytest.raises(ValueError):
        trials_from_json('{"digits": [1, 2, 3]}')


def test_record_requires_complete_state() -> None:
    with pytest.raises(ValueError):
        hearing_record_from_state(create_initial_state(), ambient_noise_db=None, language="en")

    done = HearingTestState(phase=Phase.COMPLETE, srt_db=-3.0, result=HearingResult.BORDERLINE)
    record = hearing_record_from_state(done, ambient_noise_db=None, language="ru")
    assert record.srt_db == -3.0
    assert record.result is HearingResult.BORDERLINE
    assert record.ambient_noise_db is None
    assert record.language == "ru"


def test_open_db_migrates_schema(tmp_path: Path) -> None:
    db_path = tmp_path / "parkspeak.sqlite3"
    conn = open_db(db_path)
    try:
        version = conn.execute("PRAGMA user_version;").fetchone()[0]
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        conn.close()
    assert version == SCHEMA_VERSION
    assert "hearing_test" in tables

    # Re-opening is a no-op migration.
    open_db(db_path).close()


def test_save_and_read_back(tmp_path: Path) -> None:
    store = SqliteHearingStore(tmp_path / "nested" / "parkspeak.sqlite3")
    assert store.latest_result() is None

    record = _record()
    test_id = store.save_result(record)
    assert test_id

    latest = store.latest_result()
    assert latest is not None
    assert latest.id == test_id
    assert latest.srt_db == pytest.approx(-6.5)
    assert latest.result is HearingResult.NORMAL
    assert latest.ambient_noise_db == pytest.approx(38.5)
    assert latest.language == "en"
    assert latest.tested_at_utc.endswith("Z")
    assert latest.trials_json is not None
    assert trials_from_json(latest.trials_json) == record.trials


def test_history_is_newest_first_and_handles_missing_ambient(tmp_path: Path) -> None:
    store = SqliteHearingStore(tmp_path / "parkspeak.sqlite3")
    first = store.save_result(_record(-7.0))
    second = store.save_result(_record(-1.0, ambient=None))

    rows = store.history(limit=10)
    assert [r.id for r in rows] == [second, first]
    assert rows[0].ambient_noise_db is None
    assert store.history(limit=1)[0].id == second

    with pytest.raises(ValueError):
        store.history(limit=0)


def test_values_are_bound_not_interpolated(tmp_path: Path) -> None:
    store = SqliteHearingStore(tmp_path / "parkspeak.sqlite3")
    record = HearingTestRecord(
        srt_db=-3.0,
        result=HearingResult.BORDERLINE,
        trials=(),
        ambient_noise_db=None,
        language="en'); DROP TABLE hearing_test; --",
    )
    store.save_result(record)

    conn = sqlite3.connect(store.path)
    try:
        (count,) = conn.execute("SELECT COUNT(*) FROM hearing_test").fetchone()
    finally:
        conn.close()
    assert count == 1
    latest = store.latest_result()
    assert latest is not None
    assert latest.language == record.language
