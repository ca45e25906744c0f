from datetime import datetime, timedelta, timezone

from core.models import (
    MAX_RECENT_ERRORS,
    CollectorState,
    CollectorStatus,
    DataType,
    NormalizedRecord,
    OrchestratorState,
    PipelineStatus,
)


def test_recent_errors_keep_the_newest_ten():
    status = CollectorStatus(name="espn", update_interval_seconds=30)
    for i in range(15):
        status.record_error(f"error {i}")

    assert len(status.recent_errors) == MAX_RECENT_ERRORS
    assert [e.message for e in status.recent_errors] == [f"error {i}" for i in range(5, 15)]


def test_only_market_trends_are_append_only():
    assert DataType.MARKET_TREND.is_append_only
    assert not any(t.is_append_only for t in DataType if t is not DataType.MARKET_TREND)


def test_record_key_is_source_id_and_type():
    record = NormalizedRecord(
        source_id="espn_1", data_type=DataType.PLAYER_STATS, source="ESPN", payload={}
    )
    assert record.key == ("espn_1", DataType.PLAYER_STATS)


def test_seconds_since_update():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    status = CollectorStatus(name="espn", update_interval_seconds=30)
    assert status.seconds_since_update(now) is None

    status.last_update = now - timedelta(seconds=61)
    assert status.seconds_since_update(now) == 61


def test_pipeline_status_dump_carries_running_flag():
    status = PipelineStatus(
        state=OrchestratorState.RUNNING,
        collectors=[CollectorStatus(name="espn", update_interval_seconds=30, state=CollectorState.RUNNING)],
    )
    dumped = status.model_dump(mode="json")

    assert dumped["is_running"] is True
    assert dumped["collectors"][0]["state"] == "running"
    assert status.collector("espn").name == "espn"
    assert status.collector("missing") is None
