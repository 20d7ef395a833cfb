"""
活动持久化仓库测试（内存 SQLite）
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from runtracker.activities.crud import ActivityRepository
from runtracker.core.errors import PersistenceFailure
from runtracker.tracking.models import ActivityRecord, ActivityStatus, RoutePoint, SensorReading, SensorSource

T0 = datetime(2024, 5, 1, 7, 30, 0, 125000, tzinfo=timezone.utc)


def _record(start=T0, **kwargs):
    return ActivityRecord(start_time=start, **kwargs)


def test_save_and_load(db_session):
    repo = ActivityRepository(db_session)
    record = _record(
        distance_meters=5000.5,
        duration_seconds=1500,
        average_heart_rate=145,
        route_points=[RoutePoint(latitude=31.2, longitude=121.5, altitude=3.0, timestamp=T0)],
    )
    repo.save(record)
    assert repo.load(record.id) == record
    assert repo.load("missing") is None


def test_save_is_upsert(db_session):
    repo = ActivityRepository(db_session)
    record = _record()
    repo.save(record)
    record.distance_meters = 1234.0
    record.status = ActivityStatus.COMPLETED
    record.end_time = T0 + timedelta(minutes=10)
    repo.save(record)
    loaded = repo.load(record.id)
    assert loaded.distance_meters == 1234.0
    assert loaded.status == ActivityStatus.COMPLETED
    assert len(repo.list_all()) == 1


def test_completed_record_is_not_downgraded(db_session):
    repo = ActivityRepository(db_session)
    record = _record()
    stale = record.model_copy(deep=True)
    record.status = ActivityStatus.COMPLETED
    record.end_time = T0 + timedelta(minutes=30)
    record.duration_seconds = 1800
    repo.save(record)

    stale.duration_seconds = 1795
    repo.save(stale)
    loaded = repo.load(record.id)
    assert loaded.status == ActivityStatus.COMPLETED
    assert loaded.end_time == record.end_time
    assert loaded.duration_seconds == 1800


def test_list_all_newest_first(db_session):
    repo = ActivityRepository(db_session)
    older = _record(start=T0)
    newer = _record(start=T0 + timedelta(days=1))
    repo.save(older)
    repo.save(newer)
    summaries = repo.list_all()
    assert [s.id for s in summaries] == [newer.id, older.id]
    assert summaries[0].start_time == newer.start_time
    assert repo.list_all(skip=1, limit=1)[0].id == older.id


def test_readings_are_returned_in_timestamp_order(db_session):
    repo = ActivityRepository(db_session)
    record = _record()
    repo.save(record)
    readings = [
        SensorReading.from_hrm(T0 + timedelta(seconds=2), 150),
        SensorReading.from_hrm(T0, 140),
        SensorReading.from_power_meter(T0 + timedelta(seconds=1), power=240, cadence=176),
    ]
    assert repo.save_readings(record.id, readings) == 3
    assert repo.save_readings(record.id, []) == 0
    loaded = repo.load_readings(record.id)
    assert [r.timestamp for r in loaded] == sorted(r.timestamp for r in readings)
    assert loaded[1].source == SensorSource.POWER_METER
    assert loaded[1].power == 240


def test_update_details(db_session):
    repo = ActivityRepository(db_session)
    record = _record()
    repo.save(record)
    updated = repo.update_details(record.id, name="Morning tempo", notes="windy")
    assert updated.name == "Morning tempo"
    assert updated.notes == "windy"
    assert repo.update_details("missing", name="x") is None


def test_delete_removes_readings(db_session):
    repo = ActivityRepository(db_session)
    record = _record()
    repo.save(record)
    repo.save_readings(record.id, [SensorReading.from_hrm(T0, 140)])
    assert repo.delete(record.id) is True
    assert repo.load(record.id) is None
    assert repo.load_readings(record.id) == []
    assert repo.delete(record.id) is False


def test_database_error_raises_persistence_failure(db_session, monkeypatch):
    repo = ActivityRepository(db_session)
    record = _record()

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session, "commit", broken_commit)
    with pytest.raises(PersistenceFailure) as exc_info:
        repo.save(record)
    assert exc_info.value.activity_id == record.id

    monkeypatch.undo()
    assert repo.load(record.id) is None
    repo.save(record)
    assert repo.load(record.id) == record
