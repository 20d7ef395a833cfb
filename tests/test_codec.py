import json
from datetime import datetime, timezone

from runtracker.tracking.codec import (
    decode_route_points,
    decode_route_points_with_errors,
    encode_route_points,
    reading_to_row,
    record_to_row,
    row_to_reading,
    row_to_record,
)
from runtracker.tracking.models import ActivityRecord, ActivityStatus, RoutePoint, SensorReading, SensorSource

T0 = datetime(2024, 5, 1, 7, 30, 0, 250000, tzinfo=timezone.utc)


def _points():
    return [
        RoutePoint(latitude=31.2304, longitude=121.4737, altitude=4.5, timestamp=T0),
        RoutePoint(latitude=-33.8688, longitude=151.2093),
        RoutePoint(latitude=0.0, longitude=-0.000001, altitude=-12.25),
    ]


def test_route_points_round_trip():
    points = _points()
    payload = encode_route_points(points)
    document = json.loads(payload)
    assert document["version"] == 1
    assert document["points"][0] == {"lat": 31.2304, "lng": 121.4737, "alt": 4.5, "t": 1714548600250}
    assert decode_route_points(payload) == points


def test_corrupt_points_are_skipped():
    payload = json.dumps({
        "version": 1,
        "points": [
            {"lat": 31.0, "lng": 121.0},
            {"lat": "north"},
            5,
            {"lat": 95.0, "lng": 0.0},
            {"lat": 30.0, "lng": 120.0, "t": "yesterday"},
            {"lat": 30.5, "lng": 120.5, "alt": 8.0},
        ],
    })
    points, errors = decode_route_points_with_errors(payload)
    assert [p.latitude for p in points] == [31.0, 30.5]
    assert len(errors) == 4


def test_out_of_range_timestamp_skips_only_that_point():
    payload = json.dumps({
        "version": 1,
        "points": [
            {"lat": 31.0, "lng": 121.0, "t": 1000000000000000},
            {"lat": 30.0, "lng": 120.0, "t": -10 ** 18},
            {"lat": 30.5, "lng": 120.5, "t": 1714548600000},
        ],
    })
    points, errors = decode_route_points_with_errors(payload)
    assert [p.latitude for p in points] == [30.5]
    assert points[0].timestamp == datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)
    assert len(errors) == 2
    assert decode_route_points(payload)[0].longitude == 120.5


def test_undecodable_payload_yields_empty_list():
    assert decode_route_points("not json {") == []
    assert decode_route_points(json.dumps({"version": 2, "points": []})) == []
    assert decode_route_points(json.dumps({"version": 1})) == []
    assert decode_route_points(None) == []
    assert decode_route_points("") == []


def test_bare_point_list_is_accepted():
    payload = json.dumps([{"lat": 1.5, "lng": 2.5}])
    assert decode_route_points(payload) == [RoutePoint(latitude=1.5, longitude=2.5)]


def test_record_row_round_trip():
    record = ActivityRecord(
        start_time=T0,
        end_time=datetime(2024, 5, 1, 8, 0, 0, 999999, tzinfo=timezone.utc),
        duration_seconds=1500,
        distance_meters=5000.123456789,
        elevation_gain_meters=12.5,
        elevation_loss_meters=11.75,
        average_heart_rate=145,
        max_heart_rate=171,
        average_power=240,
        max_power=402,
        average_cadence=176,
        max_cadence=190,
        average_pace_seconds_per_km=300,
        route_points=_points(),
        status=ActivityStatus.COMPLETED,
        notes="easy run",
    )
    row = record_to_row(record)
    assert row["status"] == "completed"
    assert row["start_time"] == 1714548600250
    assert row_to_record(row) == record


def test_in_progress_record_keeps_none_fields():
    record = ActivityRecord(start_time=T0)
    restored = row_to_record(record_to_row(record))
    assert restored.end_time is None
    assert restored.average_heart_rate is None
    assert restored.status == ActivityStatus.IN_PROGRESS
    assert restored.name == "Run on 2024-05-01 07:30"


def test_reading_row_round_trip():
    reading = SensorReading(timestamp=T0, latitude=31.2, longitude=121.5, elevation_meters=3.5,
                            source=SensorSource.GPS)
    row = reading_to_row("abc", reading)
    assert row["activity_id"] == "abc"
    assert row["source"] == "gps"
    assert row_to_reading(row) == reading
