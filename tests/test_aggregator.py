"""
实时指标聚合器测试
覆盖有效读数过滤、取整规则、配速合理区间、累加器单调性与显式重算
"""

import math
from datetime import datetime, timedelta, timezone

import pytest

from runtracker.config import TrackingSettings
from runtracker.core.errors import InvalidInput, InvalidStateTransition
from runtracker.tracking.aggregator import MetricsAggregator
from runtracker.tracking.models import ActivityRecord, ActivityStatus, RoutePoint, SensorReading, SensorSource

T0 = datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)


def _hr(value, offset=0):
    return SensorReading(timestamp=T0 + timedelta(seconds=offset), heart_rate=value,
                         source=SensorSource.HEART_RATE_MONITOR)


def _aggregator():
    return MetricsAggregator(ActivityRecord(start_time=T0), TrackingSettings())


def test_average_and_max_heart_rate_skip_zero():
    agg = _aggregator()
    for i, hr in enumerate([140, 150, 0]):
        agg.ingest_reading(_hr(hr, i))
    summary = agg.finalize_averages()
    assert agg.record.average_heart_rate == 145
    assert agg.record.max_heart_rate == 150
    assert summary.heart_rate_samples == 2


def test_average_rounds_half_away_from_zero():
    agg = _aggregator()
    agg.ingest_reading(_hr(140))
    agg.ingest_reading(_hr(141, 1))
    agg.finalize_averages()
    assert agg.record.average_heart_rate == 141


def test_sensor_without_valid_readings_stays_none():
    agg = _aggregator()
    agg.ingest_reading(SensorReading(timestamp=T0, cadence=0, heart_rate=150, source=SensorSource.POWER_METER))
    agg.finalize_averages()
    assert agg.record.average_cadence is None
    assert agg.record.max_cadence is None
    assert agg.record.average_power is None
    assert agg.record.average_heart_rate == 150


def test_ingest_reading_reports_contribution():
    agg = _aggregator()
    assert agg.ingest_reading(_hr(0)) is False
    assert agg.ingest_reading(_hr(130)) is True
    assert agg.latest('heart_rate') == 130
    assert agg.sample_count('heart_rate') == 1


def test_pace_from_distance_and_duration():
    agg = _aggregator()
    agg.ingest_gps_delta(5000.0)
    agg.set_duration(1500)
    agg.finalize_averages()
    assert agg.record.average_pace_seconds_per_km == 300
    assert agg.record.pace_display == "05:00"


def test_pace_unset_or_reset_when_implausible():
    agg = _aggregator()
    agg.set_duration(1500)
    agg.finalize_averages()
    assert agg.record.average_pace_seconds_per_km is None

    agg.ingest_gps_delta(5000.0)
    agg.finalize_averages()
    assert agg.record.average_pace_seconds_per_km == 300

    # 只有 1km 却走了 30 分钟，超出合理区间后配速被清空
    agg2 = _aggregator()
    agg2.ingest_gps_delta(1000.0)
    agg2.set_duration(1800)
    agg2.finalize_averages()
    assert agg2.record.average_pace_seconds_per_km is None


def test_finalize_averages_is_idempotent():
    agg = _aggregator()
    for i, hr in enumerate([120, 133, 151]):
        agg.ingest_reading(_hr(hr, i))
    agg.ingest_gps_delta(1234.0, 5.0)
    agg.set_duration(400)
    first = agg.finalize_averages()
    snapshot = agg.record.model_copy(deep=True)
    second = agg.finalize_averages()
    assert first == second
    assert agg.record == snapshot


def test_gps_deltas_are_non_decreasing():
    agg = _aggregator()
    deltas = [(10.0, 2.0), (-3.0, -1.5), (0.0, 0.0), (7.5, -0.5), (4.0, 3.0)]
    previous = (0.0, 0.0, 0.0)
    for distance, altitude in deltas:
        agg.ingest_gps_delta(distance, altitude)
        current = (agg.record.distance_meters, agg.record.elevation_gain_meters, agg.record.elevation_loss_meters)
        assert all(c >= p for c, p in zip(current, previous))
        previous = current
    assert agg.record.distance_meters == pytest.approx(21.5)
    assert agg.record.elevation_gain_meters == pytest.approx(5.0)
    assert agg.record.elevation_loss_meters == pytest.approx(2.0)


@pytest.mark.parametrize("distance, altitude", [(math.nan, 0.0), (1.0, math.inf), (None, 0.0), ("5", 0.0)])
def test_gps_delta_rejects_non_finite(distance, altitude):
    agg = _aggregator()
    with pytest.raises(InvalidInput):
        agg.ingest_gps_delta(distance, altitude)
    assert agg.record.distance_meters == 0.0


def test_duration_never_decreases():
    agg = _aggregator()
    agg.set_duration(30)
    agg.set_duration(20)
    assert agg.record.duration_seconds == 30


def test_completed_record_rejects_input():
    record = ActivityRecord(start_time=T0, status=ActivityStatus.COMPLETED)
    agg = MetricsAggregator(record)
    with pytest.raises(InvalidStateTransition):
        agg.ingest_reading(_hr(140))
    with pytest.raises(InvalidStateTransition):
        agg.ingest_gps_delta(10.0)
    with pytest.raises(InvalidStateTransition):
        agg.add_route_point(RoutePoint(latitude=31.0, longitude=121.0))


def test_compute_summary_does_not_mutate_record():
    agg = _aggregator()
    agg.ingest_reading(_hr(150))
    summary = agg.compute_summary()
    assert summary.average_heart_rate == 150
    assert agg.record.average_heart_rate is None


def test_recompute_from_history():
    record = ActivityRecord(start_time=T0, status=ActivityStatus.COMPLETED, distance_meters=5000.0,
                            duration_seconds=1500, average_heart_rate=999)
    readings = [
        SensorReading(timestamp=T0, heart_rate=0, power=210, source=SensorSource.POWER_METER),
        SensorReading(timestamp=T0 + timedelta(seconds=1), heart_rate=150, power=None, cadence=170,
                      source=SensorSource.POWER_METER),
        SensorReading(timestamp=T0 + timedelta(seconds=2), heart_rate=161, power=231, cadence=0,
                      source=SensorSource.POWER_METER),
    ]
    summary = MetricsAggregator(record).recompute(readings)
    assert record.average_heart_rate == 156
    assert record.max_heart_rate == 161
    assert record.average_power == 221
    assert record.max_power == 231
    assert record.average_cadence == 170
    assert record.average_pace_seconds_per_km == 300
    assert summary.cadence_samples == 1


def test_recompute_without_readings_clears_sensor_stats():
    record = ActivityRecord(start_time=T0, average_power=250, max_power=400)
    MetricsAggregator(record).recompute([])
    assert record.average_power is None
    assert record.max_power is None
