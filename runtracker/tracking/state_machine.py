"""
活动状态机

状态：idle -> tracking <-> paused -> completed（终态）
- start()  idle -> tracking：创建新的 ActivityRecord，记录开始时间
- pause()  tracking -> paused：结算时长后冻结计时
- resume() paused -> tracking：从当前时刻重新计时
- stop()   tracking/paused -> completed：记录结束时间，计算最终平均值，之后不再接收传感器数据

非法调用抛出 InvalidStateTransition，且没有任何副作用。
只有 tracking 状态下才接收读数/GPS，其余状态返回 IngestResult.NOT_TRACKING。

所有公开操作都在同一把可重入锁内执行，保证累计值相对并发读取（实时展示）是原子更新的；
状态变化通知在释放锁之后发出，监听器异常只记录日志，不影响追踪。
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from ..config import TrackingSettings
from ..core.analytics.fusion import SensorFusion
from ..core.analytics.geo import haversine_meters
from ..core.analytics.pace import average_pace_seconds_per_km, format_pace, pace_from_speed, round_half_away
from ..core.analytics.power import PowerEstimator
from ..core.analytics.time_utils import format_duration, utc_now
from ..core.errors import InvalidInput, InvalidStateTransition
from .aggregator import MetricsAggregator
from .models import (
    ActivityRecord,
    ActivityStatus,
    AggregateSummary,
    GpsFix,
    IngestResult,
    LiveMetrics,
    RoutePoint,
    SensorReading,
    SensorSource,
    StateChange,
    TrackerState,
)

logger = logging.getLogger(__name__)

Listener = Callable[[StateChange], None]


class ActivityStateMachine:
    def __init__(
        self,
        settings: Optional[TrackingSettings] = None,
        estimator: Optional[PowerEstimator] = None,
        fusion: Optional[SensorFusion] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or TrackingSettings()
        self.estimator = estimator or PowerEstimator()
        self.fusion = fusion or SensorFusion(tolerance=self.settings.fusion_tolerance)
        self._clock = clock or utc_now
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

        self._state = TrackerState.IDLE
        self._record: Optional[ActivityRecord] = None
        self._aggregator: Optional[MetricsAggregator] = None
        self._readings: List[SensorReading] = []
        self._pending: List[SensorReading] = []

        # 计时：累计的运动秒数（含小数部分）与当前计时区间的起点
        self._active_seconds = 0.0
        self._clock_mark: Optional[datetime] = None

        self._last_fix: Optional[GpsFix] = None
        self._elevation_ref: Optional[float] = None
        # 低通滤波后的海拔与速度，首个有效值作为初值
        self._smoothed_altitude: Optional[float] = None
        self._current_speed: Optional[float] = None
        self._last_power_meter_at: Optional[datetime] = None

        self.gps_jumps = 0
        self.rejected_inputs = 0

    # ---- 只读属性 ----

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def activity_id(self) -> Optional[str]:
        return self._record.id if self._record else None

    @property
    def is_active(self) -> bool:
        return self._state in (TrackerState.TRACKING, TrackerState.PAUSED)

    @property
    def readings(self) -> List[SensorReading]:
        with self._lock:
            return list(self._readings)

    def record_snapshot(self) -> Optional[ActivityRecord]:
        """返回当前记录的深拷贝（供持久化使用，与后续实时更新互不影响）。"""
        with self._lock:
            if self._record is None:
                return None
            return self._record.model_copy(deep=True)

    # ---- 观察者 ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册状态变化监听器，返回取消订阅函数。"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: StateChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("[state-listener] listener failed on %s -> %s", change.previous.value, change.current.value)

    def _transition(self, target: TrackerState, now: datetime) -> StateChange:
        change = StateChange(previous=self._state, current=target, activity_id=self.activity_id, at=now)
        self._state = target
        logger.info("[tracker-%s] activity_id=%s from=%s", target.value, change.activity_id, change.previous.value)
        return change

    def _require(self, operation: str, *allowed: TrackerState) -> None:
        if self._state not in allowed:
            raise InvalidStateTransition(operation, self._state.value)

    # ---- 计时 ----

    def _accrue(self, now: datetime) -> None:
        if self._clock_mark is None:
            return
        elapsed = (now - self._clock_mark).total_seconds()
        if elapsed > 0:
            self._active_seconds += elapsed
            self._clock_mark = now
        self._aggregator.set_duration(int(self._active_seconds))

    def _live_duration(self, now: datetime) -> int:
        seconds = self._active_seconds
        if self._clock_mark is not None:
            seconds += max(0.0, (now - self._clock_mark).total_seconds())
        return max(int(seconds), self._record.duration_seconds if self._record else 0)

    def tick(self, now: Optional[datetime] = None) -> int:
        """周期性聚合节拍：tracking 状态下结算时长，返回当前时长（整秒）。"""
        with self._lock:
            if self._state == TrackerState.TRACKING:
                self._accrue(now or self._clock())
            return self._record.duration_seconds if self._record else 0

    # ---- 生命周期 ----

    def start(self) -> ActivityRecord:
        with self._lock:
            self._require('start', TrackerState.IDLE)
            now = self._clock()
            self._record = ActivityRecord(start_time=now)
            self._aggregator = MetricsAggregator(self._record, self.settings)
            self._clock_mark = now
            change = self._transition(TrackerState.TRACKING, now)
            record = self._record.model_copy(deep=True)
        self._notify(change)
        return record

    def pause(self) -> ActivityRecord:
        with self._lock:
            self._require('pause', TrackerState.TRACKING)
            now = self._clock()
            self._accrue(now)
            self._clock_mark = None
            self._record.status = ActivityStatus.PAUSED
            change = self._transition(TrackerState.PAUSED, now)
            record = self._record.model_copy(deep=True)
        self._notify(change)
        return record

    def resume(self) -> ActivityRecord:
        with self._lock:
            self._require('resume', TrackerState.PAUSED)
            now = self._clock()
            self._clock_mark = now
            self._record.status = ActivityStatus.IN_PROGRESS
            change = self._transition(TrackerState.TRACKING, now)
            record = self._record.model_copy(deep=True)
        self._notify(change)
        return record

    def stop(self) -> ActivityRecord:
        with self._lock:
            self._require('stop', TrackerState.TRACKING, TrackerState.PAUSED)
            now = self._clock()
            if self._state == TrackerState.TRACKING:
                self._accrue(now)
            self._clock_mark = None
            self._record.end_time = now
            summary = self._aggregator.finalize_averages()
            self._record.status = ActivityStatus.COMPLETED
            change = self._transition(TrackerState.COMPLETED, now)
            logger.info(
                "[tracker-summary] activity_id=%s readings=%s hr_samples=%s power_samples=%s cadence_samples=%s "
                "duration=%ss distance=%.1fm avg_hr=%s avg_power=%s avg_cadence=%s pace=%s gps_jumps=%s rejected=%s",
                self._record.id, len(self._readings), summary.heart_rate_samples, summary.power_samples,
                summary.cadence_samples, self._record.duration_seconds, self._record.distance_meters,
                summary.average_heart_rate, summary.average_power, summary.average_cadence,
                summary.average_pace_seconds_per_km, self.gps_jumps, self.rejected_inputs,
            )
            record = self._record.model_copy(deep=True)
        self._notify(change)
        return record

    def finalize_averages(self) -> AggregateSummary:
        with self._lock:
            if self._aggregator is None:
                raise InvalidStateTransition('finalize averages', self._state.value)
            return self._aggregator.finalize_averages()

    # ---- 数据接收 ----

    def _accept(self, reading: SensorReading) -> None:
        self._aggregator.ingest_reading(reading)
        self._readings.append(reading)
        self._pending.append(reading)

    def _reject(self, kind: str, error: Exception) -> IngestResult:
        self.rejected_inputs += 1
        logger.warning("[ingest-invalid] activity_id=%s kind=%s err=%s", self.activity_id, kind, error)
        return IngestResult.INVALID

    def ingest_reading(self, reading: Union[SensorReading, Dict[str, Any]]) -> IngestResult:
        with self._lock:
            if self._state != TrackerState.TRACKING:
                logger.debug("[ingest-skip] state=%s kind=reading", self._state.value)
                return IngestResult.NOT_TRACKING
            if not isinstance(reading, SensorReading):
                try:
                    reading = SensorReading.parse(reading)
                except InvalidInput as e:
                    return self._reject('reading', e)
            self._accept(reading)
            if reading.source == SensorSource.POWER_METER and reading.power is not None:
                self._last_power_meter_at = reading.timestamp
            return IngestResult.ACCEPTED

    def ingest_gps_delta(self, distance_delta_meters: float, altitude_delta_meters: float = 0.0) -> IngestResult:
        with self._lock:
            if self._state != TrackerState.TRACKING:
                return IngestResult.NOT_TRACKING
            try:
                self._aggregator.ingest_gps_delta(distance_delta_meters, altitude_delta_meters)
            except InvalidInput as e:
                return self._reject('gps-delta', e)
            return IngestResult.ACCEPTED

    def ingest_gps_fix(self, fix: Union[GpsFix, Dict[str, Any]]) -> IngestResult:
        """
        处理一次 GPS 定位：
        1. 与上一定位点的球面距离作为距离增量，超过 max_gps_jump_meters 视为漂移不计入
        2. 海拔与速度先做一阶低通滤波（系数 gps_smoothing_alpha），
           平滑后的海拔相对参考海拔变化超过噪声阈值才计入爬升/下降（参考海拔随之移动）
        3. 追加轨迹点与一条 gps 读数
        4. 功率计静默时，用平滑后的速度与海拔变化估算 + 融合功率补一条读数
        """
        with self._lock:
            if self._state != TrackerState.TRACKING:
                return IngestResult.NOT_TRACKING
            if not isinstance(fix, GpsFix):
                try:
                    fix = GpsFix.model_validate(fix)
                except ValidationError as e:
                    return self._reject('gps-fix', e)

            prev = self._last_fix
            distance_delta = 0.0
            if prev is not None:
                distance_delta = haversine_meters(prev.latitude, prev.longitude, fix.latitude, fix.longitude)
                if distance_delta > self.settings.max_gps_jump_meters:
                    self.gps_jumps += 1
                    logger.warning("[gps-jump] activity_id=%s distance=%.1fm count=%s",
                                   self.activity_id, distance_delta, self.gps_jumps)
                    distance_delta = 0.0

            altitude_delta = 0.0
            climb = 0.0
            if fix.altitude is not None:
                previous_altitude = self._smoothed_altitude
                self._smoothed_altitude = self._smooth(previous_altitude, fix.altitude)
                if previous_altitude is not None:
                    climb = self._smoothed_altitude - previous_altitude
                if self._elevation_ref is None:
                    self._elevation_ref = self._smoothed_altitude
                else:
                    change = self._smoothed_altitude - self._elevation_ref
                    if abs(change) > self.settings.elevation_noise_meters:
                        altitude_delta = change
                        self._elevation_ref = self._smoothed_altitude

            self._aggregator.ingest_gps_delta(distance_delta, altitude_delta)
            self._aggregator.add_route_point(
                RoutePoint(latitude=fix.latitude, longitude=fix.longitude, altitude=fix.altitude, timestamp=fix.timestamp)
            )
            self._accept(SensorReading.from_gps(fix.timestamp, fix.latitude, fix.longitude, fix.altitude))

            elapsed = (fix.timestamp - prev.timestamp).total_seconds() if prev is not None else 0.0
            speed = fix.speed_mps
            if speed is None and elapsed > 0:
                speed = distance_delta / elapsed
            if speed is not None:
                self._current_speed = self._smooth(self._current_speed, speed)

            if prev is not None and elapsed > 0 and speed is not None:
                self._fill_power(self._current_speed, climb, elapsed, fix.timestamp)

            self._last_fix = fix
            return IngestResult.ACCEPTED

    def _smooth(self, previous: Optional[float], value: float) -> float:
        if previous is None:
            return value
        alpha = self.settings.gps_smoothing_alpha
        return alpha * value + (1.0 - alpha) * previous

    def _fill_power(self, speed: float, elevation_change: float, elapsed: float, timestamp: datetime) -> None:
        if self._last_power_meter_at is not None:
            silence = (timestamp - self._last_power_meter_at).total_seconds()
            if silence <= self.settings.power_meter_timeout_seconds:
                return
        try:
            basic = self.estimator.estimate(speed, elevation_change, elapsed)
        except InvalidInput as e:
            logger.warning("[power-fill] activity_id=%s skipped: %s", self.activity_id, e)
            return

        heart_rate = self._aggregator.latest('heart_rate')
        cadence = self._aggregator.latest('cadence')
        watts = round_half_away(self.fusion.fuse(basic, heart_rate, cadence))
        if watts <= 0:
            return
        source = SensorSource.FUSED if (heart_rate or cadence) else SensorSource.ESTIMATED
        self._accept(SensorReading(timestamp=timestamp, power=watts, source=source))

    def drain_pending_readings(self) -> List[SensorReading]:
        """取出尚未持久化的读数（批量写库用）。"""
        with self._lock:
            pending, self._pending = self._pending, []
            return pending

    def requeue_readings(self, readings: List[SensorReading]) -> None:
        """写库失败时把读数放回待写队列头部，保证不丢数据。"""
        if not readings:
            return
        with self._lock:
            self._pending = list(readings) + self._pending

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ---- 实时快照 ----

    def snapshot(self, now: Optional[datetime] = None) -> LiveMetrics:
        """读取实时指标，不修改任何状态。"""
        with self._lock:
            if self._record is None:
                return LiveMetrics(state=self._state)
            record = self._record
            summary = self._aggregator.compute_summary()
            duration = record.duration_seconds
            if self._state == TrackerState.TRACKING:
                duration = self._live_duration(now or self._clock())
            average_pace = average_pace_seconds_per_km(
                duration, record.distance_meters,
                lower=self.settings.pace_min_seconds_per_km,
                upper=self.settings.pace_max_seconds_per_km,
            )
            current_pace = pace_from_speed(self._current_speed) if self._state == TrackerState.TRACKING else None
            calories = None
            if summary.average_power is not None:
                # 平均功率 × 运动时长折算能量消耗
                calories = round(self.estimator.calories_per_hour(summary.average_power) * duration / 3600.0, 1)
            return LiveMetrics(
                state=self._state,
                activity_id=record.id,
                duration_seconds=duration,
                duration_display=format_duration(duration),
                distance_meters=record.distance_meters,
                current_pace=current_pace,
                current_pace_display=format_pace(current_pace),
                average_pace=average_pace,
                average_pace_display=format_pace(average_pace),
                heart_rate=self._aggregator.latest('heart_rate'),
                average_heart_rate=summary.average_heart_rate,
                max_heart_rate=summary.max_heart_rate,
                power=self._aggregator.latest('power'),
                average_power=summary.average_power,
                max_power=summary.max_power,
                cadence=self._aggregator.latest('cadence'),
                average_cadence=summary.average_cadence,
                max_cadence=summary.max_cadence,
                elevation_gain_meters=record.elevation_gain_meters,
                elevation_loss_meters=record.elevation_loss_meters,
                calories_kcal=calories,
            )
