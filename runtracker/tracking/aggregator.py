"""
实时指标聚合器

说明：
- 每条读数 O(1) 更新心率/功率/步频的累计和、计数与最大值，运动中不回扫历史
- 只有“有效值”（存在且严格为正）参与统计；0 或缺失不进入任何平均值
- 距离、爬升、下降、时长是只增不减的累加器
- finalize_averages 幂等：输入不变时多次调用结果完全一致，运动中（实时展示）与结束时（持久化）都可调用
- 取整规则：平均值与配速四舍五入，.5 远离零进位（见 core/analytics/pace.round_half_away）
"""

import logging
import math
from typing import Dict, Optional, Sequence

import numpy as np

from ..config import TrackingSettings
from ..core.analytics.pace import average_pace_seconds_per_km, round_half_away
from ..core.errors import InvalidInput, InvalidStateTransition
from .models import ActivityRecord, AggregateSummary, RoutePoint, SensorReading

logger = logging.getLogger(__name__)

SENSOR_FIELDS = ('heart_rate', 'power', 'cadence')


class RunningStat:
    """单个传感器的累计和 / 有效计数 / 最大值"""
    __slots__ = ('count', 'total', 'peak')

    def __init__(self, count: int = 0, total: int = 0, peak: Optional[int] = None):
        self.count = count
        self.total = total
        self.peak = peak

    def add(self, value: Optional[int]) -> bool:
        if value is None or value <= 0:
            return False
        self.count += 1
        self.total += int(value)
        if self.peak is None or value > self.peak:
            self.peak = int(value)
        return True

    def mean(self) -> Optional[int]:
        if self.count == 0:
            return None
        return round_half_away(self.total / self.count)

    def maximum(self) -> Optional[int]:
        return self.peak if self.count else None


class MetricsAggregator:
    def __init__(self, record: ActivityRecord, settings: Optional[TrackingSettings] = None):
        self.record = record
        self.settings = settings or TrackingSettings()
        self._stats: Dict[str, RunningStat] = {field: RunningStat() for field in SENSOR_FIELDS}
        self._latest: Dict[str, Optional[int]] = {field: None for field in SENSOR_FIELDS}

    def _ensure_open(self, operation: str) -> None:
        if self.record.is_completed:
            raise InvalidStateTransition(operation, self.record.status.value)

    def ingest_reading(self, reading: SensorReading) -> bool:
        """累加一条读数，返回是否有任何字段参与了统计。"""
        self._ensure_open('ingest reading')
        contributed = False
        for field in SENSOR_FIELDS:
            value = getattr(reading, field)
            if self._stats[field].add(value):
                self._latest[field] = int(value)
                contributed = True
        return contributed

    def ingest_gps_delta(self, distance_delta_meters: float, altitude_delta_meters: float = 0.0) -> None:
        """
        累加一次 GPS 增量。

        - 距离增量为负（噪声）时按 0 处理
        - 海拔增量为正计入爬升，为负按绝对值计入下降
        """
        self._ensure_open('ingest gps delta')
        for name, value in (('distance', distance_delta_meters), ('altitude', altitude_delta_meters)):
            if value is None or isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise InvalidInput(f"{name} delta must be a finite number, got {value!r}")

        if distance_delta_meters > 0:
            self.record.distance_meters += float(distance_delta_meters)
        if altitude_delta_meters > 0:
            self.record.elevation_gain_meters += float(altitude_delta_meters)
        elif altitude_delta_meters < 0:
            self.record.elevation_loss_meters += float(-altitude_delta_meters)

    def add_route_point(self, point: RoutePoint) -> None:
        self._ensure_open('add route point')
        self.record.route_points.append(point)

    def set_duration(self, seconds: int) -> None:
        # 时长只增不减
        if seconds > self.record.duration_seconds:
            self.record.duration_seconds = int(seconds)

    def latest(self, field: str) -> Optional[int]:
        return self._latest.get(field)

    def sample_count(self, field: str) -> int:
        return self._stats[field].count

    def compute_summary(self) -> AggregateSummary:
        """按当前累计值计算平均值与配速，不修改记录。"""
        hr, power, cadence = (self._stats[f] for f in SENSOR_FIELDS)
        pace = average_pace_seconds_per_km(
            self.record.duration_seconds,
            self.record.distance_meters,
            lower=self.settings.pace_min_seconds_per_km,
            upper=self.settings.pace_max_seconds_per_km,
        )
        return AggregateSummary(
            average_heart_rate=hr.mean(),
            max_heart_rate=hr.maximum(),
            average_power=power.mean(),
            max_power=power.maximum(),
            average_cadence=cadence.mean(),
            max_cadence=cadence.maximum(),
            average_pace_seconds_per_km=pace,
            heart_rate_samples=hr.count,
            power_samples=power.count,
            cadence_samples=cadence.count,
        )

    def finalize_averages(self) -> AggregateSummary:
        """计算平均值/最大值/平均配速并写回记录；没有有效读数的传感器保持 None。"""
        summary = self.compute_summary()
        record = self.record
        record.average_heart_rate = summary.average_heart_rate
        record.max_heart_rate = summary.max_heart_rate
        record.average_power = summary.average_power
        record.max_power = summary.max_power
        record.average_cadence = summary.average_cadence
        record.max_cadence = summary.max_cadence
        record.average_pace_seconds_per_km = summary.average_pace_seconds_per_km
        logger.debug(
            "[aggregate] activity_id=%s hr_samples=%s power_samples=%s cadence_samples=%s pace=%s",
            record.id, summary.heart_rate_samples, summary.power_samples,
            summary.cadence_samples, summary.average_pace_seconds_per_km,
        )
        return summary

    def recompute(self, readings: Sequence[SensorReading]) -> AggregateSummary:
        """
        基于完整读数历史重新计算传感器统计（显式重算，仅用于历史回看/修复）。

        距离、爬升、下降与时长不在此重算。
        """
        for field in SENSOR_FIELDS:
            values = np.fromiter(((getattr(r, field) or 0) for r in readings), dtype=np.int64, count=len(readings))
            valid = values[values > 0]
            if valid.size:
                self._stats[field] = RunningStat(int(valid.size), int(valid.sum()), int(valid.max()))
                self._latest[field] = int(valid[-1])
            else:
                self._stats[field] = RunningStat()
                self._latest[field] = None
        logger.info("[aggregate-recompute] activity_id=%s readings=%s", self.record.id, len(readings))
        return self.finalize_averages()
