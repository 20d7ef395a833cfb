"""
本文件定义了实时追踪核心使用的数据模型。

包含：
1. 枚举：SensorSource（读数来源）、ActivityStatus（活动状态）、TrackerState（状态机状态）、IngestResult（读数接收结果）
2. SensorReading - 单条带时间戳的多传感器读数（不可变）
3. GpsFix / RoutePoint - GPS 定位输入与存储用的轨迹点
4. ActivityRecord - 一次跑步活动的记录（运动中持续更新，结束后只允许修改名称与备注）
5. AggregateSummary / LiveMetrics / StateChange - 聚合结果、实时快照与状态变化通知
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.analytics.pace import format_pace
from ..core.analytics.time_utils import truncate_to_ms, utc_now
from ..core.errors import InvalidInput


class SensorSource(str, Enum):
    """读数来源枚举"""
    GPS = "gps"
    HEART_RATE_MONITOR = "heart_rate_monitor"
    POWER_METER = "power_meter"
    FUSED = "fused"
    ESTIMATED = "estimated"


class ActivityStatus(str, Enum):
    """活动状态枚举（持久化使用固定字符串）"""
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"


class TrackerState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PAUSED = "paused"
    COMPLETED = "completed"


class IngestResult(str, Enum):
    ACCEPTED = "accepted"
    NOT_TRACKING = "not_tracking"
    INVALID = "invalid"


def _as_utc(value: datetime) -> datetime:
    # 时间戳以毫秒精度存储
    return truncate_to_ms(value)


class SensorReading(BaseModel):
    """单条传感器读数；心率/功率/步频为 0 时格式合法，但不参与平均值计算"""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    timestamp          : datetime                = Field(...)
    heart_rate         : Optional[int]           = Field(None, ge=0, description="心率（bpm）")
    power              : Optional[int]           = Field(None, ge=0, description="功率（瓦特）")
    cadence            : Optional[int]           = Field(None, ge=0, description="步频（步/分钟）")
    latitude           : Optional[float]         = Field(None, ge=-90, le=90)
    longitude          : Optional[float]         = Field(None, ge=-180, le=180)
    elevation_meters   : Optional[float]         = Field(None)
    distance_meters    : Optional[float]         = Field(None, ge=0)
    pace_seconds_per_km: Optional[int]           = Field(None, ge=0)
    source             : SensorSource            = Field(...)

    @field_validator('timestamp')
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "SensorReading":
        """从原始字典构建读数，格式错误时抛出 InvalidInput。"""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidInput(f"malformed sensor reading: {e.errors()}") from e

    @classmethod
    def from_gps(cls, timestamp: datetime, latitude: float, longitude: float,
                 elevation_meters: Optional[float] = None) -> "SensorReading":
        return cls(timestamp=timestamp, latitude=latitude, longitude=longitude,
                   elevation_meters=elevation_meters, source=SensorSource.GPS)

    @classmethod
    def from_hrm(cls, timestamp: datetime, heart_rate: int) -> "SensorReading":
        return cls(timestamp=timestamp, heart_rate=heart_rate, source=SensorSource.HEART_RATE_MONITOR)

    @classmethod
    def from_power_meter(cls, timestamp: datetime, power: Optional[int] = None, cadence: Optional[int] = None,
                         distance_meters: Optional[float] = None,
                         pace_seconds_per_km: Optional[int] = None) -> "SensorReading":
        return cls(timestamp=timestamp, power=power, cadence=cadence, distance_meters=distance_meters,
                   pace_seconds_per_km=pace_seconds_per_km, source=SensorSource.POWER_METER)


class GpsFix(BaseModel):
    """GPS 定位（已经过驱动层清洗）"""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    latitude : float           = Field(..., ge=-90, le=90)
    longitude: float           = Field(..., ge=-180, le=180)
    altitude : Optional[float] = Field(None, description="海拔（米）")
    speed_mps: Optional[float] = Field(None, ge=0, description="瞬时速度（米/秒）")
    timestamp: datetime        = Field(...)

    @field_validator('timestamp')
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class RoutePoint(BaseModel):
    """轨迹点（存储用）"""
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    latitude : float              = Field(..., ge=-90, le=90)
    longitude: float              = Field(..., ge=-180, le=180)
    altitude : Optional[float]    = None
    timestamp: Optional[datetime] = None

    @field_validator('timestamp')
    @classmethod
    def _timestamp_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value) if value is not None else None


class ActivityRecord(BaseModel):
    """
    一次跑步活动的记录。

    - id 创建时生成（uuid4），不会复用
    - 距离、爬升、下降、时长只增不减
    - 平均值/最大值在至少有一个有效读数之前为 None（区别于“数值为 0”）
    """
    id                         : str                = Field(default_factory=lambda: str(uuid.uuid4()))
    name                       : str                = Field('')
    start_time                 : datetime           = Field(default_factory=utc_now)
    end_time                   : Optional[datetime] = None
    duration_seconds           : int                = 0
    distance_meters            : float              = 0.0
    elevation_gain_meters      : float              = 0.0
    elevation_loss_meters      : float              = 0.0
    average_heart_rate         : Optional[int]      = None
    max_heart_rate             : Optional[int]      = None
    average_power              : Optional[int]      = None
    max_power                  : Optional[int]      = None
    average_cadence            : Optional[int]      = None
    max_cadence                : Optional[int]      = None
    average_pace_seconds_per_km: Optional[int]      = None
    route_points               : List[RoutePoint]   = Field(default_factory=list)
    status                     : ActivityStatus     = ActivityStatus.IN_PROGRESS
    notes                      : Optional[str]      = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def _times_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value) if value is not None else None

    def model_post_init(self, __context: Any) -> None:
        if not self.name:
            self.name = default_activity_name(self.start_time)

    @property
    def is_completed(self) -> bool:
        return self.status == ActivityStatus.COMPLETED

    @property
    def pace_display(self) -> str:
        return format_pace(self.average_pace_seconds_per_km)


def default_activity_name(start_time: datetime) -> str:
    return f"Run on {start_time:%Y-%m-%d %H:%M}"


class AggregateSummary(BaseModel):
    """finalize_averages 的返回结果，同时记录各传感器的有效读数数量"""
    model_config = ConfigDict(frozen=True)

    average_heart_rate         : Optional[int] = None
    max_heart_rate             : Optional[int] = None
    average_power              : Optional[int] = None
    max_power                  : Optional[int] = None
    average_cadence            : Optional[int] = None
    max_cadence                : Optional[int] = None
    average_pace_seconds_per_km: Optional[int] = None
    heart_rate_samples         : int           = 0
    power_samples              : int           = 0
    cadence_samples            : int           = 0


class LiveMetrics(BaseModel):
    """实时指标快照（只读，供展示层使用）"""
    state                   : TrackerState
    activity_id             : Optional[str] = None
    duration_seconds        : int           = 0
    duration_display        : str           = "00:00:00"
    distance_meters         : float         = 0.0
    current_pace            : Optional[int] = None
    current_pace_display    : str           = "--:--"
    average_pace            : Optional[int] = None
    average_pace_display    : str           = "--:--"
    heart_rate              : Optional[int] = None
    average_heart_rate      : Optional[int] = None
    max_heart_rate          : Optional[int] = None
    power                   : Optional[int] = None
    average_power           : Optional[int] = None
    max_power               : Optional[int] = None
    cadence                 : Optional[int] = None
    average_cadence         : Optional[int] = None
    max_cadence             : Optional[int] = None
    elevation_gain_meters   : float         = 0.0
    elevation_loss_meters   : float         = 0.0
    calories_kcal           : Optional[float] = None


class StateChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    previous   : TrackerState
    current    : TrackerState
    activity_id: Optional[str] = None
    at         : datetime
