"""
本文件定义了活动与追踪相关的Pydantic数据模型，用于API请求和响应的数据验证与序列化。

包含以下模型：
1. SensorReadingIn / GpsFixIn: 传感器读数、GPS 定位上报请求
2. IngestResponse: 数据接收结果
3. TrackerStateResponse: 状态机当前状态
4. RoutePointOut / ActivityOut / ActivitySummary: 活动记录完整/摘要响应
5. SensorReadingOut: 历史读数响应
6. ActivityUpdate: 修改名称/备注的请求
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..tracking.models import ActivityStatus, IngestResult, SensorSource, TrackerState


class SensorReadingIn(BaseModel):
    """传感器读数上报请求（未提供时间戳时使用服务器当前时间）"""
    model_config = ConfigDict(allow_inf_nan=False)

    timestamp: Optional[datetime] = None
    heart_rate: Optional[int] = Field(None, ge=0)
    power: Optional[int] = Field(None, ge=0)
    cadence: Optional[int] = Field(None, ge=0)
    distance_meters: Optional[float] = Field(None, ge=0)
    pace_seconds_per_km: Optional[int] = Field(None, ge=0)
    source: SensorSource


class GpsFixIn(BaseModel):
    """GPS 定位上报请求"""
    model_config = ConfigDict(allow_inf_nan=False)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    altitude: Optional[float] = None
    speed_mps: Optional[float] = Field(None, ge=0)
    timestamp: Optional[datetime] = None


class IngestResponse(BaseModel):
    result: IngestResult
    state: TrackerState


class TrackerStateResponse(BaseModel):
    state: TrackerState
    activity_id: Optional[str] = None
    pending_readings: int = 0
    unsaved_activity_id: Optional[str] = None
    unsaved_activity_ids: List[str] = []


class RoutePointOut(BaseModel):
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    timestamp: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class ActivitySummary(BaseModel):
    """活动列表中的摘要信息（不含轨迹点）"""
    id: str
    name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: int
    distance_meters: float
    elevation_gain_meters: float
    elevation_loss_meters: float
    average_heart_rate: Optional[int] = None
    average_power: Optional[int] = None
    average_cadence: Optional[int] = None
    average_pace_seconds_per_km: Optional[int] = None
    status: ActivityStatus
    model_config = ConfigDict(from_attributes=True)


class ActivityOut(ActivitySummary):
    """活动完整响应模型"""
    max_heart_rate: Optional[int] = None
    max_power: Optional[int] = None
    max_cadence: Optional[int] = None
    average_pace_display: str = "--:--"
    route_points: List[RoutePointOut] = Field(default_factory=list)
    notes: Optional[str] = None


class SensorReadingOut(BaseModel):
    timestamp: datetime
    heart_rate: Optional[int] = None
    power: Optional[int] = None
    cadence: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    elevation_meters: Optional[float] = None
    distance_meters: Optional[float] = None
    pace_seconds_per_km: Optional[int] = None
    source: SensorSource
    model_config = ConfigDict(from_attributes=True)


class ActivityUpdate(BaseModel):
    """修改活动时的请求模型（只允许名称与备注）"""
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    notes: Optional[str] = None
