"""
活动记录与轨迹点的存储编码

约定：
- 时间戳统一为毫秒时间戳（epoch ms）
- 枚举使用固定字符串（in_progress / paused / completed，gps / heart_rate_monitor / ...）
- 轨迹点使用带版本号的 JSON 文档：
    {"version": 1, "points": [{"lat": 31.2, "lng": 121.5, "alt": 12.0, "t": 1700000000000}, ...]}
  alt / t 可省略；解码时逐点校验，损坏的点被跳过，有效点保留，整体损坏时返回空列表，均不抛出异常
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..core.analytics.time_utils import from_epoch_ms, to_epoch_ms
from ..core.errors import DecodeFailure
from .models import ActivityRecord, ActivityStatus, RoutePoint, SensorReading, SensorSource

logger = logging.getLogger(__name__)

ROUTE_FORMAT_VERSION = 1


def encode_route_points(points: List[RoutePoint]) -> str:
    encoded = []
    for point in points:
        item: Dict[str, Any] = {'lat': point.latitude, 'lng': point.longitude}
        if point.altitude is not None:
            item['alt'] = point.altitude
        if point.timestamp is not None:
            item['t'] = to_epoch_ms(point.timestamp)
        encoded.append(item)
    return json.dumps({'version': ROUTE_FORMAT_VERSION, 'points': encoded}, separators=(',', ':'))


def _decode_point(item: Any) -> RoutePoint:
    if not isinstance(item, dict):
        raise DecodeFailure(f"route point must be an object, got {type(item).__name__}")
    t = item.get('t')
    if t is not None and (isinstance(t, bool) or not isinstance(t, int)):
        raise DecodeFailure(f"route point timestamp must be epoch ms, got {t!r}")
    try:
        return RoutePoint(
            latitude=item['lat'],
            longitude=item['lng'],
            altitude=item.get('alt'),
            timestamp=from_epoch_ms(t),
        )
    except (KeyError, ValidationError, OverflowError, ValueError) as e:
        # 超出 datetime 范围的时间戳与字段校验失败同样只跳过该点
        raise DecodeFailure(f"invalid route point {item!r}: {e}") from e


def decode_route_points_with_errors(payload: Optional[str]) -> Tuple[List[RoutePoint], List[DecodeFailure]]:
    """解码轨迹点，同时返回被跳过的点对应的错误列表。"""
    if not payload:
        return [], []
    try:
        document = json.loads(payload)
    except (TypeError, ValueError) as e:
        return [], [DecodeFailure(f"route payload is not valid JSON: {e}")]

    if isinstance(document, dict):
        version = document.get('version')
        if version != ROUTE_FORMAT_VERSION:
            return [], [DecodeFailure(f"unsupported route format version {version!r}")]
        items = document.get('points')
    else:
        items = document
    if not isinstance(items, list):
        return [], [DecodeFailure("route payload has no point list")]

    points: List[RoutePoint] = []
    errors: List[DecodeFailure] = []
    for item in items:
        try:
            points.append(_decode_point(item))
        except DecodeFailure as e:
            errors.append(e)
    return points, errors


def decode_route_points(payload: Optional[str]) -> List[RoutePoint]:
    points, errors = decode_route_points_with_errors(payload)
    if errors:
        logger.warning("[route-decode] skipped=%s kept=%s first_error=%s", len(errors), len(points), errors[0])
    return points


def record_to_row(record: ActivityRecord) -> Dict[str, Any]:
    """ActivityRecord -> 数据库行字段（与 activities.models.TbActivity 列一一对应）。"""
    return {
        'id': record.id,
        'name': record.name,
        'start_time': to_epoch_ms(record.start_time),
        'end_time': to_epoch_ms(record.end_time),
        'duration_seconds': record.duration_seconds,
        'distance_meters': record.distance_meters,
        'elevation_gain_meters': record.elevation_gain_meters,
        'elevation_loss_meters': record.elevation_loss_meters,
        'average_heart_rate': record.average_heart_rate,
        'max_heart_rate': record.max_heart_rate,
        'average_power': record.average_power,
        'max_power': record.max_power,
        'average_pace_seconds_per_km': record.average_pace_seconds_per_km,
        'average_cadence': record.average_cadence,
        'max_cadence': record.max_cadence,
        'route_points_json': encode_route_points(record.route_points),
        'status': record.status.value,
        'notes': record.notes,
    }


def row_to_record(row: Dict[str, Any]) -> ActivityRecord:
    return ActivityRecord(
        id=row['id'],
        name=row['name'],
        start_time=from_epoch_ms(row['start_time']),
        end_time=from_epoch_ms(row.get('end_time')),
        duration_seconds=row.get('duration_seconds') or 0,
        distance_meters=row.get('distance_meters') or 0.0,
        elevation_gain_meters=row.get('elevation_gain_meters') or 0.0,
        elevation_loss_meters=row.get('elevation_loss_meters') or 0.0,
        average_heart_rate=row.get('average_heart_rate'),
        max_heart_rate=row.get('max_heart_rate'),
        average_power=row.get('average_power'),
        max_power=row.get('max_power'),
        average_pace_seconds_per_km=row.get('average_pace_seconds_per_km'),
        average_cadence=row.get('average_cadence'),
        max_cadence=row.get('max_cadence'),
        route_points=decode_route_points(row.get('route_points_json')),
        status=ActivityStatus(row['status']),
        notes=row.get('notes'),
    )


def reading_to_row(activity_id: str, reading: SensorReading) -> Dict[str, Any]:
    return {
        'activity_id': activity_id,
        'timestamp': to_epoch_ms(reading.timestamp),
        'latitude': reading.latitude,
        'longitude': reading.longitude,
        'elevation_meters': reading.elevation_meters,
        'heart_rate': reading.heart_rate,
        'power': reading.power,
        'cadence': reading.cadence,
        'distance_meters': reading.distance_meters,
        'pace_seconds_per_km': reading.pace_seconds_per_km,
        'source': reading.source.value,
    }


def row_to_reading(row: Dict[str, Any]) -> SensorReading:
    return SensorReading(
        timestamp=from_epoch_ms(row['timestamp']),
        latitude=row.get('latitude'),
        longitude=row.get('longitude'),
        elevation_meters=row.get('elevation_meters'),
        heart_rate=row.get('heart_rate'),
        power=row.get('power'),
        cadence=row.get('cadence'),
        distance_meters=row.get('distance_meters'),
        pace_seconds_per_km=row.get('pace_seconds_per_km'),
        source=SensorSource(row['source']),
    )
