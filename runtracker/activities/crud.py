"""
本文件包含活动相关的数据库操作（持久化协作者）。

提供以下功能：
1. save：保存/更新活动记录（运动中检查点与结束时调用）
2. load / list_all / load_readings：历史回看（运动中不会调用）
3. save_readings：传感器读数批量写入
4. update_details / delete：修改名称备注、删除活动

数据库异常统一回滚并抛出 PersistenceFailure，调用方保留内存中的记录以便重试。
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.analytics.time_utils import from_epoch_ms
from ..core.errors import PersistenceFailure
from ..tracking.codec import reading_to_row, record_to_row, row_to_reading, row_to_record
from ..tracking.models import ActivityRecord, ActivityStatus, SensorReading
from .models import TbActivity, TbSensorReading
from .schemas import ActivitySummary

logger = logging.getLogger(__name__)

_ACTIVITY_COLUMNS = [c.name for c in TbActivity.__table__.columns]
_READING_COLUMNS = [c.name for c in TbSensorReading.__table__.columns if c.name != 'id']


def _row_of(entity, columns) -> dict:
    return {name: getattr(entity, name) for name in columns}


class ActivityRepository:
    """活动持久化仓库"""

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, tag: str, activity_id: Optional[str], e: Exception) -> PersistenceFailure:
        self.db.rollback()
        logger.error("[db-error][%s] activity_id=%s err=%s", tag, activity_id, e)
        return PersistenceFailure(f"{tag} failed: {e}", activity_id=activity_id)

    def save(self, record: ActivityRecord) -> None:
        """插入或更新活动记录；已完成的记录不会被未完成的快照覆盖"""
        row = record_to_row(record)
        try:
            existing = self.db.query(TbActivity).filter(TbActivity.id == record.id).first()
            if existing and existing.status == ActivityStatus.COMPLETED.value and not record.is_completed:
                self.db.rollback()
                logger.warning("[activity-save] stale snapshot ignored activity_id=%s status=%s",
                               record.id, record.status.value)
                return
            if existing:
                for field, value in row.items():
                    setattr(existing, field, value)
            else:
                self.db.add(TbActivity(**row))
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail('activity-save', record.id, e) from e
        logger.debug("[activity-save] activity_id=%s status=%s", record.id, record.status.value)

    def load(self, activity_id: str) -> Optional[ActivityRecord]:
        try:
            entity = self.db.query(TbActivity).filter(TbActivity.id == activity_id).first()
        except SQLAlchemyError as e:
            raise self._fail('activity-select', activity_id, e) from e
        if entity is None:
            return None
        return row_to_record(_row_of(entity, _ACTIVITY_COLUMNS))

    def list_all(self, skip: int = 0, limit: int = 100) -> List[ActivitySummary]:
        """活动摘要列表，按开始时间倒序"""
        try:
            entities = (
                self.db.query(TbActivity)
                .order_by(TbActivity.start_time.desc())
                .offset(skip)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail('activity-list', None, e) from e
        return [
            ActivitySummary(
                id=entity.id,
                name=entity.name,
                start_time=from_epoch_ms(entity.start_time),
                end_time=from_epoch_ms(entity.end_time),
                duration_seconds=entity.duration_seconds,
                distance_meters=entity.distance_meters,
                elevation_gain_meters=entity.elevation_gain_meters,
                elevation_loss_meters=entity.elevation_loss_meters,
                average_heart_rate=entity.average_heart_rate,
                average_power=entity.average_power,
                average_cadence=entity.average_cadence,
                average_pace_seconds_per_km=entity.average_pace_seconds_per_km,
                status=ActivityStatus(entity.status),
            )
            for entity in entities
        ]

    def save_readings(self, activity_id: str, readings: Sequence[SensorReading]) -> int:
        """批量写入读数，返回写入条数"""
        if not readings:
            return 0
        try:
            self.db.add_all([TbSensorReading(**reading_to_row(activity_id, r)) for r in readings])
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail('reading-insert', activity_id, e) from e
        return len(readings)

    def load_readings(self, activity_id: str) -> List[SensorReading]:
        """按时间顺序返回活动的全部读数"""
        try:
            entities = (
                self.db.query(TbSensorReading)
                .filter(TbSensorReading.activity_id == activity_id)
                .order_by(TbSensorReading.timestamp.asc(), TbSensorReading.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail('reading-select', activity_id, e) from e
        return [row_to_reading(_row_of(entity, _READING_COLUMNS)) for entity in entities]

    def update_details(self, activity_id: str, name: Optional[str] = None, notes: Optional[str] = None) -> Optional[ActivityRecord]:
        """只更新名称与备注（活动完成后唯一允许修改的字段）"""
        try:
            entity = self.db.query(TbActivity).filter(TbActivity.id == activity_id).first()
            if entity is None:
                return None
            if name is not None:
                entity.name = name
            if notes is not None:
                entity.notes = notes
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail('activity-update', activity_id, e) from e
        return row_to_record(_row_of(entity, _ACTIVITY_COLUMNS))

    def delete(self, activity_id: str) -> bool:
        try:
            self.db.query(TbSensorReading).filter(TbSensorReading.activity_id == activity_id).delete(synchronize_session=False)
            deleted = self.db.query(TbActivity).filter(TbActivity.id == activity_id).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail('activity-delete', activity_id, e) from e
        return bool(deleted)
