"""
Activities API routes（历史回看）

包含：
- GET    /activities：活动摘要列表（按开始时间倒序）
- GET    /activities/{activity_id}：活动详情（含轨迹点）
- GET    /activities/{activity_id}/readings：按时间顺序的传感器读数
- PATCH  /activities/{activity_id}：修改名称/备注
- POST   /activities/{activity_id}/recompute：基于读数显式重算统计值
- DELETE /activities/{activity_id}：删除活动及其读数
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..activities.schemas import ActivityOut, ActivitySummary, ActivityUpdate, SensorReadingOut
from ..core.errors import InvalidStateTransition, PersistenceFailure
from ..services.tracker_service import tracker_service
from ..utils import get_db
from .tracker import to_activity_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/activities", tags=["活动"])


def _not_found(activity_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"活动不存在: {activity_id}")


def _unavailable(e: PersistenceFailure) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.get("", response_model=List[ActivitySummary])
async def list_activities(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    try:
        return tracker_service.list_activities(db, skip=skip, limit=limit)
    except PersistenceFailure as e:
        raise _unavailable(e)


@router.get("/{activity_id}", response_model=ActivityOut)
async def get_activity(activity_id: str, db: Session = Depends(get_db)):
    try:
        record = tracker_service.get_activity(db, activity_id)
    except PersistenceFailure as e:
        raise _unavailable(e)
    if record is None:
        raise _not_found(activity_id)
    return to_activity_out(record)


@router.get("/{activity_id}/readings", response_model=List[SensorReadingOut])
async def get_activity_readings(activity_id: str, db: Session = Depends(get_db)):
    try:
        if tracker_service.get_activity(db, activity_id) is None:
            raise _not_found(activity_id)
        readings = tracker_service.get_readings(db, activity_id)
    except PersistenceFailure as e:
        raise _unavailable(e)
    return [SensorReadingOut.model_validate(r) for r in readings]


@router.patch("/{activity_id}", response_model=ActivityOut)
async def update_activity(activity_id: str, body: ActivityUpdate, db: Session = Depends(get_db)):
    """只允许修改名称与备注"""
    try:
        record = tracker_service.update_activity(db, activity_id, name=body.name, notes=body.notes)
    except PersistenceFailure as e:
        raise _unavailable(e)
    if record is None:
        raise _not_found(activity_id)
    return to_activity_out(record)


@router.post("/{activity_id}/recompute", response_model=ActivityOut)
async def recompute_activity(activity_id: str, db: Session = Depends(get_db)):
    """
    基于已保存的全部读数重算平均值、最大值与配速。

    Raises:
        HTTPException: 404 - 活动不存在
        HTTPException: 409 - 活动仍在进行中
    """
    try:
        record = tracker_service.recompute_activity(db, activity_id)
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceFailure as e:
        raise _unavailable(e)
    if record is None:
        raise _not_found(activity_id)
    logger.info("[activity-recompute] activity_id=%s", activity_id)
    return to_activity_out(record)


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_activity(activity_id: str, db: Session = Depends(get_db)):
    try:
        deleted = tracker_service.delete_activity(db, activity_id)
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceFailure as e:
        raise _unavailable(e)
    if not deleted:
        raise _not_found(activity_id)
