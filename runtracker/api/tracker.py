"""
Tracker API routes

包含：
- POST /tracker/start|pause|resume|stop|discard：活动生命周期控制
- POST /tracker/retry-save：结束时保存失败后的重试
- GET  /tracker/state、/tracker/live：当前状态与实时指标
- POST /tracker/readings、/tracker/gps：传感器读数与 GPS 定位上报

非法的状态切换返回 409；存储失败返回 503（记录保留在内存中，可重试）。
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..activities.schemas import ActivityOut, GpsFixIn, IngestResponse, SensorReadingIn, TrackerStateResponse
from ..core.analytics.time_utils import utc_now
from ..core.errors import InvalidStateTransition, PersistenceFailure
from ..services.tracker_service import tracker_service
from ..tracking.models import ActivityRecord, GpsFix, LiveMetrics, SensorReading
from ..utils import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracker", tags=["实时追踪"])


def to_activity_out(record: ActivityRecord) -> ActivityOut:
    return ActivityOut(
        **record.model_dump(exclude={'route_points'}),
        average_pace_display=record.pace_display,
        route_points=[p.model_dump() for p in record.route_points],
    )


def _run(operation, db: Session) -> ActivityOut:
    try:
        record = operation(db)
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceFailure as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": f"保存失败，记录已保留，可重试: {e}", "activity_id": e.activity_id},
        )
    return to_activity_out(record)


def _state_response() -> TrackerStateResponse:
    machine = tracker_service.machine
    return TrackerStateResponse(
        state=tracker_service.state,
        activity_id=machine.activity_id if machine else None,
        pending_readings=machine.pending_count() if machine else 0,
        unsaved_activity_id=tracker_service.unsaved_activity_id,
        unsaved_activity_ids=tracker_service.unsaved_activity_ids,
    )


@router.post("/start", response_model=ActivityOut)
async def start_activity(db: Session = Depends(get_db)):
    """开始一次新的跑步活动（idle/completed -> tracking）"""
    return _run(tracker_service.start, db)


@router.post("/pause", response_model=ActivityOut)
async def pause_activity(db: Session = Depends(get_db)):
    return _run(tracker_service.pause, db)


@router.post("/resume", response_model=ActivityOut)
async def resume_activity(db: Session = Depends(get_db)):
    return _run(tracker_service.resume, db)


@router.post("/stop", response_model=ActivityOut)
async def stop_activity(db: Session = Depends(get_db)):
    """
    结束活动：结算时长与平均值并保存。

    Raises:
        HTTPException: 409 - 当前没有进行中的活动
        HTTPException: 503 - 保存失败（可调用 /tracker/retry-save 重试）
    """
    return _run(tracker_service.stop, db)


@router.post("/retry-save", response_model=ActivityOut)
async def retry_save(activity_id: Optional[str] = None, db: Session = Depends(get_db)):
    """重试保存结束时保存失败的记录；不指定 activity_id 时取最早的一条"""
    return _run(lambda session: tracker_service.retry_save(session, activity_id), db)


@router.post("/discard", response_model=TrackerStateResponse)
async def discard_activity(db: Session = Depends(get_db)):
    """放弃当前活动并删除已保存的检查点"""
    try:
        tracker_service.discard(db)
    except InvalidStateTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PersistenceFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return _state_response()


@router.get("/state", response_model=TrackerStateResponse)
async def get_state():
    return _state_response()


@router.get("/live", response_model=LiveMetrics)
async def get_live_metrics():
    """实时指标（时长、距离、当前/平均配速、心率、功率、步频、爬升）"""
    return tracker_service.snapshot()


@router.post("/readings", response_model=IngestResponse)
async def ingest_reading(body: SensorReadingIn, db: Session = Depends(get_db)):
    reading = SensorReading(timestamp=body.timestamp or utc_now(), **body.model_dump(exclude={'timestamp'}))
    result = tracker_service.ingest_reading(db, reading)
    return IngestResponse(result=result, state=tracker_service.state)


@router.post("/gps", response_model=IngestResponse)
async def ingest_gps(body: GpsFixIn, db: Session = Depends(get_db)):
    fix = GpsFix(timestamp=body.timestamp or utc_now(), **body.model_dump(exclude={'timestamp'}))
    result = tracker_service.ingest_gps_fix(db, fix)
    return IngestResponse(result=result, state=tracker_service.state)
