"""
Profile API routes

包含：
- GET /profile：读取跑者资料（首次访问时创建默认资料）
- PUT /profile：更新跑者资料，下一次开始活动时生效
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..profile import crud
from ..profile.schemas import RunnerProfile, RunnerProfileUpdate
from ..utils import get_db

router = APIRouter(prefix="/profile", tags=["跑者资料"])


@router.get("", response_model=RunnerProfile)
async def get_profile(db: Session = Depends(get_db)):
    return crud.to_schema(crud.get_profile(db))


@router.put("", response_model=RunnerProfile)
async def update_profile(body: RunnerProfileUpdate, db: Session = Depends(get_db)):
    """更新跑者资料（只更新提供的字段；custom_ecor、max_hr 可显式置空）"""
    return crud.to_schema(crud.update_profile(db, body))
