"""
跑步记录 API 主应用文件。

本文件是FastAPI应用的入口点，负责：
1. 初始化日志
2. 启动时建表，并按 TICK_INTERVAL_SECONDS 启动后台计时器
3. 注册各个模块的路由
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.activities import router as activities_router
from .api.profile import router as profile_router
from .api.tracker import router as tracker_router
from .config import LOG_LEVEL, TICK_INTERVAL_SECONDS
from .db_base import Base
from .logging_config import setup_logging
from .services.tracker_service import tracker_service
from .utils import SessionLocal, engine

# 注册 ORM 模型
from .activities import models as _activity_models  # noqa: F401
from .profile import models as _profile_models  # noqa: F401

setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    ticker = None
    if TICK_INTERVAL_SECONDS > 0:
        ticker = asyncio.create_task(tracker_service.run_ticker(TICK_INTERVAL_SECONDS, SessionLocal))
        logger.info("[tracker-ticker] started interval=%ss", TICK_INTERVAL_SECONDS)
    yield
    if ticker is not None:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker


app = FastAPI(title="跑步记录 API", lifespan=lifespan)

# 路由注册
app.include_router(tracker_router, tags=["实时追踪"])
app.include_router(activities_router, tags=["活动"])
app.include_router(profile_router, tags=["跑者资料"])
