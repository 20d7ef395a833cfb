"""
pytest配置文件，定义测试环境和共享的测试夹具（fixtures）。

主要功能：
1. 配置测试数据库连接（内存 SQLite，StaticPool 保证所有会话共用同一连接）
2. 提供数据库会话管理
3. 提供FastAPI测试客户端
4. 提供可手动推进的时钟

注意：runtracker.config 在导入时读取环境变量，因此必须先设置环境变量再导入应用。
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["TICK_INTERVAL_SECONDS"] = "0"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from runtracker.config import TrackingSettings
from runtracker.db_base import Base
from runtracker.main import app
from runtracker.services.tracker_service import tracker_service
from runtracker.utils import get_db

# 导入模型以确保它们注册到统一的Base
from runtracker.activities.models import TbActivity, TbSensorReading  # noqa: F401
from runtracker.profile.models import TbRunnerProfile  # noqa: F401

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T0 = datetime(2024, 5, 1, 7, 30, tzinfo=timezone.utc)


class FakeClock:
    """可手动推进的时钟，注入到状态机中"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_session():
    """每个测试使用全新的表"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    """提供FastAPI测试客户端，并重置全局追踪服务"""
    tracker_service.reset(TrackingSettings())
    app.dependency_overrides[get_db] = lambda: db_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    tracker_service.reset()


@pytest.fixture
def session_factory(db_session):
    """为其他线程/任务创建独立会话（与 db_session 共用同一张表）"""
    return TestingSessionLocal
