"""
本文件包含数据库连接和会话管理的工具函数。

主要功能：
1. 数据库连接配置（从环境变量读取，避免硬编码）
2. 数据库会话管理
3. FastAPI依赖注入
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from .config import get_database_url


DATABASE_URL = get_database_url()


def _engine_kwargs(url: str) -> dict:
    # SQLite 连接会在线程池中复用，需要关闭同线程检查
    if url.startswith('sqlite'):
        return {'connect_args': {'check_same_thread': False}}
    return {'pool_pre_ping': True}


def _ensure_sqlite_dir(url: str) -> None:
    prefix = 'sqlite:///'
    if url.startswith(prefix) and ':memory:' not in url:
        directory = os.path.dirname(url[len(prefix):])
        if directory:
            os.makedirs(directory, exist_ok=True)


_ensure_sqlite_dir(DATABASE_URL)
engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """FastAPI 依赖项：获取数据库会话（Session）。"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
