"""数据库会话管理。"""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from mcare_api.core.config import get_settings


def engine_options(database_url: str) -> dict[str, Any]:
    """按驱动返回建连参数。

    SQLite 连接会被线程池中的多个请求线程复用，需关闭同线程检查并设置锁等待；
    其他驱动开启连接预检查以减少僵尸连接影响。
    """
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": 30}}
    return {"pool_pre_ping": True}


def build_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True, **engine_options(database_url))


engine = build_engine(get_settings().database_url)
# 账号写入均显式提交，关闭自动刷新避免查找标识时提前落库。
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """为每个请求提供独立数据库会话，异常时回滚未提交的账号写入。"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
