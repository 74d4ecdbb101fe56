"""
数据库配置 - 持久化层
存储是容量与优惠券用量的唯一事实来源，也是唯一的互斥点
"""
import logging
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from app.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# 会话工厂在进程入口（lifespan）绑定引擎，每个请求一个会话
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None


def create_db_engine(url: str, lock_timeout: Optional[float] = None, **kwargs) -> Engine:
    """创建数据库引擎

    SQLite 使用 busy timeout 限制锁等待；其他后端在每个事务开始时设置 lock_timeout。
    """
    timeout = lock_timeout if lock_timeout is not None else settings.DB_LOCK_TIMEOUT_SECONDS

    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", timeout)
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        if ":memory:" not in url:
            @event.listens_for(engine, "connect")
            def _set_sqlite_pragma(dbapi_connection, connection_record):
                # 启用 WAL 模式以提高并发读性能
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.close()
        return engine

    engine = create_engine(url, pool_pre_ping=True, **kwargs)

    if engine.dialect.name == "postgresql":
        @event.listens_for(engine, "begin")
        def _set_lock_timeout(conn):
            conn.exec_driver_sql(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'")

    return engine


def configure_database(url: Optional[str] = None, **kwargs) -> Engine:
    """绑定会话工厂到新引擎（进程启动时调用）"""
    global _engine
    _engine = create_db_engine(url or settings.DATABASE_URL, **kwargs)
    SessionLocal.configure(bind=_engine)
    logger.info(f"Database configured: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_engine() -> Engine:
    """获取当前引擎，未配置时按默认 URL 配置"""
    if _engine is None:
        return configure_database()
    return _engine


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None):
    """初始化数据库表"""
    from app.models import ontology  # noqa
    Base.metadata.create_all(bind=engine or get_engine())


def dispose_db():
    """关闭连接池（进程退出时调用）"""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
