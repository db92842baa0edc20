"""
数据库配置和连接管理

生产使用 PostgreSQL（asyncpg），测试与本地开发可用 SQLite（aiosqlite）。
"""
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from core.config import DatabaseSettings, settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}. 请使用 async 驱动或更新 DATABASE__URL")
    return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def create_engine_for(cfg: DatabaseSettings) -> AsyncEngine:
    url = build_async_url(cfg.url)
    kwargs: dict[str, Any] = {"echo": cfg.echo}
    # SQLite 不支持连接池参数
    if not url.startswith("sqlite"):
        kwargs.update(pool_size=cfg.pool_size, max_overflow=cfg.max_overflow, pool_pre_ping=True)
    return create_async_engine(url, **kwargs)


engine = create_engine_for(settings.database)

# expire_on_commit=False：提交后仍可读取实体字段映射到领域对象
AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def create_tables(target: AsyncEngine = engine):
    """按模型建表（仅开发/测试；生产使用 Alembic 迁移）"""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
