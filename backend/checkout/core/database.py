"""
数据库连接：异步 engine / session 与 FastAPI 依赖
"""
from typing import AsyncIterator, Tuple

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from checkout.core.config import settings

Base = declarative_base()


def create_engine_and_session(url: str, **engine_kwargs) -> Tuple[AsyncEngine, async_sessionmaker]:
    """按给定 URL 创建独立的 engine 与 session 工厂（测试、脚本使用）"""
    new_engine = create_async_engine(url, pool_pre_ping=True, **engine_kwargs)
    factory = async_sessionmaker(new_engine, class_=AsyncSession, expire_on_commit=False)
    return new_engine, factory


engine, AsyncSessionLocal = create_engine_and_session(settings.DATABASE_URL)


async def get_db() -> AsyncIterator[AsyncSession]:
    """每个请求一个 session，请求结束自动关闭"""
    async with AsyncSessionLocal() as session:
        yield session
