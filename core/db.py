from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from core.config import get_settings

# Base 정의 (모델에서 import)
Base = declarative_base()

# 싱글턴 엔진/세션
engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None


def get_db_url() -> str:
    return get_settings().database_url


def init_engine(db_url: Optional[str] = None) -> async_sessionmaker:
    global engine, SessionLocal
    if engine is None:
        db_url = db_url or get_db_url()
        connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
        engine = create_async_engine(db_url, future=True, connect_args=connect_args)
        SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return SessionLocal


def get_engine() -> Optional[AsyncEngine]:
    return engine


async def init_models(bind: Optional[AsyncEngine] = None) -> None:
    # 모델 모듈을 import 해야 metadata에 테이블이 등록됨
    import models.health_record  # noqa: F401
    import models.call_record  # noqa: F401

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    SessionLocal = None


# FastAPI 의존성 주입용 세션 생성 함수
async def get_db() -> AsyncIterator[AsyncSession]:
    session_factory = SessionLocal or init_engine()
    async with session_factory() as session:
        yield session
