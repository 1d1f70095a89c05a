import os

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel.ext.asyncio.session import AsyncSession

# ---------------------------------------------------------------------------
# Remote catalog DB  (medicine_knowledge_base and its stored functions)
# ---------------------------------------------------------------------------
DB_URL = os.getenv(
    "MEDKB_DB_URL",
    "postgresql+asyncpg://medkb:medkb@db:5432/medkb",
)
# asyncpg per-statement timeout, in seconds
DB_COMMAND_TIMEOUT = float(os.getenv("MEDKB_REMOTE_TIMEOUT", "15"))

engine: AsyncEngine = create_async_engine(
    DB_URL,
    echo=False,
    future=True,
    pool_size=10,
    max_overflow=5,
    pool_pre_ping=True,
    connect_args={"command_timeout": DB_COMMAND_TIMEOUT},
)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def create_task_session_factory() -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Short-lived engine for catalog operations in Celery tasks."""
    task_engine = create_async_engine(
        DB_URL,
        echo=False,
        future=True,
        connect_args={"command_timeout": DB_COMMAND_TIMEOUT},
    )
    return task_engine, async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
