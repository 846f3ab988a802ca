from collections.abc import AsyncGenerator
from time import perf_counter

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.infrastructure.observability.metrics import observe_db_query

async_engine = create_async_engine(settings.sqlalchemy_database_uri, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(bind=async_engine, expire_on_commit=False, autoflush=False)

_TIMED_VERBS = {"select", "insert", "update", "delete"}


def _statement_verb(statement: str) -> str:
    verb = statement.lstrip().split(None, 1)[0].lower() if statement.strip() else ""
    return verb if verb in _TIMED_VERBS else "other"


@event.listens_for(async_engine.sync_engine, "before_cursor_execute")
def _start_query_timer(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_timers", []).append(perf_counter())


@event.listens_for(async_engine.sync_engine, "after_cursor_execute")
def _stop_query_timer(conn, cursor, statement, parameters, context, executemany):
    timers = conn.info.get("query_timers")
    if timers:
        observe_db_query(perf_counter() - timers.pop(), operation=_statement_verb(statement))


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as db:
        yield db
