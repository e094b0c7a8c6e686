"""
tasks/runner.py
Runs async service code from synchronous Celery tasks.
"""

import asyncio
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from config.database import create_worker_sessionmaker


def run_with_session(work: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
    """
    Run `work(session)` on a fresh event loop and engine. The session is
    committed on success and rolled back on error.
    """

    async def _run():
        engine, sessionmaker = create_worker_sessionmaker()
        try:
            async with sessionmaker() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except Exception:
                    await session.rollback()
                    raise
        finally:
            await engine.dispose()

    return asyncio.run(_run())
