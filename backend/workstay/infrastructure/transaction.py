from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Deadlocks, lock waits and dropped connections; the transaction is worth retrying."""
    if isinstance(exc, (StorageUnavailableError, OperationalError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    timeout: float = 5.0,
    backoff: float = 0.05,
) -> T:
    """
    Run `work` inside one transaction and commit it only if it finishes.

    A timeout, a deadlock or a dropped connection rolls the whole transaction
    back, so nothing `work` wrote survives. Those failures are retried with
    exponential backoff; after `attempts` tries StorageUnavailableError is
    raised. Domain errors raised by `work` roll back and propagate untouched.
    """
    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            async with session.begin():
                return await asyncio.wait_for(work(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            last_exc = exc
            logger.warning("transaction timed out after %.2fs (attempt %d/%d)", timeout, attempt, attempts)
        except DBAPIError as exc:
            if not is_transient(exc):
                raise
            last_exc = exc
            logger.warning("transaction failed on storage error (attempt %d/%d): %s", attempt, attempts, exc)
        if attempt < attempts:
            await asyncio.sleep(backoff * (2 ** (attempt - 1)))
    raise StorageUnavailableError("storage is unavailable, please retry") from last_exc
