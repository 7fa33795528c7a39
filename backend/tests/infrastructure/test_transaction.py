import asyncio
from datetime import date
from typing import Any, cast

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from workstay.domain.errors import CapacityExceededError, StorageUnavailableError
from workstay.infrastructure.transaction import run_in_transaction


class DummySession:
    """Counts transactions and records how each one ended."""

    def __init__(self) -> None:
        self.begun = 0
        self.outcomes: list[str] = []

    async def __aenter__(self) -> "DummySession":
        self.begun += 1
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        self.outcomes.append("rollback" if exc_type is not None else "commit")
        return False

    def begin(self) -> "DummySession":
        return self


def _session(session: DummySession) -> AsyncSession:
    return cast(AsyncSession, session)


@pytest.mark.asyncio
async def test_commits_on_success() -> None:
    session = DummySession()

    async def work() -> str:
        return "ok"

    assert await run_in_transaction(_session(session), work) == "ok"
    assert session.outcomes == ["commit"]


@pytest.mark.asyncio
async def test_domain_error_rolls_back_without_retry() -> None:
    session = DummySession()

    async def work() -> Any:
        raise CapacityExceededError("2025-04-02 has no available slots", day=date(2025, 4, 2))

    with pytest.raises(CapacityExceededError):
        await run_in_transaction(_session(session), work, attempts=3, backoff=0)
    assert session.outcomes == ["rollback"]


@pytest.mark.asyncio
async def test_retries_deadlock_then_succeeds() -> None:
    session = DummySession()
    calls = 0

    async def work() -> int:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise OperationalError("UPDATE date_capacities", {}, Exception("Deadlock found"))
        return calls

    assert await run_in_transaction(_session(session), work, attempts=3, backoff=0) == 2
    assert session.outcomes == ["rollback", "commit"]


@pytest.mark.asyncio
async def test_timeout_becomes_storage_unavailable() -> None:
    session = DummySession()

    async def work() -> None:
        await asyncio.sleep(1)

    with pytest.raises(StorageUnavailableError):
        await run_in_transaction(_session(session), work, attempts=2, timeout=0.01, backoff=0)
    assert session.outcomes == ["rollback", "rollback"]


@pytest.mark.asyncio
async def test_invalidated_connection_is_retried() -> None:
    session = DummySession()

    async def work() -> None:
        raise DBAPIError("SELECT 1", {}, Exception("gone away"), connection_invalidated=True)

    with pytest.raises(StorageUnavailableError):
        await run_in_transaction(_session(session), work, attempts=2, backoff=0)
    assert session.begun == 2


@pytest.mark.asyncio
async def test_integrity_error_propagates() -> None:
    session = DummySession()

    async def work() -> None:
        raise IntegrityError("INSERT", {}, Exception("duplicate"))

    with pytest.raises(IntegrityError):
        await run_in_transaction(_session(session), work, attempts=3, backoff=0)
    assert session.begun == 1
