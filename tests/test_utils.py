import pytest

from shared.database.connection import to_async_url
from shared.errors import (
    AlreadyPurchasedError,
    DecodeServiceUnavailableError,
    InvalidTicketTypeError,
    StorageConflictError,
    TicketNotFoundError,
    http_status_for,
)
from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from shared.utils.retry import retry_with_backoff


async def test_retry_with_backoff_retries_listed_exceptions():
    attempts = {"n": 0}

    async def flaky():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise StorageConflictError("dup")
        return "ok"

    result = await retry_with_backoff(flaky, max_retries=3, initial_delay=0, exceptions=(StorageConflictError,))
    assert result == "ok"
    assert attempts["n"] == 3


async def test_retry_with_backoff_reraises_after_last_attempt():
    attempts = {"n": 0}

    def always_conflict():
        attempts["n"] += 1
        raise StorageConflictError("dup")

    with pytest.raises(StorageConflictError):
        await retry_with_backoff(always_conflict, max_retries=2, initial_delay=0, exceptions=(StorageConflictError,))
    assert attempts["n"] == 3


async def test_retry_with_backoff_does_not_retry_other_errors():
    attempts = {"n": 0}

    async def not_found():
        attempts["n"] += 1
        raise TicketNotFoundError("t-1")

    with pytest.raises(TicketNotFoundError):
        await retry_with_backoff(not_found, initial_delay=0, exceptions=(StorageConflictError,))
    assert attempts["n"] == 1


async def test_circuit_breaker_half_open_recovers():
    breaker = CircuitBreaker(name="t", failure_threshold=1, recovery_timeout=0, expected_exception=ValueError)

    async def boom():
        raise ValueError("x")

    async def fine():
        return 42

    with pytest.raises(ValueError):
        await breaker.call(boom)
    assert breaker.state == CircuitState.OPEN

    # recovery_timeout=0: el siguiente intento pasa en HALF_OPEN y cierra el circuito
    assert await breaker.call(fine) == 42
    assert breaker.state == CircuitState.CLOSED


async def test_circuit_breaker_open_fails_fast():
    breaker = CircuitBreaker(name="t", failure_threshold=1, recovery_timeout=60, expected_exception=ValueError)

    async def boom():
        raise ValueError("x")

    with pytest.raises(ValueError):
        await breaker.call(boom)
    with pytest.raises(CircuitOpenError):
        await breaker.call(boom)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db:5432/eventun?sslmode=require", "postgresql+asyncpg://u:p@db:5432/eventun"),
        ("postgresql+psycopg://u:p@db/eventun", "postgresql+asyncpg://u:p@db/eventun"),
        ("sqlite:///./eventun.db", "sqlite+aiosqlite:///./eventun.db"),
        ("sqlite+aiosqlite:///x.db", "sqlite+aiosqlite:///x.db"),
    ],
)
def test_to_async_url(url, expected):
    assert to_async_url(url) == expected


@pytest.mark.parametrize(
    "error, status",
    [
        (InvalidTicketTypeError("Gold"), 400),
        (TicketNotFoundError("t"), 404),
        (AlreadyPurchasedError("t"), 409),
        (StorageConflictError("dup"), 409),
        (DecodeServiceUnavailableError("down"), 503),
    ],
)
def test_http_status_for(error, status):
    assert http_status_for(error) == status
