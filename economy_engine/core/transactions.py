"""
Optimistic-concurrency transactions.

Every read-then-write against a user's economy state runs through
``run_transaction``: the work function gets a fresh session inside
``session.begin()``, and a lost race (stale ``version_id_col`` or a racing
insert of the same key) rolls the whole attempt back and retries it from
scratch. Backoff is exponential without jitter, so the schedule is the same
on every run; after ``attempts`` tries the caller gets
``ConcurrentModificationRetryExhausted``.

Domain errors raised by the work function (daily limit, insufficient
balance, ...) roll back and propagate immediately; they are not retried.
"""
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (AsyncRetrying, RetryCallState, RetryError,
                      retry_if_exception_type, stop_after_attempt,
                      wait_exponential)

from economy_engine.domains.economy.errors import (
    ConcurrentModification, ConcurrentModificationRetryExhausted)
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        attempts: int = 5,
        backoff_seconds: float = 0.05,
        backoff_max_seconds: float = 1.0,
    ):
        self.session_factory = session_factory
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds

    async def __call__(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        attempts: Optional[int] = None,
    ) -> T:
        return await run_transaction(
            self.session_factory,
            operation,
            work,
            attempts=attempts or self.attempts,
            backoff_seconds=self.backoff_seconds,
            backoff_max_seconds=self.backoff_max_seconds,
        )


async def _attempt(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
) -> T:
    async with session_factory() as session:
        try:
            async with session.begin():
                return await work(session)
        except StaleDataError as e:
            raise ConcurrentModification(f"Stale write: {e}") from e
        except IntegrityError as e:
            raise ConcurrentModification(f"Conflicting insert: {e.orig}") from e


def _log_retry(operation: str):
    def before_sleep(state: RetryCallState) -> None:
        logger.warning(
            f"{operation}: concurrent modification on attempt "
            f"{state.attempt_number}, retrying"
        )

    return before_sleep


async def run_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    work: Callable[[AsyncSession], Awaitable[T]],
    attempts: int = 5,
    backoff_seconds: float = 0.05,
    backoff_max_seconds: float = 1.0,
) -> T:
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=backoff_seconds, max=backoff_max_seconds),
        retry=retry_if_exception_type(ConcurrentModification),
        before_sleep=_log_retry(operation),
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await _attempt(session_factory, work)
    except RetryError as e:
        logger.error(f"{operation}: gave up after {attempts} conflicting attempts")
        raise ConcurrentModificationRetryExhausted(operation, attempts) from e
