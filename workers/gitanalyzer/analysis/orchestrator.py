"""Call orchestrator: bounded, retry-aware execution of one external call per unit.

Each unit of work (an analyzer batch, a diff fetch) is driven through an
explicit state machine::

    PENDING -> WAITING -> RETRYING -> ... -> SUCCEEDED | DEGRADED | FATAL
                                                         (| CANCELLED)

A semaphore caps how many calls are in flight; it is held only for the call
itself, never during backoff.  A rate-limit signal pauses the shared gate for
the whole target so queued units stop submitting until the window passes;
a unit that was already waiting for a slot checks the gate again once it
holds one.
A fatal error cancels every in-flight and queued unit (asyncio.TaskGroup)
and surfaces as a single AnalysisAbortedError.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Generic, TypeVar

import structlog

from gitanalyzer.config import RetryPolicy
from gitanalyzer.constants import DEFAULT_CONCURRENCY
from gitanalyzer.errors import (
    ABORTING_ERRORS,
    AnalysisAbortedError,
    ConfigError,
    MalformedResponseError,
    RateLimitedError,
    TransientError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


class CallState(StrEnum):
    """Lifecycle of a single orchestrated call."""

    PENDING = "pending"
    WAITING = "waiting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    DEGRADED = "degraded"
    FATAL = "fatal"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({CallState.SUCCEEDED, CallState.DEGRADED, CallState.FATAL, CallState.CANCELLED})


@dataclass
class CallRecord(Generic[T, R]):
    """State of one unit of work, attributed by its submission index."""

    index: int
    unit: T
    state: CallState = CallState.PENDING
    attempts: int = 0
    transient_failures: int = 0
    rate_limit_cycles: int = 0
    result: R | None = None
    error: BaseException | None = None
    history: list[CallState] = field(default_factory=lambda: [CallState.PENDING])

    def transition(self, state: CallState) -> None:
        if self.state in TERMINAL_STATES:
            msg = f"call {self.index} already finished as {self.state}"
            raise RuntimeError(msg)
        self.state = state
        self.history.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state is CallState.SUCCEEDED

    @property
    def degraded(self) -> bool:
        return self.state is CallState.DEGRADED


class RateLimitGate:
    """Shared pause for one external target.

    ``pause_until`` only ever extends the window; ``wait`` returns once the
    latest window has passed.
    """

    def __init__(self, clock: Callable[[], float], sleep: Callable[[float], Awaitable[None]]) -> None:
        self._clock = clock
        self._sleep = sleep
        self._paused_until = 0.0

    @property
    def paused_until(self) -> float:
        return self._paused_until

    def pause_until(self, deadline: float) -> None:
        self._paused_until = max(self._paused_until, deadline)

    def is_paused(self) -> bool:
        return self._paused_until > self._clock()

    async def wait(self) -> None:
        while (delay := self._paused_until - self._clock()) > 0:
            await self._sleep(delay)


class CallOrchestrator:
    """Runs one call per unit under a concurrency cap with retry and backoff."""

    def __init__(
        self,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        policy: RetryPolicy | None = None,
        *,
        target: str = "analyzer",
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if concurrency_limit < 1:
            msg = f"concurrency limit must be positive, got {concurrency_limit}"
            raise ConfigError(msg)
        self._limit = concurrency_limit
        self._policy = policy or RetryPolicy()
        self._target = target
        self._clock = clock
        self._wall_clock = wall_clock or (lambda: datetime.now(UTC))
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._gate = RateLimitGate(clock, sleep)

    async def run(
        self,
        units: Sequence[T],
        call: Callable[[T], Awaitable[R]],
        on_success: Callable[[T, R], Awaitable[None]] | None = None,
    ) -> list[CallRecord[T, R]]:
        """Execute *call* for every unit and return records in submission order.

        *on_success* runs as each call completes, in completion order.

        Raises:
            AnalysisAbortedError: A unit hit NotFoundError or FatalError, or
                raised an unexpected exception; all other units were cancelled.
        """
        records: list[CallRecord[T, R]] = [CallRecord(index=i, unit=u) for i, u in enumerate(units)]
        if not records:
            return records

        semaphore = asyncio.Semaphore(self._limit)
        log = logger.bind(target=self._target)
        log.debug("orchestration started", units=len(records), concurrency=self._limit)

        try:
            async with asyncio.TaskGroup() as tg:
                for record in records:
                    tg.create_task(self._drive(record, call, on_success, semaphore))
        except ExceptionGroup as eg:
            for record in records:
                if record.state not in TERMINAL_STATES:
                    record.transition(CallState.CANCELLED)
            failures = _flatten(eg)
            log.error(
                "orchestration aborted",
                failures=[f"{type(f).__name__}: {f}" for f in failures],
                cancelled=sum(1 for r in records if r.state is CallState.CANCELLED),
            )
            raise AnalysisAbortedError(failures) from eg

        log.info(
            "orchestration finished",
            succeeded=sum(1 for r in records if r.succeeded),
            degraded=sum(1 for r in records if r.degraded),
        )
        return records

    async def _drive(
        self,
        record: CallRecord[T, R],
        call: Callable[[T], Awaitable[R]],
        on_success: Callable[[T, R], Awaitable[None]] | None,
        semaphore: asyncio.Semaphore,
    ) -> None:
        log = logger.bind(target=self._target, unit=record.index)
        while True:
            await self._gate.wait()
            if record.state is CallState.WAITING:
                record.transition(CallState.RETRYING)

            try:
                async with semaphore:
                    # A pause may have started while this unit queued for a slot.
                    if self._gate.is_paused():
                        continue
                    record.attempts += 1
                    result = await call(record.unit)
            except RateLimitedError as exc:
                record.rate_limit_cycles += 1
                if record.rate_limit_cycles > self._policy.max_rate_limit_cycles:
                    self._degrade(record, exc, log)
                    return
                delay = self._rate_limit_delay(exc, record.rate_limit_cycles)
                self._gate.pause_until(self._clock() + delay)
                record.transition(CallState.WAITING)
                log.warning("rate limited, pausing target", delay_s=round(delay, 3), cycle=record.rate_limit_cycles)
                continue
            except TransientError as exc:
                record.transient_failures += 1
                if record.transient_failures > self._policy.max_retries:
                    self._degrade(record, exc, log)
                    return
                delay = self._backoff(record.transient_failures)
                record.transition(CallState.WAITING)
                log.warning(
                    "transient failure, retrying",
                    error=str(exc),
                    delay_s=round(delay, 3),
                    retry=record.transient_failures,
                )
                await self._sleep(delay)
                continue
            except MalformedResponseError as exc:
                self._degrade(record, exc, log)
                return
            except ABORTING_ERRORS as exc:
                record.error = exc
                record.transition(CallState.FATAL)
                log.error("fatal failure, aborting run", error=str(exc), kind=type(exc).__name__)
                raise
            except Exception as exc:
                record.error = exc
                record.transition(CallState.FATAL)
                log.exception("unexpected failure, aborting run")
                raise

            record.result = result
            record.transition(CallState.SUCCEEDED)
            if on_success is not None:
                await on_success(record.unit, result)
            return

    def _degrade(self, record: CallRecord[object, object], exc: BaseException, log: structlog.stdlib.BoundLogger) -> None:
        record.error = exc
        record.transition(CallState.DEGRADED)
        log.warning(
            "unit degraded",
            error=str(exc),
            kind=type(exc).__name__,
            attempts=record.attempts,
        )

    def _backoff(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped at ``max_backoff_seconds``."""
        base = self._policy.base_backoff_seconds * (2 ** (attempt - 1))
        jitter = self._rng.uniform(0.0, self._policy.jitter * base)
        return min(self._policy.max_backoff_seconds, base + jitter)

    def _rate_limit_delay(self, exc: RateLimitedError, cycle: int) -> float:
        delay = self._backoff(cycle)
        if exc.reset_at is not None:
            until_reset = (exc.reset_at - self._wall_clock()).total_seconds()
            delay = max(delay, until_reset)
        return min(self._policy.max_backoff_seconds, delay)


def _flatten(eg: BaseExceptionGroup) -> list[BaseException]:
    flat: list[BaseException] = []
    for exc in eg.exceptions:
        if isinstance(exc, BaseExceptionGroup):
            flat.extend(_flatten(exc))
        else:
            flat.append(exc)
    return flat
