"""Reconnection policy for the transport session.

Attempt ``n`` waits ``min(n * step, cap)`` seconds and then runs the
supplied attempt function, bounded by a per-attempt timeout. Only one
reconnection runs at a time; a disconnect reported while one is in flight
is ignored.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.config import SessionConfig
from core.observability.metrics import record_reconnection

logger = logging.getLogger(__name__)

AttemptFn = Callable[[int], Awaitable[bool]]
RecoveredHook = Callable[[int], Awaitable[None]]
ExhaustedHook = Callable[["ReconnectionExhausted"], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


class ReconnectionExhausted(Exception):
    """All reconnection attempts were used up."""
    def __init__(self, attempt: int, max_attempts: int):
        super().__init__(
            f"Reconnection attempt {attempt} refused: maximum is {max_attempts}"
        )
        self.attempt = attempt
        self.max_attempts = max_attempts


class ReconnectionPolicy:
    """Linear backoff with a cap and a maximum attempt count.

    Usage:
        policy = ReconnectionPolicy.from_config(config.session)
        policy.on_disconnect(supervisor._reconnect_attempt,
                             on_recovered=..., on_exhausted=...)
    """

    def __init__(
        self,
        step_seconds: float = 5.0,
        cap_seconds: float = 30.0,
        max_attempts: int = 5,
        attempt_timeout_seconds: float = 180.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        if step_seconds < 0 or cap_seconds < 0:
            raise ValueError("Backoff step and cap must not be negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.step_seconds = step_seconds
        self.cap_seconds = cap_seconds
        self.max_attempts = max_attempts
        self.attempt_timeout_seconds = attempt_timeout_seconds
        self._sleep = sleep
        self._active = False
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: SessionConfig, sleep: SleepFn = asyncio.sleep) -> "ReconnectionPolicy":
        return cls(
            step_seconds=config.reconnect_step_seconds,
            cap_seconds=config.reconnect_cap_seconds,
            max_attempts=config.reconnect_max_attempts,
            attempt_timeout_seconds=config.reconnect_attempt_timeout_seconds,
            sleep=sleep,
        )

    def allows(self, attempt: int) -> bool:
        return 1 <= attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before attempt ``attempt`` (1-based).

        Raises:
            ReconnectionExhausted: attempt exceeds the maximum
        """
        if attempt < 1:
            raise ValueError(f"Attempts are numbered from 1, got {attempt}")
        if attempt > self.max_attempts:
            raise ReconnectionExhausted(attempt, self.max_attempts)
        return min(attempt * self.step_seconds, self.cap_seconds)

    @property
    def in_progress(self) -> bool:
        return self._active

    async def run(
        self,
        attempt_fn: AttemptFn,
        on_recovered: Optional[RecoveredHook] = None,
        on_exhausted: Optional[ExhaustedHook] = None,
    ) -> bool:
        """Retry until ``attempt_fn`` returns True or attempts run out.

        Returns:
            True if the session was re-established
        """
        self._active = True
        try:
            attempt = 1
            while True:
                try:
                    delay = self.delay_for(attempt)
                except ReconnectionExhausted as e:
                    logger.error(str(e))
                    record_reconnection("exhausted")
                    if on_exhausted:
                        await on_exhausted(e)
                    return False

                logger.info(
                    f"Reconnection attempt {attempt}/{self.max_attempts} in {delay:.0f}s"
                )
                await self._sleep(delay)

                try:
                    ok = await asyncio.wait_for(
                        attempt_fn(attempt), timeout=self.attempt_timeout_seconds
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Reconnection attempt {attempt} timed out after "
                        f"{self.attempt_timeout_seconds:.0f}s"
                    )
                    ok = False
                except Exception as e:
                    logger.warning(f"Reconnection attempt {attempt} failed: {type(e).__name__}: {e}")
                    ok = False

                if ok:
                    logger.info(f"Reconnected on attempt {attempt}")
                    record_reconnection("recovered")
                    if on_recovered:
                        await on_recovered(attempt)
                    return True

                attempt += 1
        finally:
            self._active = False

    def on_disconnect(
        self,
        attempt_fn: AttemptFn,
        on_recovered: Optional[RecoveredHook] = None,
        on_exhausted: Optional[ExhaustedHook] = None,
    ) -> Optional[asyncio.Task]:
        """Schedule a reconnection run unless one is already in flight.

        Returns:
            The scheduled task, or None when a run is already in progress
        """
        if self._active:
            logger.debug("Reconnection already in progress, ignoring disconnect")
            return None

        # Claimed before the task starts so a second call in the same tick is refused
        self._active = True
        record_reconnection("started")
        self._task = asyncio.create_task(
            self.run(attempt_fn, on_recovered, on_exhausted),
            name="session-reconnect",
        )
        return self._task

    async def cancel(self) -> None:
        """Cancel an in-flight reconnection run."""
        task = self._task
        if task is asyncio.current_task():
            return
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._active = False
