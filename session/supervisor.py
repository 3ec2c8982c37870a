"""Session supervisor - owns the transport session and its state machine.

Everything that can change the session state goes through ``dispatch``:
transport callbacks, heartbeat probes, reconnection attempts, operator
start/stop. ``dispatch`` computes the next state with ``next_state`` and
then runs the side effects attached to the event.

The orchestrator only reads ``state`` / ``is_ready`` and calls ``send``;
it never sees raw transport exceptions.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel

from alerts.channels import AlertingChannel
from alerts.email import AlertDeliveryError
from core.config import SessionConfig
from core.models.lifecycle import (
    CONNECTION_LOST_EVENTS,
    AlertSeverity,
    AuthChallenge,
    AuthFailure,
    Authenticated,
    Disconnected,
    HeartbeatLost,
    LifecycleEvent,
    ProbeConfirmed,
    ProbeFailed,
    ProbeRecovered,
    ReconnectStarted,
    SessionAlert,
    SessionFailed,
    SessionState,
    SessionStopped,
    StartRequested,
    next_state,
    severity_for_age,
)
from core.observability.metrics import record_probe, record_processing_time, record_state_change
from session.reconnection import ReconnectionExhausted, ReconnectionPolicy
from session.session_info import SessionInfo, SessionInfoStore
from transport.base import (
    OutboundMessage,
    ProbeResult,
    ProbeStatus,
    SendResult,
    TransportSession,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionNotReady(Exception):
    """A send was requested while the session is not READY."""
    def __init__(self, state: SessionState):
        super().__init__(f"Transport session is {state.value}, not READY")
        self.state = state


class SessionSnapshot(BaseModel):
    """Read-only view of the supervisor for the dashboard and scripts."""
    state: SessionState
    state_since: datetime
    session_age_hours: Optional[float] = None
    last_auth: Optional[datetime] = None
    pairing_code: Optional[str] = None
    last_probe_at: Optional[datetime] = None
    last_probe_status: Optional[ProbeStatus] = None
    consecutive_probe_failures: int = 0
    reconnecting: bool = False
    last_alert_at: Optional[datetime] = None


class SessionSupervisor:
    """Composes a TransportSession and a ReconnectionPolicy into one state machine.

    Usage:
        supervisor = SessionSupervisor(transport, alert_channel, config.session)
        await supervisor.start()
        supervisor.start_timers()
        ...
        result = await supervisor.send(phone, message)
    """

    def __init__(
        self,
        transport: TransportSession,
        alerts: AlertingChannel,
        config: Optional[SessionConfig] = None,
        policy: Optional[ReconnectionPolicy] = None,
        info_store: Optional[SessionInfoStore] = None,
        clock: Clock = _utcnow,
        sleep: Callable = asyncio.sleep,
    ):
        self.config = config or SessionConfig()
        self._transport = transport
        self._alerts = alerts
        self._policy = policy or ReconnectionPolicy.from_config(self.config, sleep=sleep)
        self._info_store = info_store
        self._clock = clock
        self._sleep = sleep

        self._state = SessionState.UNINITIALIZED
        self._state_since = clock()
        self._ready = asyncio.Event()
        self._lost = asyncio.Event()
        self._lock = asyncio.Lock()

        self._pairing_code: Optional[str] = None
        self._probe_failures = 0
        self._last_probe_at: Optional[datetime] = None
        self._last_probe_status: Optional[ProbeStatus] = None
        self._establishing = False
        self._readiness_task: Optional[asyncio.Task] = None
        self._timers: List[asyncio.Task] = []

        self._info = info_store.load() if info_store else SessionInfo()

    # =========================================================================
    # State queries
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def reconnecting(self) -> bool:
        return self._policy.in_progress

    def session_age_hours(self, now: Optional[datetime] = None) -> Optional[float]:
        """Hours since the last successful authentication, if known."""
        if self._info.last_auth is None:
            return None
        now = now or self._clock()
        return (now - self._info.last_auth).total_seconds() / 3600

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            state_since=self._state_since,
            session_age_hours=self.session_age_hours(),
            last_auth=self._info.last_auth,
            pairing_code=self._pairing_code,
            last_probe_at=self._last_probe_at,
            last_probe_status=self._last_probe_status,
            consecutive_probe_failures=self._probe_failures,
            reconnecting=self._policy.in_progress,
            last_alert_at=self._info.last_alert_at,
        )

    # =========================================================================
    # Event dispatch
    # =========================================================================

    def _set_state(self, new: SessionState) -> None:
        old = self._state
        self._state = new
        self._state_since = self._clock()
        if new is SessionState.READY:
            self._ready.set()
        else:
            self._ready.clear()
        record_state_change(old.value, new.value)
        log = logger.warning if new in (SessionState.DEGRADED, SessionState.RECONNECTING) else logger.info
        if new is SessionState.FAILED:
            log = logger.error
        log(f"Session state {old.value} -> {new.value}")

    async def dispatch(self, event: LifecycleEvent) -> SessionState:
        """Apply one lifecycle event and run its side effects."""
        old = self._state
        new = next_state(old, event)
        if new is not old:
            self._set_state(new)
        else:
            logger.debug(f"{type(event).__name__} leaves session {old.value}")
        await self._on_event(event, old, new)
        return new

    async def _on_event(self, event: LifecycleEvent, old: SessionState, new: SessionState) -> None:
        if old is SessionState.FAILED and new is SessionState.FAILED:
            return

        if isinstance(event, AuthChallenge) and new in (
            SessionState.AWAITING_CREDENTIAL, SessionState.RECONNECTING
        ):
            self._pairing_code = event.code
            logger.warning("Session needs pairing: scan the code shown on the dashboard")

        elif isinstance(event, Authenticated) and new is SessionState.AUTHENTICATED:
            self._pairing_code = None
            self._mark_authenticated()
            self._schedule_readiness_confirmation()

        if new is SessionState.READY and old is not SessionState.READY:
            self._pairing_code = None
            self._probe_failures = 0
            if self._info.last_auth is None:
                self._mark_authenticated()
            self._cancel_readiness_confirmation()

        if isinstance(event, AuthFailure) and old is not SessionState.UNINITIALIZED:
            await self._alert(AlertSeverity.FAILED, "Transport authentication failed", detail=event.reason)

        if isinstance(event, (SessionFailed, SessionStopped)):
            self._lost.set()
            self._cancel_readiness_confirmation()
        elif isinstance(event, CONNECTION_LOST_EVENTS) and not isinstance(event, ReconnectStarted):
            if new is SessionState.RECONNECTING:
                self._lost.set()
                self._cancel_readiness_confirmation()
                if not self._establishing:
                    self._begin_reconnection(event)

    # =========================================================================
    # Readiness fallback
    # =========================================================================

    def _schedule_readiness_confirmation(self) -> None:
        self._cancel_readiness_confirmation()
        self._readiness_task = asyncio.create_task(
            self._confirm_readiness(), name="session-readiness-probe"
        )

    def _cancel_readiness_confirmation(self) -> None:
        task = self._readiness_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._readiness_task = None

    async def _confirm_readiness(self) -> None:
        """Probe after authentication in case the ready signal never comes.

        Only a CONNECTED probe moves AUTHENTICATED to READY; elapsed time
        alone never does.
        """
        await self._sleep(self.config.ready_grace_seconds)
        attempts = self.config.readiness_probe_attempts
        for attempt in range(1, attempts + 1):
            if self._state is not SessionState.AUTHENTICATED:
                return
            result = await self._probe()
            if self._state is not SessionState.AUTHENTICATED:
                return
            if result.connected:
                logger.info(f"Readiness confirmed by probe (attempt {attempt}/{attempts})")
                await self.dispatch(ProbeConfirmed())
                return
            logger.info(f"Readiness probe {attempt}/{attempts}: {result.status.value}")
            if attempt < attempts:
                await self._sleep(self.config.readiness_probe_interval_seconds)
        logger.warning("Ready signal missing and probes could not confirm the session")

    async def _wait_until_ready(self) -> bool:
        """Wait for READY; the limit grows to the pairing timeout once a code is shown."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            if self._state is SessionState.READY:
                return True
            if self._lost.is_set():
                return False
            limit = (
                self.config.pairing_timeout_seconds
                if self._pairing_code
                else self.config.ready_timeout_seconds
            )
            remaining = started + limit - loop.time()
            if remaining <= 0:
                logger.warning(f"Session not ready after {limit:.0f}s")
                return False

            waiters = [
                asyncio.ensure_future(self._ready.wait()),
                asyncio.ensure_future(self._lost.wait()),
            ]
            try:
                await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

    # =========================================================================
    # Establishing the session
    # =========================================================================

    async def _teardown_transport(self) -> None:
        try:
            await self._transport.stop()
        except Exception as e:
            logger.warning(f"Transport teardown failed: {type(e).__name__}: {e}")

    async def _establish(self) -> bool:
        """Start the transport and wait for READY. Never raises."""
        self._lost.clear()
        try:
            await asyncio.wait_for(
                self._transport.start(self.dispatch),
                timeout=self.config.start_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Transport start timed out after {self.config.start_timeout_seconds:.0f}s")
            return False
        except Exception as e:
            logger.warning(f"Transport start failed: {type(e).__name__}: {e}")
            return False
        return await self._wait_until_ready()

    async def start(self) -> bool:
        """Start the session, retrying a few times before giving up.

        Returns:
            True once READY. False when every attempt failed (the session is
            then FAILED and a critical alert was sent) or when the session
            was already live.
        """
        if self._state not in (SessionState.UNINITIALIZED, SessionState.FAILED):
            logger.info(f"start() ignored: session is {self._state.value}")
            return self.is_ready

        await self.dispatch(StartRequested())
        attempts = self.config.startup_attempts
        self._establishing = True
        try:
            for attempt in range(1, attempts + 1):
                logger.info(f"Starting transport session (attempt {attempt}/{attempts})")
                if await self._establish():
                    return True
                if self._state is SessionState.FAILED:
                    break
                if attempt < attempts:
                    await self._teardown_transport()
                    await self._sleep(attempt * self.config.startup_retry_step_seconds)
        finally:
            self._establishing = False

        await self._teardown_transport()
        await self.dispatch(SessionFailed(reason=f"startup failed after {attempts} attempts"))
        await self._alert(
            AlertSeverity.CRITICAL,
            "Transport session could not be started",
            detail=f"All {attempts} startup attempts failed. Manual intervention required.",
        )
        return False

    async def stop(self) -> None:
        """Stop timers, any reconnection, and the transport."""
        for task in self._timers:
            task.cancel()
        for task in self._timers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._timers = []
        self._cancel_readiness_confirmation()
        await self._policy.cancel()
        await self._teardown_transport()
        await self.dispatch(SessionStopped())

    async def refresh(self) -> bool:
        """Tear down and re-establish the session to pre-empt transport expiry."""
        logger.info("Refreshing transport session")
        await self._teardown_transport()
        await self.dispatch(SessionStopped())
        await self._sleep(self.config.refresh_pause_seconds)

        await self.dispatch(StartRequested())
        self._establishing = True
        try:
            ok = await self._establish()
        finally:
            self._establishing = False

        if ok:
            self._mark_authenticated()
            await self._alert(AlertSeverity.RECOVERED, "Transport session refreshed")
            return True

        logger.warning("Session refresh failed, starting reconnection")
        await self.dispatch(Disconnected(reason="refresh failed"))
        return False

    # =========================================================================
    # Reconnection
    # =========================================================================

    def _begin_reconnection(self, cause: LifecycleEvent) -> None:
        task = self._policy.on_disconnect(
            self._reconnect_attempt,
            on_recovered=self._on_reconnected,
            on_exhausted=self._on_reconnect_exhausted,
        )
        if task is not None:
            logger.warning(f"Connection lost ({type(cause).__name__}), reconnecting")

    async def _reconnect_attempt(self, attempt: int) -> bool:
        if self._state is SessionState.FAILED:
            return False
        await self.dispatch(ReconnectStarted(attempt=attempt))
        await self._teardown_transport()
        return await self._establish()

    async def _on_reconnected(self, attempt: int) -> None:
        await self._alert(
            AlertSeverity.RECOVERED,
            f"Transport session re-established after {attempt} attempt(s)",
        )

    async def _on_reconnect_exhausted(self, error: ReconnectionExhausted) -> None:
        await self._teardown_transport()
        await self.dispatch(SessionFailed(reason=str(error)))
        await self._alert(
            AlertSeverity.CRITICAL,
            "Transport session lost: reconnection attempts exhausted",
            detail=f"Gave up after {error.max_attempts} attempts. Manual intervention required.",
        )

    # =========================================================================
    # Probing, heartbeat and health check
    # =========================================================================

    async def _probe(self) -> ProbeResult:
        async with self._lock:
            try:
                result = await asyncio.wait_for(
                    self._transport.probe_state(),
                    timeout=self.config.probe_timeout_seconds,
                )
            except asyncio.TimeoutError:
                result = ProbeResult(status=ProbeStatus.ERROR, detail="probe timed out")
            except Exception as e:
                result = ProbeResult(status=ProbeStatus.ERROR, detail=f"{type(e).__name__}: {e}")
        self._last_probe_at = self._clock()
        self._last_probe_status = result.status
        record_probe(result.connected)
        return result

    async def _probe_failed(self, reason: Optional[str]) -> None:
        self._probe_failures += 1
        threshold = self.config.heartbeat_failure_threshold
        logger.warning(f"Heartbeat probe failed ({self._probe_failures}/{threshold}): {reason}")
        if self._probe_failures >= threshold:
            failures = self._probe_failures
            self._probe_failures = 0
            await self.dispatch(HeartbeatLost(consecutive_failures=failures))
        else:
            await self.dispatch(ProbeFailed(reason=reason or "probe failed"))

    async def heartbeat(self) -> Optional[ProbeResult]:
        """Probe the session once. Only runs while READY or DEGRADED."""
        if self._state not in (SessionState.READY, SessionState.DEGRADED):
            return None
        result = await self._probe()
        if result.connected:
            self._probe_failures = 0
            if self._state is SessionState.DEGRADED:
                await self.dispatch(ProbeRecovered())
        else:
            await self._probe_failed(result.detail or result.status.value)
        return result

    def _age_alert_due(self, now: datetime) -> bool:
        last = self._info.last_alert_at
        if last is None:
            return True
        return (now - last).total_seconds() >= self.config.alert_cooldown_hours * 3600

    async def health_check(self) -> None:
        """Daily check: reconnect if down, alert on age, refresh when stale."""
        if self._state not in (SessionState.READY, SessionState.DEGRADED):
            if self._policy.in_progress or self._establishing or self._state in (
                SessionState.RECONNECTING,
                SessionState.FAILED,
                SessionState.AWAITING_CREDENTIAL,
                SessionState.UNINITIALIZED,
            ):
                logger.info(f"Health check skipped: session is {self._state.value}")
                return
            await self.dispatch(Disconnected(reason=f"health check found session {self._state.value}"))
            return

        now = self._clock()
        age = self.session_age_hours(now)
        if age is not None:
            logger.info(f"Health check: session age {age:.1f}h")
            if age >= self.config.alert_threshold_hours and self._age_alert_due(now):
                await self._alert(
                    severity_for_age(age),
                    f"Transport session is {age:.0f} hours old",
                    detail="Re-link the device before the transport expires the session.",
                )
                self._info.last_alert_at = now
                self._save_info()

            if age > self.config.staleness_threshold_hours:
                await self.refresh()
                return

        await self.heartbeat()

    def start_timers(self) -> None:
        """Start the heartbeat and daily health-check loops."""
        if self._timers:
            return
        self._timers = [
            asyncio.create_task(
                self._every(self.config.heartbeat_interval_seconds, self.heartbeat),
                name="session-heartbeat",
            ),
            asyncio.create_task(
                self._every(self.config.health_check_interval_seconds, self.health_check),
                name="session-health-check",
            ),
        ]

    async def _every(self, interval: float, job: Callable) -> None:
        while True:
            await self._sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception(f"Session timer job {job.__name__} failed")

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, recipient: str, message: OutboundMessage) -> SendResult:
        """Send through the transport.

        Raises:
            SessionNotReady: The session is not READY

        Timeouts and transport exceptions come back as a rejected result.
        """
        if self._state is not SessionState.READY:
            raise SessionNotReady(self._state)

        async with self._lock:
            if self._state is not SessionState.READY:
                raise SessionNotReady(self._state)
            started = time.monotonic()
            try:
                return await asyncio.wait_for(
                    self._transport.send(recipient, message),
                    timeout=self.config.send_timeout_seconds,
                )
            except asyncio.TimeoutError:
                return SendResult.rejected(
                    f"send timed out after {self.config.send_timeout_seconds:.0f}s"
                )
            except Exception as e:
                return SendResult.rejected(f"{type(e).__name__}: {e}")
            finally:
                record_processing_time("send", (time.monotonic() - started) * 1000)

    # =========================================================================
    # Alerts and persisted info
    # =========================================================================

    async def _alert(self, severity: AlertSeverity, message: str, detail: Optional[str] = None) -> None:
        alert = SessionAlert(
            severity=severity,
            message=message,
            session_age_hours=round(self.session_age_hours() or 0.0, 1),
            created_at=self._clock(),
            detail=detail,
        )
        try:
            await self._alerts.send_alert(alert)
        except AlertDeliveryError as e:
            logger.error(f"Could not deliver {severity.value} alert '{message}': {e}")

    def _mark_authenticated(self) -> None:
        self._info.last_auth = self._clock()
        self._info.last_alert_at = None
        self._save_info()

    def _save_info(self) -> None:
        if self._info_store is None:
            return
        try:
            self._info_store.save(self._info)
        except OSError as e:
            logger.warning(f"Could not persist session info: {e}")
