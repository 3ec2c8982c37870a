"""WhatsApp Web transport through an HTTP gateway.

The gateway sidecar runs the browser-based WhatsApp Web client and exposes
a small REST API. This session polls the gateway's session status and turns
status changes into lifecycle events:

    SCAN_QR_CODE                 -> AuthChallenge(code)
    AUTHENTICATED                -> Authenticated
    WORKING                      -> ReadySignal (preceded by Authenticated
                                    right after a pairing)
    CONFLICT                     -> Conflict
    FAILED before first ready    -> AuthFailure
    FAILED after first ready     -> TransportFailed
    STOPPED after first ready    -> Disconnected
"""

import asyncio
import base64
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.config import TransportConfig
from core.models.lifecycle import (
    AuthChallenge,
    AuthFailure,
    Authenticated,
    Conflict,
    Disconnected,
    ReadySignal,
    TransportEvent,
    TransportFailed,
)
from transport.base import (
    EventEmitter,
    OutboundMessage,
    ProbeResult,
    ProbeStatus,
    SendResult,
    TransportError,
    TransportSession,
)

logger = logging.getLogger(__name__)

# Consecutive status-poll failures before the watcher gives up
MAX_POLL_FAILURES = 3


def chat_id(phone_digits: str) -> str:
    """Gateway chat id for a normalized phone number."""
    return f"{phone_digits}@c.us"


def events_for_status(
    previous: Optional[str],
    current: str,
    ever_ready: bool,
) -> List[TransportEvent]:
    """Lifecycle events implied by a gateway status change.

    SCAN_QR_CODE is not handled here since the pairing code has to be
    fetched separately.
    """
    if current == previous:
        return []

    if current == "AUTHENTICATED":
        return [Authenticated()]

    if current == "WORKING":
        if previous == "SCAN_QR_CODE":
            return [Authenticated(), ReadySignal()]
        return [ReadySignal()]

    if current == "CONFLICT":
        return [Conflict(state=current)]

    if current == "FAILED":
        if ever_ready:
            return [TransportFailed(reason="gateway session failed")]
        return [AuthFailure(reason="gateway session failed before becoming ready")]

    if current == "STOPPED" and ever_ready:
        return [Disconnected(reason="gateway session stopped")]

    return []


class WhatsAppGatewaySession(TransportSession):
    """TransportSession backed by a WhatsApp Web HTTP gateway.

    Usage:
        session = WhatsAppGatewaySession(config.transport)
        await session.start(supervisor.dispatch)
        result = await session.send("5491155550000", OutboundMessage(text="hola"))
    """

    def __init__(
        self,
        config: TransportConfig,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self._http = http_session
        self._owns_http = http_session is None
        self._emit: Optional[EventEmitter] = None
        self._watcher: Optional[asyncio.Task] = None
        self._last_status: Optional[str] = None
        self._ever_ready = False

    @property
    def name(self) -> str:
        return self.config.session_name

    @property
    def last_status(self) -> Optional[str]:
        return self._last_status

    # =========================================================================
    # HTTP
    # =========================================================================

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["X-Api-Key"] = self.config.api_key
        return headers

    async def _ensure_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds),
            )
            self._owns_http = True
        return self._http

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Call the gateway and return the decoded JSON body (or None).

        Raises:
            TransportError: Connection failure or HTTP status >= 400
        """
        http = await self._ensure_http()
        url = f"{self.config.gateway_url}{path}"
        try:
            async with http.request(
                method,
                url,
                headers=self._headers(),
                json=data,
                params=params,
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise TransportError(
                        f"Gateway {method} {path} failed with {response.status}",
                        response.status,
                        text,
                    )
                if not text:
                    return None
                try:
                    return json.loads(text)
                except json.JSONDecodeError:
                    return text
        except aiohttp.ClientError as e:
            raise TransportError(f"Gateway unreachable: {e}") from e

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, emit: EventEmitter) -> None:
        self._emit = emit
        self._last_status = None
        self._ever_ready = False

        try:
            await self._request("POST", f"/api/sessions/{self.name}/start")
        except TransportError as e:
            # 422: the gateway already runs this session; keep watching it
            if e.status_code != 422:
                raise
            logger.info(f"Gateway session {self.name} already started")

        await self._cancel_watcher()
        self._watcher = asyncio.create_task(self._watch(), name=f"gateway-watch-{self.name}")

    async def _fetch_status(self) -> str:
        body = await self._request("GET", f"/api/sessions/{self.name}")
        if isinstance(body, dict):
            return str(body.get("status", "")).upper()
        return ""

    async def _fetch_pairing_code(self) -> Optional[str]:
        try:
            body = await self._request(
                "GET", f"/api/{self.name}/auth/qr", params={"format": "raw"}
            )
        except TransportError as e:
            logger.warning(f"Could not fetch pairing code: {e}")
            return None
        if isinstance(body, dict):
            return body.get("value")
        return body if isinstance(body, str) else None

    async def _handle_status(self, status: str) -> None:
        previous = self._last_status
        if status == previous:
            return
        self._last_status = status
        logger.info(f"Gateway session {self.name}: {previous} -> {status}")

        if status == "SCAN_QR_CODE":
            code = await self._fetch_pairing_code()
            if code:
                await self._emit(AuthChallenge(code=code))
            return

        for event in events_for_status(previous, status, self._ever_ready):
            if isinstance(event, ReadySignal):
                self._ever_ready = True
            await self._emit(event)

    async def _watch(self) -> None:
        failures = 0
        while True:
            try:
                status = await self._fetch_status()
                failures = 0
                await self._handle_status(status)
            except TransportError as e:
                failures += 1
                logger.warning(f"Status poll failed ({failures}/{MAX_POLL_FAILURES}): {e}")
                if failures >= MAX_POLL_FAILURES:
                    await self._emit(TransportFailed(reason=f"gateway unreachable: {e}"))
                    return
            await asyncio.sleep(self.config.poll_interval_seconds)

    async def _cancel_watcher(self) -> None:
        if self._watcher and not self._watcher.done():
            self._watcher.cancel()
            try:
                await self._watcher
            except asyncio.CancelledError:
                pass
        self._watcher = None

    async def stop(self) -> None:
        await self._cancel_watcher()
        try:
            await self._request("POST", f"/api/sessions/{self.name}/stop")
        except TransportError as e:
            logger.warning(f"Gateway stop request failed: {e}")
        await self.close()
        self._emit = None

    async def close(self) -> None:
        """Release the HTTP session without stopping the gateway session."""
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    # =========================================================================
    # Probe and Send
    # =========================================================================

    async def probe_state(self) -> ProbeResult:
        try:
            body = await self._request("GET", f"/api/sessions/{self.name}/me")
        except TransportError as e:
            return ProbeResult(status=ProbeStatus.ERROR, detail=str(e))

        if isinstance(body, dict) and body.get("id"):
            return ProbeResult(status=ProbeStatus.CONNECTED, identity=str(body["id"]))
        return ProbeResult(status=ProbeStatus.UNKNOWN, detail="gateway returned no identity")

    async def send(self, recipient: str, message: OutboundMessage) -> SendResult:
        if message.attachment is not None:
            payload = {
                "session": self.name,
                "chatId": chat_id(recipient),
                "caption": message.text,
                "file": {
                    "mimetype": "application/pdf",
                    "filename": message.attachment.name,
                    "data": base64.b64encode(message.attachment.read_bytes()).decode("ascii"),
                },
            }
            path = "/api/sendFile"
        else:
            payload = {
                "session": self.name,
                "chatId": chat_id(recipient),
                "text": message.text,
            }
            path = "/api/sendText"

        try:
            body = await self._request("POST", path, data=payload)
        except TransportError as e:
            if 400 <= e.status_code < 500:
                return SendResult.rejected(f"{e.status_code}: {e.response_body[:200]}")
            raise

        message_id = None
        if isinstance(body, dict):
            raw_id = body.get("id")
            if isinstance(raw_id, dict):
                message_id = raw_id.get("_serialized") or raw_id.get("id")
            elif raw_id:
                message_id = str(raw_id)
        return SendResult.ok(message_id)
