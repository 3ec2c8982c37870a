"""SAP Business One Service Layer HTTP Client.

Low-level HTTP client for Service Layer calls.
Handles the cookie-based login session, pagination, retries, and error handling.
"""

from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
import json
import asyncio
import logging

import aiohttp

from connectors.erp_base import (
    ERPError,
    ERPAuthenticationError,
    ERPNotFoundError,
    ERPRateLimitError,
    ERPValidationError,
)

logger = logging.getLogger(__name__)

SERVICE_ROOT = "/b1s/v1"


def _error_message(text: str) -> str:
    """Pull ``error.message.value`` out of a Service Layer error body."""
    try:
        body = json.loads(text)
    except ValueError:
        return text.strip()[:200]
    error = body.get("error", {}) if isinstance(body, dict) else {}
    message = error.get("message")
    if isinstance(message, dict):
        message = message.get("value")
    return str(message or text.strip()[:200])


def _error_for(status: int, text: str, endpoint: str, headers: Dict[str, str]) -> ERPError:
    message = _error_message(text)
    if status in (401, 403):
        return ERPAuthenticationError(f"Authentication failed: {message}", status, text)
    if status == 404:
        return ERPNotFoundError(f"Not found: {endpoint}", status, text)
    if status == 429:
        return ERPRateLimitError("Service Layer rate limit exceeded", int(float(headers.get("Retry-After", 60))))
    if status == 400:
        return ERPValidationError(f"Rejected by Service Layer: {message}", status, text)
    return ERPError(f"Service Layer error {status}: {message}", status, text)


def _decode(text: str, endpoint: str) -> Dict[str, Any]:
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError as e:
        raise ERPError(f"Invalid JSON from {endpoint}: {e}") from e


@dataclass
class RetryConfig:
    """Backoff for transient Service Layer failures (seconds)."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``: base * factor^attempt, capped."""
        return min(self.base_delay * self.exponential_base ** attempt, self.max_delay)


@dataclass
class SLApiConfig:
    """Configuration for the Service Layer client."""
    base_url: str
    company_db: str
    username: str
    password: str
    verify_ssl: bool = False
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: int = 30

    def url(self, endpoint: str) -> str:
        return f"{self.base_url.rstrip('/')}{SERVICE_ROOT}/{endpoint.lstrip('/')}"


class SLApiClient:
    """HTTP client for the SAP Business One Service Layer.

    Provides:
    - Cookie session login (B1SESSION / ROUTEID)
    - One transparent re-login when the session expires (401)
    - Exponential backoff on 429 / 5xx
    - OData query support

    Usage:
        client = SLApiClient(api_config)
        await client.connect()
        invoices = await client.list("Invoices", filter="...", top=50)
    """

    def __init__(self, api_config: SLApiConfig, sleep=asyncio.sleep):
        self.api_config = api_config
        self._session: Optional[aiohttp.ClientSession] = None
        self._logged_in = False
        self._sleep = sleep

    @property
    def connected(self) -> bool:
        return self._session is not None and self._logged_in

    async def connect(self) -> bool:
        """Open the HTTP session and log in.

        Raises:
            ERPAuthenticationError: Credentials rejected
            ERPError: Service Layer unreachable
        """
        if self._session is None or self._session.closed:
            # Service Layer cookies are set for an IP host; unsafe jar accepts them
            self._session = aiohttp.ClientSession(
                cookie_jar=aiohttp.CookieJar(unsafe=True),
                connector=aiohttp.TCPConnector(ssl=None if self.api_config.verify_ssl else False),
            )
        await self._login()
        return True

    async def disconnect(self) -> None:
        """Log out and close the HTTP session."""
        if self._session:
            if self._logged_in:
                try:
                    async with self._session.post(self.api_config.url("Logout")):
                        pass
                except aiohttp.ClientError as e:
                    logger.debug(f"Logout failed: {e}")
            await self._session.close()
            self._session = None
        self._logged_in = False

    async def _login(self) -> None:
        body = {
            "CompanyDB": self.api_config.company_db,
            "UserName": self.api_config.username,
            "Password": self.api_config.password,
        }
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)
        try:
            async with self._session.post(self.api_config.url("Login"), json=body, timeout=timeout) as response:
                text = await response.text()
                if response.status >= 400:
                    self._logged_in = False
                    raise ERPAuthenticationError(
                        f"Service Layer login failed: {response.status}",
                        response.status,
                        text,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logged_in = False
            raise ERPError(f"Service Layer unreachable: {e}") from e
        self._logged_in = True
        logger.info(f"Logged in to SAP Service Layer ({self.api_config.company_db})")

    async def _send_once(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]],
        data: Optional[Dict[str, Any]],
    ) -> Tuple[int, str, Dict[str, str]]:
        timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)
        async with self._session.request(method, url, params=params, json=data, timeout=timeout) as response:
            return response.status, await response.text(), dict(response.headers)

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """One Service Layer call with re-login and backoff.

        An expired session (401/403) is renewed once per call. 429 waits for
        Retry-After, 5xx and network errors back off exponentially, up to
        ``max_retries`` extra attempts in total.

        Raises:
            ERPAuthenticationError: Still rejected after logging in again
            ERPNotFoundError: 404
            ERPRateLimitError: Still throttled after the last retry
            ERPValidationError: 400 (bad filter, unknown field, ...)
            ERPError: Anything else
        """
        if not self._session:
            raise ERPError("Not connected. Call connect() first.")
        if not self._logged_in:
            await self._login()

        url = self.api_config.url(endpoint)
        retry = self.api_config.retry_config
        relogged = False
        attempt = 0

        while True:
            try:
                status, text, headers = await self._send_once(method, url, params, data)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt >= retry.max_retries:
                    raise ERPError(f"{method} {endpoint} failed after {attempt + 1} attempt(s): {e}") from e
                delay = retry.get_delay(attempt)
                logger.warning(f"{method} {endpoint}: {type(e).__name__}: {e}; retrying in {delay:.1f}s")
                attempt += 1
                await self._sleep(delay)
                continue

            if status < 400:
                return _decode(text, endpoint)

            if status in (401, 403) and not relogged:
                logger.warning("Service Layer session expired, logging in again")
                relogged = True
                await self._login()
                continue

            if status in retry.retry_on_status and attempt < retry.max_retries:
                if status == 429:
                    delay = float(headers.get("Retry-After", retry.max_delay))
                else:
                    delay = retry.get_delay(attempt)
                logger.warning(
                    f"{method} {endpoint} answered {status}; retrying in {delay:.1f}s "
                    f"({attempt + 1}/{retry.max_retries})"
                )
                attempt += 1
                await self._sleep(delay)
                continue

            raise _error_for(status, text, endpoint, headers)

    async def get(self, endpoint: str, key: str, select: Optional[List[str]] = None) -> Dict[str, Any]:
        """Get a single entity by key.

        Args:
            endpoint: Entity set (e.g., "BusinessPartners")
            key: Already-quoted key (``123`` or ``'C0001'``)
            select: Fields to include
        """
        params = {"$select": ",".join(select)} if select else None
        return await self._request("GET", f"{endpoint}({key})", params=params)

    async def list(
        self,
        endpoint: str,
        filter: Optional[str] = None,
        select: Optional[List[str]] = None,
        orderby: Optional[str] = None,
        top: Optional[int] = None,
        skip: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """List entities with OData query options."""
        params = {}

        if filter:
            params["$filter"] = filter
        if select:
            params["$select"] = ",".join(select)
        if orderby:
            params["$orderby"] = orderby
        if top:
            params["$top"] = str(top)
        if skip:
            params["$skip"] = str(skip)

        response = await self._request("GET", endpoint, params=params)
        return response.get("value", [])

    async def list_paged(
        self,
        endpoint: str,
        filter: Optional[str] = None,
        select: Optional[List[str]] = None,
        orderby: Optional[str] = None,
        page_size: int = 50,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """List entities page by page, stopping at ``limit`` results."""
        all_results: List[Dict[str, Any]] = []
        skip = 0

        while True:
            top = page_size
            if limit is not None:
                top = min(page_size, limit - len(all_results))
                if top <= 0:
                    break

            results = await self.list(
                endpoint,
                filter=filter,
                select=select,
                orderby=orderby,
                top=top,
                skip=skip,
            )

            if not results:
                break

            all_results.extend(results)

            if len(results) < top:
                break

            skip += len(results)

        return all_results

    async def update(self, endpoint: str, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """PATCH an entity. The Service Layer answers 204 on success."""
        return await self._request("PATCH", f"{endpoint}({key})", data=data)
