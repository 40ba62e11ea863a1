"""Asynchronous client for the cloud REST API.

:class:`CloudClient` wraps :class:`httpx.AsyncClient` with bearer token
injection, transparent token refresh, retry with exponential backoff, and
mapping of error status codes onto the :mod:`cloudtop.exceptions`
hierarchy.  Responses are decoded into the frozen resource models of
:mod:`cloudtop.models`.

See Also:
    :class:`~cloudtop.auth.device_flow.DeviceFlowClient` -- issues and
    refreshes the credential used here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from cloudtop import __version__
from cloudtop.auth.device_flow import AccessCredential, Clock, utcnow
from cloudtop.exceptions import (
    AuthError,
    CloudtopError,
    ConnectionError_,
    NotFoundError,
    ServerError,
)
from cloudtop.models import Agent, CoreInstance, MetricsSnapshot, Pipeline, Project

logger = logging.getLogger(__name__)

T = TypeVar("T")

REFRESH_LEEWAY = 30.0
"""Refresh the access token when it expires within this many seconds."""

Refresher = Callable[[str], Awaitable[AccessCredential]]


def format_duration(seconds: float) -> str:
    """Format seconds as an API duration string, e.g. ``-60s``."""
    return f"{int(seconds)}s"


class CloudClient:
    """Asynchronous cloud API client.  Must be used as an async context manager.

    Args:
        base_url: Cloud API base URL, e.g. ``https://cloud-api.calyptia.com``.
        credential: Access credential injected as a bearer token.  May be set
            later with :meth:`set_credential`.
        refresher: Coroutine exchanging a refresh token for a new
            credential, usually :meth:`DeviceFlowClient.refresh`.
        on_refresh: Called with every refreshed credential so it can be
            persisted.
        timeout: Request timeout in seconds.
        verify_ssl: Verify TLS certificates.
        max_retries: Retries on 5xx responses and connection errors.
        transport: Optional httpx transport, used by tests.
        clock: Current UTC time for expiry checks.
        sleep: Awaitable sleep used between retries.

    Example::

        async with CloudClient(url, credential=cred) as client:
            projects = await client.list_projects()
    """

    def __init__(
        self,
        base_url: str,
        credential: Optional[AccessCredential] = None,
        refresher: Optional[Refresher] = None,
        on_refresh: Optional[Callable[[AccessCredential], None]] = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credential = credential
        self._refresher = refresher
        self._on_refresh = on_refresh
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._max_retries = max_retries
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._refresh_lock = asyncio.Lock()
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> CloudClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            verify=self._verify_ssl,
            follow_redirects=True,
            transport=self._transport,
            headers={"User-Agent": f"cloudtop/{__version__}"},
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def credential(self) -> Optional[AccessCredential]:
        return self._credential

    def set_credential(self, credential: Optional[AccessCredential]) -> None:
        self._credential = credential

    # ------------------------------------------------------------------ #
    # Resources
    # ------------------------------------------------------------------ #

    async def list_projects(self) -> list[Project]:
        return await self._get_list("/v1/projects", Project)

    async def list_agents(self, project_id: str) -> list[Agent]:
        return await self._get_list(f"/v1/projects/{_esc(project_id)}/agents", Agent)

    async def list_core_instances(self, project_id: str) -> list[CoreInstance]:
        return await self._get_list(
            f"/v1/projects/{_esc(project_id)}/aggregators", CoreInstance
        )

    async def list_pipelines(self, core_instance_id: str) -> list[Pipeline]:
        return await self._get_list(
            f"/v1/aggregators/{_esc(core_instance_id)}/pipelines", Pipeline
        )

    async def project_metrics(
        self, project_id: str, start: float, interval: float
    ) -> MetricsSnapshot:
        """Fetch project metrics for the window ``[now + start, now]``.

        Args:
            project_id: Project to fetch.
            start: Window start in seconds relative to now (negative).
            interval: Aggregation interval in seconds.
        """
        return await self._get_metrics(f"/v1/projects/{_esc(project_id)}/metrics", start, interval)

    async def agent_metrics(self, agent_id: str, start: float, interval: float) -> MetricsSnapshot:
        return await self._get_metrics(f"/v1/agents/{_esc(agent_id)}/metrics", start, interval)

    # ------------------------------------------------------------------ #
    # Request pipeline
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an authenticated request with retry and error mapping.

        Raises:
            AuthError: On 401 / 403, or when no credential is available.
            NotFoundError: On 404.
            ServerError: On 5xx after all retries, or any other error status.
            ConnectionError_: On network / timeout errors after all retries.
        """
        headers = {"Authorization": f"Bearer {await self._access_token()}"}
        response = await self._execute_with_retry(method, path, headers, dict(params or {}))
        self._map_response_error(response)
        return response

    async def _access_token(self) -> str:
        if self._credential is None:
            raise AuthError("Not logged in. Run 'cloudtop auth login' first.")
        if self._credential.is_expired(self._clock(), leeway=REFRESH_LEEWAY):
            await self._refresh()
        assert self._credential is not None
        return self._credential.access_token

    async def _refresh(self) -> None:
        async with self._refresh_lock:
            current = self._credential
            if current is None or not current.is_expired(self._clock(), leeway=REFRESH_LEEWAY):
                return
            if self._refresher is None or not current.refresh_token:
                logger.debug("access token expired and cannot be refreshed")
                return
            logger.debug("refreshing access token")
            refreshed = await self._refresher(current.refresh_token)
            self._credential = refreshed
            if self._on_refresh is not None:
                self._on_refresh(refreshed)

    async def _execute_with_retry(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        params: dict[str, Any],
    ) -> httpx.Response:
        """Execute the request, retrying 5xx and connection errors.

        The delay doubles each attempt: 1 s, 2 s, 4 s, ...
        """
        assert self._client is not None, "Client not initialised -- use as async context manager"

        max_retries = self._max_retries
        for attempt in range(max_retries + 1):
            try:
                response = await self._client.request(
                    method, path, headers=headers, params=params
                )
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2**attempt
                    logger.debug(
                        "connection error: %s, retrying in %ss (attempt %d/%d)",
                        exc, delay, attempt + 1, max_retries,
                    )
                    await self._sleep(delay)
                    continue
                raise ConnectionError_(
                    f"Connection failed after {max_retries + 1} attempts: {exc}"
                ) from exc

            if response.status_code >= 500 and attempt < max_retries:
                delay = 2**attempt
                logger.debug(
                    "server error %d, retrying in %ss (attempt %d/%d)",
                    response.status_code, delay, attempt + 1, max_retries,
                )
                await self._sleep(delay)
                continue
            return response

        raise ServerError("Request failed after all retries")  # pragma: no cover

    @staticmethod
    def _map_response_error(response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("error") or detail.get("message") or detail.get("detail") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        full_msg = f"HTTP {status}: {msg}" if msg else f"HTTP {status}"
        if status in (401, 403):
            raise AuthError(full_msg)
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)

    # ------------------------------------------------------------------ #
    # Decoding
    # ------------------------------------------------------------------ #

    async def _get_list(self, path: str, model: type[T]) -> list[T]:
        response = await self.request("GET", path)
        return _decode(response, TypeAdapter(list[model]), path, empty=[])  # type: ignore[valid-type]

    async def _get_metrics(self, path: str, start: float, interval: float) -> MetricsSnapshot:
        params = {"start": format_duration(start), "interval": format_duration(interval)}
        response = await self.request("GET", path, params=params)
        return _decode(response, TypeAdapter(MetricsSnapshot), path, empty={})


def _esc(segment: str) -> str:
    return quote(segment, safe="")


def _decode(response: httpx.Response, adapter: TypeAdapter[T], path: str, empty: Any) -> T:
    try:
        body = response.json() if response.content else None
        if body is None:
            body = empty
        return adapter.validate_python(body)
    except (ValueError, ValidationError) as exc:
        raise CloudtopError(f"could not decode response from {path}: {exc}") from exc
