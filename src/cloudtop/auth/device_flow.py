"""OAuth2 Device Authorization Grant (:rfc:`8628`) client.

For terminals where a browser cannot complete a redirect flow. The user is
shown a URL and a short code to confirm on any device while the CLI polls
the token endpoint.

Flow:
    1. :meth:`DeviceFlowClient.request_device_code` -- one POST to
       ``https://{domain}/oauth/device/code`` returning a
       :class:`DeviceAuthorization`.
    2. :meth:`DeviceFlowClient.poll_token` -- one POST to
       ``https://{domain}/oauth/token`` returning a :data:`PollOutcome`.
       Callers repeat it using :func:`next_poll_interval` until a terminal
       outcome arrives.
    3. :meth:`DeviceFlowClient.refresh` -- exchange the refresh token for a
       new access token once the current one expires.

``poll_token`` never sleeps and never raises for protocol outcomes, so the
polling policy lives entirely with the caller: the interactive session
reducer and :func:`cloudtop.auth.login.wait_for_authorization`.

See Also:
    :mod:`cloudtop.auth.credential_store` for persisting the credential.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cloudtop.exceptions import DeviceFlowTransportError, OAuthError

logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_SCOPE = "user email offline_access"
SLOW_DOWN_INCREMENT = 5.0
"""Seconds added to the polling interval for every ``slow_down`` answer."""

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------ #
# Data model
# ------------------------------------------------------------------ #


class DeviceAuthorization(BaseModel):
    """The server's answer to a device code request.

    Immutable once issued. ``issued_at`` is recorded client side when the
    response arrives; :attr:`expires_at` is the absolute deadline after
    which polling is pointless.
    """

    model_config = ConfigDict(frozen=True)

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str = ""
    expires_in: int = Field(default=1800, description="Lifetime in seconds")
    interval: int = Field(default=5, description="Minimum polling interval in seconds")
    issued_at: datetime = Field(default_factory=utcnow)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    @property
    def browser_url(self) -> str:
        """URL to show the user, preferring the one with the code embedded."""
        return self.verification_uri_complete or self.verification_uri


class AccessCredential(BaseModel):
    """An access token plus the data needed to refresh it.

    ``expires_at`` is derived once, from the moment the token response was
    received, and stored with the credential.  Later refresh decisions use
    the stored value rather than recomputing it.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int = 0
    expires_at: datetime

    @classmethod
    def from_token_response(
        cls,
        data: dict[str, Any],
        received_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> AccessCredential:
        """Build a credential from a token endpoint JSON body.

        Args:
            data: Decoded JSON body containing at least ``access_token``.
            received_at: When the response arrived; anchors ``expires_at``.
            refresh_token: Fallback used when the body carries no refresh
                token (refresh responses omit it).
        """
        expires_in = int(data.get("expires_in") or 0)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            expires_at=received_at + timedelta(seconds=expires_in),
        )

    def is_expired(self, now: Optional[datetime] = None, leeway: float = 0.0) -> bool:
        """Return ``True`` once *now* is within *leeway* seconds of expiry."""
        now = now or utcnow()
        return now >= self.expires_at - timedelta(seconds=leeway)


@dataclass(frozen=True)
class Pending:
    """``authorization_pending``: poll again after the same interval."""


@dataclass(frozen=True)
class SlowDown:
    """``slow_down``: poll again after a longer interval."""


@dataclass(frozen=True)
class Expired:
    """``expired_token``: terminal, the device code is no longer valid."""


@dataclass(frozen=True)
class Denied:
    """``access_denied``: terminal, the user rejected the request."""


@dataclass(frozen=True)
class Success:
    credential: AccessCredential


@dataclass(frozen=True)
class TransportError:
    """Network failure, undecodable body, or an unexpected server error."""

    error: Exception

    def __str__(self) -> str:
        return str(self.error)


PollOutcome = Union[Pending, SlowDown, Expired, Denied, Success, TransportError]


def is_terminal(outcome: PollOutcome) -> bool:
    """Return ``True`` for outcomes after which no further poll may be sent."""
    return not isinstance(outcome, (Pending, SlowDown))


def next_poll_interval(outcome: PollOutcome, interval: float) -> float:
    """Return the delay before the next poll for a retryable *outcome*.

    ``Pending`` keeps the interval, ``SlowDown`` increases it by
    :data:`SLOW_DOWN_INCREMENT`.  The interval never decreases.

    Raises:
        ValueError: If *outcome* is terminal.
    """
    if isinstance(outcome, Pending):
        return interval
    if isinstance(outcome, SlowDown):
        return interval + SLOW_DOWN_INCREMENT
    raise ValueError(f"no further poll allowed after {type(outcome).__name__}")


# ------------------------------------------------------------------ #
# Client
# ------------------------------------------------------------------ #


class DeviceFlowClient:
    """Async client for the device code, token and refresh endpoints.

    Args:
        domain: Authorization server host (``https://`` is prepended unless
            the value already carries a scheme).
        client_id: OAuth2 client ID.
        audience: API audience sent with the device code request.
        scope: Space separated scopes.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            omitted the client creates and owns one.
        timeout: Per-request timeout in seconds for an owned client.
        clock: Returns the current UTC time; injectable for tests.

    Example::

        async with DeviceFlowClient("sso.example.com", "cid") as flow:
            authorization = await flow.request_device_code()
            outcome = await flow.poll_token(authorization.device_code)
    """

    def __init__(
        self,
        domain: str,
        client_id: str,
        audience: str = "",
        scope: str = DEFAULT_SCOPE,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Clock = utcnow,
    ) -> None:
        self._base = domain if "://" in domain else f"https://{domain}"
        self._base = self._base.rstrip("/")
        self._client_id = client_id
        self._audience = audience
        self._scope = scope
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock

    @property
    def client_id(self) -> str:
        return self._client_id

    async def __aenter__(self) -> DeviceFlowClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # -- endpoints ----------------------------------------------------- #

    async def request_device_code(
        self,
        client_id: Optional[str] = None,
        audience: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> DeviceAuthorization:
        """POST to the device code endpoint.  Never retries.

        Returns:
            The issued :class:`DeviceAuthorization`.

        Raises:
            OAuthError: The server answered with an error body (HTTP >= 400).
            DeviceFlowTransportError: Connection failure, timeout, or a body
                that could not be decoded.
        """
        data = {
            "client_id": client_id or self._client_id,
            "scope": scope if scope is not None else self._scope,
            "audience": audience if audience is not None else self._audience,
        }
        response = await self._post("/oauth/device/code", data, "device code")
        issued_at = self._clock()

        if response.status_code >= 400:
            raise self._decode_error(response, "device code")

        try:
            body = response.json()
            return DeviceAuthorization.model_validate({**body, "issued_at": issued_at})
        except (ValueError, ValidationError, TypeError) as exc:
            raise DeviceFlowTransportError(
                f"could not decode device code response: {exc}"
            ) from exc

    async def poll_token(self, device_code: str) -> PollOutcome:
        """POST once to the token endpoint and classify the answer.

        Never raises for protocol or transport failures; see
        :data:`PollOutcome`.
        """
        data = {
            "grant_type": DEVICE_CODE_GRANT_TYPE,
            "device_code": device_code,
            "client_id": self._client_id,
        }
        try:
            response = await self._post("/oauth/token", data, "access token")
        except DeviceFlowTransportError as exc:
            return TransportError(exc)
        received_at = self._clock()

        if response.status_code >= 400:
            try:
                err = self._decode_error(response, "access token")
            except DeviceFlowTransportError as exc:
                return TransportError(exc)
            if not isinstance(err, OAuthError):
                return TransportError(err)
            outcome = _OUTCOME_BY_ERROR.get(err.error)
            if outcome is not None:
                logger.debug("token poll answered %s", err.error)
                return outcome
            return TransportError(err)

        try:
            body = response.json()
        except ValueError as exc:
            return TransportError(
                DeviceFlowTransportError(f"could not decode access token response: {exc}")
            )
        if not isinstance(body, dict) or "access_token" not in body:
            return TransportError(
                DeviceFlowTransportError("access token response missing 'access_token'")
            )
        try:
            return Success(AccessCredential.from_token_response(body, received_at))
        except (ValueError, TypeError, ValidationError) as exc:
            return TransportError(
                DeviceFlowTransportError(f"could not decode access token response: {exc}")
            )

    async def refresh(self, refresh_token: str) -> AccessCredential:
        """Exchange *refresh_token* for a new access credential.

        The refresh response carries no refresh token, so the one passed in
        is kept on the returned credential.

        Raises:
            OAuthError: The server rejected the refresh token.
            DeviceFlowTransportError: Connection failure or undecodable body.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._client_id,
        }
        response = await self._post("/oauth/token", data, "refresh token")
        received_at = self._clock()
        if response.status_code >= 400:
            raise self._decode_error(response, "refresh token")
        try:
            body = response.json()
            return AccessCredential.from_token_response(
                body, received_at, refresh_token=refresh_token
            )
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            raise DeviceFlowTransportError(
                f"could not decode refresh token response: {exc}"
            ) from exc

    # -- helpers ------------------------------------------------------- #

    async def _post(self, path: str, data: dict[str, str], what: str) -> httpx.Response:
        try:
            return await self._http.post(
                f"{self._base}{path}",
                data=data,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise DeviceFlowTransportError(f"could not http fetch {what}: {exc}") from exc

    @staticmethod
    def _decode_error(response: httpx.Response, what: str) -> OAuthError:
        status = response.status_code
        try:
            body = response.json()
        except ValueError as exc:
            raise DeviceFlowTransportError(
                f"could not json decode {what} error response: "
                f"status_code={status} body={response.text[:200]}"
            ) from exc
        if not isinstance(body, dict) or not body.get("error"):
            raise DeviceFlowTransportError(
                f"unexpected {what} error response: status_code={status} body={response.text[:200]}"
            )
        description = body.get("error_description") or body.get("description") or ""
        return OAuthError(str(body["error"]), str(description), status_code=status)


_OUTCOME_BY_ERROR: dict[str, PollOutcome] = {
    "authorization_pending": Pending(),
    "slow_down": SlowDown(),
    "expired_token": Expired(),
    "access_denied": Denied(),
}
