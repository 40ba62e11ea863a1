"""Tests for the OAuth2 device flow client."""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from cloudtop.auth.device_flow import (
    DEVICE_CODE_GRANT_TYPE,
    AccessCredential,
    Denied,
    DeviceAuthorization,
    DeviceFlowClient,
    Expired,
    Pending,
    SlowDown,
    Success,
    TransportError,
    is_terminal,
    next_poll_interval,
)
from cloudtop.exceptions import DeviceFlowTransportError, OAuthError


DEVICE_CODE_BODY = {
    "device_code": "dev-123",
    "user_code": "ABCD-EFGH",
    "verification_uri": "https://sso.example.com/activate",
    "verification_uri_complete": "https://sso.example.com/activate?user_code=ABCD-EFGH",
    "expires_in": 900,
    "interval": 5,
}


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def flow(router, clock):
    client = httpx.AsyncClient(transport=router.transport)
    return DeviceFlowClient(
        "sso.example.com",
        "cid",
        audience="https://api.example.com",
        http_client=client,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Device code request
# ---------------------------------------------------------------------------


class TestRequestDeviceCode:
    async def test_success_records_issue_time(self, flow, router, clock) -> None:
        router.routes[("POST", "/oauth/device/code")] = (200, DEVICE_CODE_BODY)

        auth = await flow.request_device_code()

        assert auth.device_code == "dev-123"
        assert auth.user_code == "ABCD-EFGH"
        assert auth.issued_at == clock.now
        assert auth.expires_at == clock.now + timedelta(seconds=900)
        assert auth.browser_url.endswith("user_code=ABCD-EFGH")

    async def test_sends_form_fields(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = (200, DEVICE_CODE_BODY)

        await flow.request_device_code()

        request = router.requests[0]
        assert request.url.host == "sso.example.com"
        assert request.url.scheme == "https"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        form = _form(request)
        assert form["client_id"] == "cid"
        assert form["audience"] == "https://api.example.com"
        assert form["scope"] == "user email offline_access"

    async def test_overrides_client_id(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = (200, DEVICE_CODE_BODY)

        await flow.request_device_code(client_id="other", scope="openid")

        form = _form(router.requests[0])
        assert form["client_id"] == "other"
        assert form["scope"] == "openid"

    async def test_error_body_raises_oauth_error(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = (
            403,
            {"error": "unauthorized_client", "error_description": "not allowed"},
        )

        with pytest.raises(OAuthError) as exc_info:
            await flow.request_device_code()

        assert exc_info.value.error == "unauthorized_client"
        assert exc_info.value.description == "not allowed"
        assert exc_info.value.status_code == 403

    async def test_error_body_with_description_key(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = (
            400,
            {"error": "invalid_request", "description": "bad audience"},
        )

        with pytest.raises(OAuthError, match="bad audience"):
            await flow.request_device_code()

    async def test_undecodable_error_body(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = lambda r: httpx.Response(
            502, text="<html>bad gateway</html>"
        )

        with pytest.raises(DeviceFlowTransportError, match="status_code=502"):
            await flow.request_device_code()

    async def test_connection_failure(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = httpx.ConnectError("refused")

        with pytest.raises(DeviceFlowTransportError, match="could not http fetch"):
            await flow.request_device_code()

    async def test_not_retried(self, flow, router) -> None:
        router.routes[("POST", "/oauth/device/code")] = httpx.ConnectError("refused")

        with pytest.raises(DeviceFlowTransportError):
            await flow.request_device_code()

        assert router.count("/oauth/device/code") == 1

    async def test_domain_with_scheme_is_kept(self, router, clock) -> None:
        router.routes[("POST", "/oauth/device/code")] = (200, DEVICE_CODE_BODY)
        client = httpx.AsyncClient(transport=router.transport)
        flow = DeviceFlowClient("http://localhost:8080/", "cid", http_client=client, clock=clock)

        await flow.request_device_code()

        assert str(router.requests[0].url) == "http://localhost:8080/oauth/device/code"


# ---------------------------------------------------------------------------
# Token polling
# ---------------------------------------------------------------------------


class TestPollToken:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            ("authorization_pending", Pending()),
            ("slow_down", SlowDown()),
            ("expired_token", Expired()),
            ("access_denied", Denied()),
        ],
    )
    async def test_error_codes(self, flow, router, error, expected) -> None:
        router.routes[("POST", "/oauth/token")] = (400, {"error": error})

        assert await flow.poll_token("dev-123") == expected

    async def test_success(self, flow, router, clock) -> None:
        router.routes[("POST", "/oauth/token")] = (
            200,
            {"access_token": "at", "refresh_token": "rt", "expires_in": 3600},
        )

        outcome = await flow.poll_token("dev-123")

        assert isinstance(outcome, Success)
        assert outcome.credential.access_token == "at"
        assert outcome.credential.refresh_token == "rt"
        assert outcome.credential.expires_at == clock.now + timedelta(seconds=3600)

    async def test_sends_device_grant(self, flow, router) -> None:
        router.routes[("POST", "/oauth/token")] = (400, {"error": "authorization_pending"})

        await flow.poll_token("dev-123")

        form = _form(router.requests[0])
        assert form == {
            "grant_type": DEVICE_CODE_GRANT_TYPE,
            "device_code": "dev-123",
            "client_id": "cid",
        }

    async def test_unknown_error_is_transport_error(self, flow, router) -> None:
        router.routes[("POST", "/oauth/token")] = (400, {"error": "invalid_grant"})

        outcome = await flow.poll_token("dev-123")

        assert isinstance(outcome, TransportError)
        assert isinstance(outcome.error, OAuthError)
        assert outcome.error.error == "invalid_grant"

    async def test_connection_failure_never_raises(self, flow, router) -> None:
        router.routes[("POST", "/oauth/token")] = httpx.ReadTimeout("slow")

        outcome = await flow.poll_token("dev-123")

        assert isinstance(outcome, TransportError)
        assert isinstance(outcome.error, DeviceFlowTransportError)

    async def test_undecodable_success_body(self, flow, router) -> None:
        router.routes[("POST", "/oauth/token")] = lambda r: httpx.Response(200, text="ok")

        assert isinstance(await flow.poll_token("dev-123"), TransportError)

    @pytest.mark.parametrize(
        "body",
        [
            {"access_token": "at", "expires_in": "soon"},
            {"access_token": None, "expires_in": 60},
            {"access_token": "at", "expires_in": [60]},
        ],
    )
    async def test_mistyped_success_body(self, flow, router, body) -> None:
        router.routes[("POST", "/oauth/token")] = (200, body)

        outcome = await flow.poll_token("dev-123")

        assert isinstance(outcome, TransportError)
        assert isinstance(outcome.error, DeviceFlowTransportError)
        assert "could not decode access token response" in str(outcome.error)

    async def test_success_without_access_token(self, flow, router) -> None:
        router.routes[("POST", "/oauth/token")] = (200, {"token_type": "Bearer"})

        outcome = await flow.poll_token("dev-123")

        assert isinstance(outcome, TransportError)
        assert "access_token" in str(outcome)


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    async def test_keeps_refresh_token(self, flow, router, clock) -> None:
        router.routes[("POST", "/oauth/token")] = (200, {"access_token": "new", "expires_in": 60})

        credential = await flow.refresh("rt-1")

        assert credential.access_token == "new"
        assert credential.refresh_token == "rt-1"
        assert credential.expires_at == clock.now + timedelta(seconds=60)
        assert _form(router.requests[0])["grant_type"] == "refresh_token"

    async def test_rejected_refresh_token(self, flow, router) -> None:
        router.routes[("POST", "/oauth/token")] = (
            403,
            {"error": "invalid_grant", "error_description": "revoked"},
        )

        with pytest.raises(OAuthError, match="revoked"):
            await flow.refresh("rt-1")


# ---------------------------------------------------------------------------
# Polling policy and data model
# ---------------------------------------------------------------------------


class TestNextPollInterval:
    def test_pending_keeps_interval(self) -> None:
        assert next_poll_interval(Pending(), 5) == 5

    def test_slow_down_adds_five_seconds(self) -> None:
        assert next_poll_interval(SlowDown(), 5) == 10

    @pytest.mark.parametrize("outcome", [Expired(), Denied(), TransportError(RuntimeError("x"))])
    def test_terminal_outcomes_rejected(self, outcome) -> None:
        assert is_terminal(outcome)
        with pytest.raises(ValueError):
            next_poll_interval(outcome, 5)

    def test_interval_never_decreases(self) -> None:
        outcomes = [Pending(), SlowDown(), Pending(), SlowDown(), SlowDown(), Pending()]
        interval = 5.0
        seen = [interval]
        for outcome in outcomes:
            interval = next_poll_interval(outcome, interval)
            seen.append(interval)

        assert seen == sorted(seen)
        assert interval == 20.0


class TestAccessCredential:
    def test_expiry_anchored_to_receive_time(self, clock) -> None:
        credential = AccessCredential.from_token_response(
            {"access_token": "at", "expires_in": 100}, clock.now
        )

        assert credential.expires_at == clock.now + timedelta(seconds=100)
        assert not credential.is_expired(clock.now)
        assert credential.is_expired(clock.now, leeway=100)
        assert credential.is_expired(clock.now + timedelta(seconds=100))

    def test_refresh_token_fallback(self, clock) -> None:
        credential = AccessCredential.from_token_response(
            {"access_token": "at"}, clock.now, refresh_token="old"
        )

        assert credential.refresh_token == "old"
        assert credential.token_type == "Bearer"


class TestDeviceAuthorization:
    def test_browser_url_falls_back_to_verification_uri(self) -> None:
        auth = DeviceAuthorization(
            device_code="d", user_code="u", verification_uri="https://x/activate"
        )
        assert auth.browser_url == "https://x/activate"

    def test_frozen(self) -> None:
        auth = DeviceAuthorization(device_code="d", user_code="u", verification_uri="v")
        with pytest.raises(Exception):
            auth.device_code = "other"  # type: ignore[misc]
