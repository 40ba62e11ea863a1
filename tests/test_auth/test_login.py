"""Tests for the non-interactive device flow polling loop."""

from __future__ import annotations

from datetime import timedelta

import pytest

from cloudtop.auth.device_flow import (
    AccessCredential,
    Denied,
    DeviceAuthorization,
    Expired,
    Pending,
    SlowDown,
    Success,
    TransportError,
)
from cloudtop.auth.login import wait_for_authorization
from cloudtop.exceptions import (
    AuthError,
    AuthorizationDeniedError,
    AuthorizationExpiredError,
    DeviceFlowTransportError,
)


class ScriptedFlow:
    """Stands in for DeviceFlowClient, answering polls from a script."""

    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.polls = 0

    async def poll_token(self, device_code: str):
        self.polls += 1
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


def _authorization(clock, expires_in: int = 900, interval: int = 5) -> DeviceAuthorization:
    return DeviceAuthorization(
        device_code="dev",
        user_code="USER",
        verification_uri="https://sso/activate",
        expires_in=expires_in,
        interval=interval,
        issued_at=clock.now,
    )


def _success(clock, refresh_token="rt") -> Success:
    return Success(
        AccessCredential(
            access_token="at",
            refresh_token=refresh_token,
            expires_at=clock.now + timedelta(hours=1),
        )
    )


class TestWaitForAuthorization:
    async def test_pending_then_success(self, clock) -> None:
        flow = ScriptedFlow([Pending(), Pending(), _success(clock)])

        credential = await wait_for_authorization(
            flow, _authorization(clock), sleep=clock.sleep, clock=clock
        )

        assert credential.access_token == "at"
        assert flow.polls == 3
        assert clock.sleeps == [5, 5, 5]

    async def test_slow_down_widens_interval(self, clock) -> None:
        flow = ScriptedFlow([SlowDown(), Pending(), SlowDown(), _success(clock)])

        await wait_for_authorization(flow, _authorization(clock), sleep=clock.sleep, clock=clock)

        assert clock.sleeps == [5, 10, 10, 15]

    async def test_stops_at_first_terminal_outcome(self, clock) -> None:
        flow = ScriptedFlow([Pending(), Pending(), Denied(), _success(clock)])

        with pytest.raises(AuthorizationDeniedError):
            await wait_for_authorization(
                flow, _authorization(clock), sleep=clock.sleep, clock=clock
            )

        assert flow.polls == 3

    async def test_server_expired(self, clock) -> None:
        flow = ScriptedFlow([Expired()])

        with pytest.raises(AuthorizationExpiredError):
            await wait_for_authorization(
                flow, _authorization(clock), sleep=clock.sleep, clock=clock
            )

        assert flow.polls == 1

    async def test_local_deadline(self, clock) -> None:
        flow = ScriptedFlow([Pending()])

        with pytest.raises(AuthorizationExpiredError):
            await wait_for_authorization(
                flow, _authorization(clock, expires_in=12), sleep=clock.sleep, clock=clock
            )

        # polls at t=5 and t=10; the sleep to t=15 crosses the deadline
        assert flow.polls == 2

    async def test_transport_error_not_retried(self, clock) -> None:
        flow = ScriptedFlow([TransportError(DeviceFlowTransportError("down")), _success(clock)])

        with pytest.raises(DeviceFlowTransportError, match="down"):
            await wait_for_authorization(
                flow, _authorization(clock), sleep=clock.sleep, clock=clock
            )

        assert flow.polls == 1

    async def test_foreign_transport_error_is_wrapped(self, clock) -> None:
        flow = ScriptedFlow([TransportError(RuntimeError("boom"))])

        with pytest.raises(DeviceFlowTransportError, match="boom"):
            await wait_for_authorization(
                flow, _authorization(clock), sleep=clock.sleep, clock=clock
            )

    async def test_missing_refresh_token(self, clock) -> None:
        flow = ScriptedFlow([_success(clock, refresh_token=None)])

        with pytest.raises(AuthError, match="refresh token"):
            await wait_for_authorization(
                flow, _authorization(clock), sleep=clock.sleep, clock=clock
            )

    async def test_refresh_token_optional(self, clock) -> None:
        flow = ScriptedFlow([_success(clock, refresh_token=None)])

        credential = await wait_for_authorization(
            flow,
            _authorization(clock),
            sleep=clock.sleep,
            clock=clock,
            require_refresh_token=False,
        )

        assert credential.refresh_token is None

    async def test_on_poll_hook(self, clock) -> None:
        flow = ScriptedFlow([SlowDown(), _success(clock)])
        seen: list[float] = []

        await wait_for_authorization(
            flow, _authorization(clock), sleep=clock.sleep, clock=clock, on_poll=seen.append
        )

        assert seen == [5, 10]
