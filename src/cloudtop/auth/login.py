"""Non-interactive device flow polling for ``cloudtop auth login``.

The interactive dashboard drives polling through the session reducer; this
module is the plain loop used when only a credential is wanted.  Both apply
:func:`~cloudtop.auth.device_flow.next_poll_interval` and stop at the
authorization deadline.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from cloudtop.auth.device_flow import (
    AccessCredential,
    Clock,
    Denied,
    DeviceAuthorization,
    DeviceFlowClient,
    Expired,
    Success,
    TransportError,
    next_poll_interval,
    utcnow,
)
from cloudtop.exceptions import (
    AuthError,
    AuthorizationDeniedError,
    AuthorizationExpiredError,
    CloudtopError,
    DeviceFlowTransportError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


async def wait_for_authorization(
    flow: DeviceFlowClient,
    authorization: DeviceAuthorization,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = utcnow,
    require_refresh_token: bool = True,
    on_poll: Optional[Callable[[float], None]] = None,
) -> AccessCredential:
    """Poll the token endpoint until the user approves the device.

    Sleeps the current interval before every poll, so the first request is
    sent one interval after the device code was issued.

    Args:
        flow: Client used for :meth:`~DeviceFlowClient.poll_token`.
        authorization: The device authorization being waited on.
        sleep: Awaitable sleep, injectable for tests.
        clock: Current UTC time, compared against the authorization deadline.
        require_refresh_token: Reject tokens issued without a refresh token.
        on_poll: Called with the interval before every poll (progress hook).

    Returns:
        The issued :class:`AccessCredential`.

    Raises:
        AuthorizationExpiredError: The device code expired, either reported
            by the server or because the deadline passed locally.
        AuthorizationDeniedError: The user declined.
        DeviceFlowTransportError: The server could not be reached or sent an
            unexpected answer.  Login does not retry these.
        AuthError: The token arrived without a refresh token.
    """
    interval = float(authorization.interval)
    deadline = authorization.expires_at

    while True:
        if clock() >= deadline:
            raise AuthorizationExpiredError()
        if on_poll is not None:
            on_poll(interval)
        await sleep(interval)
        if clock() >= deadline:
            raise AuthorizationExpiredError()

        outcome = await flow.poll_token(authorization.device_code)

        if isinstance(outcome, Success):
            credential = outcome.credential
            if require_refresh_token and not credential.refresh_token:
                raise AuthError("missing refresh token in the token response")
            return credential
        if isinstance(outcome, Expired):
            raise AuthorizationExpiredError()
        if isinstance(outcome, Denied):
            raise AuthorizationDeniedError()
        if isinstance(outcome, TransportError):
            if isinstance(outcome.error, CloudtopError):
                raise outcome.error
            raise DeviceFlowTransportError(str(outcome.error)) from outcome.error

        new_interval = next_poll_interval(outcome, interval)
        if new_interval != interval:
            logger.debug("server asked to slow down, polling every %.0fs", new_interval)
        interval = new_interval
