"""Authentication for cloudtop.

* :mod:`~cloudtop.auth.device_flow` -- OAuth2 device authorization grant.
* :mod:`~cloudtop.auth.login` -- non-interactive polling loop.
* :mod:`~cloudtop.auth.credential_store` -- keyring backed persistence.
"""

from cloudtop.auth.credential_store import CredentialStore, TokenStore
from cloudtop.auth.device_flow import (
    AccessCredential,
    DeviceAuthorization,
    DeviceFlowClient,
    PollOutcome,
    next_poll_interval,
)
from cloudtop.auth.login import wait_for_authorization

__all__ = [
    "AccessCredential",
    "CredentialStore",
    "DeviceAuthorization",
    "DeviceFlowClient",
    "PollOutcome",
    "TokenStore",
    "next_poll_interval",
    "wait_for_authorization",
]
