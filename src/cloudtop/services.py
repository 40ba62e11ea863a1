"""Construction of the long-lived service objects used by commands.

Commands never build HTTP clients themselves: they resolve the effective
:class:`~cloudtop.models.GlobalConfig` and call the factories here so that
timeouts, SSL settings and token refresh are wired the same way everywhere.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

from cloudtop.auth.credential_store import TokenStore
from cloudtop.auth.device_flow import DeviceFlowClient
from cloudtop.client.cloud_client import CloudClient
from cloudtop.config import require_client_id, resolve_config
from cloudtop.exceptions import AuthError
from cloudtop.models import GlobalConfig

T = TypeVar("T")


def effective_config(obj: Optional[dict[str, Any]]) -> GlobalConfig:
    """Resolve config using the root callback options stored in ``ctx.obj``."""
    obj = obj or {}
    return resolve_config(cli_cloud_url=obj.get("cloud_url"))


def build_device_flow(config: GlobalConfig) -> DeviceFlowClient:
    """Device flow client for the configured authorization server.

    Raises:
        ConfigError: If no client ID is configured.
    """
    return DeviceFlowClient(
        domain=config.auth.domain,
        client_id=require_client_id(config),
        audience=config.auth.audience,
        scope=config.auth.scope,
        timeout=config.request.timeout,
    )


def build_cloud_client(
    config: GlobalConfig,
    tokens: TokenStore,
    flow: Optional[DeviceFlowClient] = None,
    require_login: bool = True,
) -> CloudClient:
    """Cloud client authenticated with the stored credential.

    Refreshed credentials are written back to *tokens*.

    Raises:
        AuthError: If *require_login* is set and no credential is stored.
    """
    credential = tokens.load_or_none()
    if credential is None and require_login:
        raise AuthError("Not logged in. Run 'cloudtop auth login' first.")
    return CloudClient(
        config.cloud_url,
        credential=credential,
        refresher=flow.refresh if flow is not None else None,
        on_refresh=tokens.save,
        timeout=config.request.timeout,
        verify_ssl=config.request.verify_ssl,
        max_retries=config.request.max_retries,
    )


def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro* to completion on a fresh event loop."""
    return asyncio.run(coro)
