"""The ``cloudtop top`` interactive dashboard.

Runs a :class:`~cloudtop.session.runtime.SessionRuntime` inside a
full-screen :class:`rich.live.Live` display.  If no credential is stored the
dashboard starts with the device flow, then lists projects; selecting a
project shows its metrics (refreshed periodically) and its agents.

Keys: ``↑``/``↓`` (or ``k``/``j``) move, ``enter`` selects, ``backspace``
goes back, ``r`` retries, ``ctrl+e`` logs out, ``q`` quits.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import typer

from cloudtop.exceptions import InvalidUsageError


def top_command(
    ctx: typer.Context,
    refresh: Optional[float] = typer.Option(
        None, "--refresh", "-r", min=1.0, help="Seconds between metrics refreshes."
    ),
) -> None:
    """Interactive dashboard of your projects, metrics and agents.

    Example::

        cloudtop top
        cloudtop top --refresh 10
    """
    from rich.live import Live

    from cloudtop.auth import TokenStore
    from cloudtop.output import get_output
    from cloudtop.services import build_cloud_client, build_device_flow, effective_config, run
    from cloudtop.session import SessionRuntime
    from cloudtop.session.state import Idle
    from cloudtop.tui import KeyReader, render

    if not sys.stdin.isatty():
        raise InvalidUsageError("cloudtop top needs an interactive terminal")

    config = effective_config(ctx.obj)
    if refresh is not None:
        config.dashboard.refresh_interval = refresh
    rate = float(config.dashboard.metrics_interval)
    console = get_output().console

    async def _dashboard() -> None:
        loop = asyncio.get_running_loop()
        tokens = TokenStore()
        async with build_device_flow(config) as flow:
            async with build_cloud_client(config, tokens, flow, require_login=False) as cloud:
                with Live(
                    render(Idle(), rate_seconds=rate),
                    console=console,
                    screen=True,
                    refresh_per_second=8,
                ) as live:
                    runtime = SessionRuntime(
                        flow,
                        cloud,
                        tokens,
                        settings=config.dashboard,
                        on_state=lambda state: live.update(render(state, rate_seconds=rate)),
                    )
                    reader = KeyReader(
                        lambda message: loop.call_soon_threadsafe(runtime.post, message)
                    ).start()
                    try:
                        await runtime.run()
                    finally:
                        reader.stop()

    run(_dashboard())
