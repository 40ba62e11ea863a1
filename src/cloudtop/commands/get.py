"""Get commands -- list cloud resources.

Provides the ``cloudtop get`` sub-command group.  Every command prints a
table (or JSON / YAML / plain records, depending on the output flags) to
stdout.

Example::

    cloudtop get projects
    cloudtop get agents --project 4f7c...
    cloudtop --json get pipelines --project 4f7c...
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from cloudtop.client.cloud_client import CloudClient
from cloudtop.output import print_table


get_app = typer.Typer(no_args_is_help=True)

T = TypeVar("T")


def _fmt_time(value: Optional[datetime]) -> str:
    return value.isoformat() if value is not None else ""


def _with_client(ctx: typer.Context, action: Callable[[CloudClient], Awaitable[T]]) -> T:
    """Run *action* with an authenticated client built from the effective config."""
    from cloudtop.auth import TokenStore
    from cloudtop.services import build_cloud_client, build_device_flow, effective_config, run

    config = effective_config(ctx.obj)
    tokens = TokenStore()

    async def _run() -> T:
        flow = build_device_flow(config) if config.auth.client_id else None
        try:
            async with build_cloud_client(config, tokens, flow) as client:
                return await action(client)
        finally:
            if flow is not None:
                await flow.aclose()

    return run(_run())


@get_app.command("projects")
def get_projects(ctx: typer.Context) -> None:
    """List the projects you are a member of."""

    async def _fetch(client: CloudClient) -> list[list[str]]:
        projects = await client.list_projects()
        return [[p.name, p.id, _fmt_time(p.created_at)] for p in projects]

    rows = _with_client(ctx, _fetch)
    print_table(["Name", "ID", "Created at"], rows, title="Projects")


@get_app.command("agents")
def get_agents(
    ctx: typer.Context,
    project: str = typer.Option(..., "--project", "-p", help="Parent project ID."),
) -> None:
    """List the agents of a project, with their activity status."""
    from cloudtop.tui.render import agent_description

    window = timedelta(seconds=60)

    async def _fetch(client: CloudClient) -> list[list[str]]:
        agents = await client.list_agents(project)
        now = datetime.now(timezone.utc)
        return [
            [a.name, a.id, agent_description(a, now, window), _fmt_time(a.created_at)]
            for a in agents
        ]

    rows = _with_client(ctx, _fetch)
    print_table(["Name", "ID", "Status", "Created at"], rows, title="Agents")


@get_app.command("pipelines")
def get_pipelines(
    ctx: typer.Context,
    project: str = typer.Option(..., "--project", "-p", help="Parent project ID."),
) -> None:
    """List the pipelines of every core instance in a project.

    Pipelines are fetched from all core instances concurrently; the first
    failure aborts the listing.
    """
    from cloudtop.fetcher import fetch_all

    async def _fetch(client: CloudClient) -> list[list[str]]:
        instances = await client.list_core_instances(project)
        pipelines = await fetch_all(instances, lambda ci: client.list_pipelines(ci.id))
        return [
            [p.name, p.id, str(p.replicas_count), p.status, _fmt_time(p.created_at)]
            for p in pipelines
        ]

    rows = _with_client(ctx, _fetch)
    print_table(["Name", "ID", "Replicas", "Status", "Created at"], rows, title="Pipelines")
