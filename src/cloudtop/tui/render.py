"""Pure rendering of a :data:`~cloudtop.session.state.SessionState`.

:func:`render` turns a state into a Rich renderable and has no side effects;
the dashboard calls it after every message and hands the result to
:class:`rich.live.Live`.

Metric values are shown as a per-second rate computed from the last two
non-empty points of each series.  Internal plugins (``calyptia.*`` and
``fluentbit_metrics.*``) are hidden.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

from cloudtop.models import Agent, MetricPoint, MetricsSnapshot, Project
from cloudtop.session.state import (
    AwaitingAuthorization,
    Failed,
    FailureKind,
    Idle,
    ListingProjects,
    RequestingDeviceCode,
    SessionState,
    ViewingProject,
)

INTERNAL_PLUGIN_PREFIXES = ("calyptia.", "fluentbit_metrics.")
BYTE_METRICS = frozenset({"bytes_total", "proc_bytes_total"})

_FAILURE_TITLES = {
    FailureKind.DEVICE_CODE: "Could not request device code",
    FailureKind.EXPIRED: "Authorization expired",
    FailureKind.DENIED: "Authorization denied",
    FailureKind.TRANSPORT: "Could not fetch access token",
    FailureKind.PROJECTS: "Could not fetch your project list",
    FailureKind.UNAUTHORIZED: "Your login is no longer valid",
}


# ------------------------------------------------------------------ #
# Formatting helpers
# ------------------------------------------------------------------ #


def fmt_float(value: float) -> str:
    """Format a rate: rounded when ``|value| > 1``, else two decimals, trimmed.

    >>> fmt_float(12.6), fmt_float(0.5), fmt_float(0.0)
    ('13', '0.5', '0')
    """
    if value > 1 or value < -1:
        value = round(value)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def fmt_bytes(value: float) -> str:
    """Human readable byte size with binary units, e.g. ``1.5K`` or ``3M``."""
    size = float(max(round(value), 0))
    for unit in ("B", "K", "M", "G", "T", "P"):
        if size < 1024 or unit == "P":
            if unit == "B":
                return f"{int(size)}B"
            text = f"{size:.1f}".rstrip("0").rstrip(".")
            return f"{text}{unit}"
        size /= 1024
    return f"{size}E"  # pragma: no cover


def fmt_age(delta: timedelta) -> str:
    """Largest whole unit of *delta*, e.g. ``3 days`` or ``1 minute``."""
    seconds = int(max(delta.total_seconds(), 0))
    for name, size in (("week", 604800), ("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {name}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"


def metric_rate(points: Sequence[MetricPoint], rate_seconds: float) -> Optional[float]:
    """Per-second rate between the newest pair of adjacent non-empty points.

    Returns ``None`` when no such pair exists.
    """
    for i in range(len(points) - 1, 0, -1):
        curr, prev = points[i].value, points[i - 1].value
        if curr is None or prev is None:
            continue
        return (curr / rate_seconds) - (prev / rate_seconds)
    return None


def metric_rows(snapshot: MetricsSnapshot, rate_seconds: float) -> list[tuple[str, str, str]]:
    """``(plugin (measurement), metric, value)`` rows, internal plugins skipped."""
    rows = []
    for measurement, plugin, metric, points in snapshot.series():
        if plugin.startswith(INTERNAL_PLUGIN_PREFIXES):
            continue
        label = f"{plugin} ({measurement})"
        if len(points) < 2:
            rows.append((label, metric, "Not enough data"))
            continue
        value = metric_rate(points, rate_seconds)
        if value is None:
            rows.append((label, metric, "No data"))
        elif metric in BYTE_METRICS:
            rows.append((label, metric, fmt_bytes(value)))
        else:
            rows.append((label, metric, fmt_float(value)))
    return rows


def agent_description(agent: Agent, now: datetime, window: timedelta) -> str:
    """``"<type> <version> (active)"`` or an inactive variant with its age."""
    out = f"{agent.type} {agent.version}".strip()
    last = agent.last_metrics_added_at
    if last is None:
        return f"{out} (inactive)"
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    if last < now - window:
        return f"{out} (inactive for {fmt_age(now - last)})"
    return f"{out} (active)"


# ------------------------------------------------------------------ #
# Screens
# ------------------------------------------------------------------ #


def render(
    state: SessionState,
    now: Optional[datetime] = None,
    rate_seconds: float = 30.0,
) -> RenderableType:
    """Render *state* as a Rich renderable.

    Args:
        state: The state to draw.
        now: Reference time for agent activity, defaults to the current time.
        rate_seconds: Metrics aggregation interval used to compute rates.
    """
    now = now or datetime.now(timezone.utc)
    if isinstance(state, Idle):
        body: RenderableType = Text(
            state.reason or "Starting...", style="bold" if state.reason else ""
        )
        keys = "r log in · q quit" if state.reason else "q quit"
    elif isinstance(state, RequestingDeviceCode):
        body = Spinner("dots", text=" Requesting a new device code... please wait.")
        keys = "q quit"
    elif isinstance(state, AwaitingAuthorization):
        body = _render_authorization(state)
        keys = "q quit"
    elif isinstance(state, ListingProjects):
        body = _render_projects(state)
        keys = "↑/↓ move · enter select · r reload · ctrl+e logout · q quit"
    elif isinstance(state, ViewingProject):
        body = _render_project(state, now, rate_seconds)
        keys = "backspace back · ctrl+e logout · q quit"
    elif isinstance(state, Failed):
        body = Group(
            Text(f"{_FAILURE_TITLES[state.kind]}: {state.reason}", style="bold red"),
        )
        keys = "r retry · q quit"
    else:  # pragma: no cover
        body = Text(repr(state))
        keys = "q quit"
    return Group(body, Text(""), Text(keys, style="dim"))


def _render_authorization(state: AwaitingAuthorization) -> RenderableType:
    authorization = state.authorization
    return Group(
        Text(f"Please go to {authorization.browser_url} to authorize this application."),
        Text(""),
        Text.assemble("Your code: ", (authorization.user_code, "bold cyan")),
        Text(""),
        Spinner("dots", text=" Waiting authorization..."),
    )


def _render_projects(state: ListingProjects) -> RenderableType:
    if state.projects is None:
        return Spinner("dots", text=" Fetching your project list... please wait.")
    if not state.projects:
        return Text("No projects")
    table = Table(title="Projects", show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("ID", style="dim")
    for index, project in enumerate(state.projects):
        style = "reverse" if index == state.cursor else ""
        table.add_row(project.name, project.id, style=style)
    return table


def _render_project(state: ViewingProject, now: datetime, rate_seconds: float) -> RenderableType:
    parts: list[RenderableType] = [_render_metrics(state, rate_seconds), Text("")]
    parts.append(_render_agents(state, now, timedelta(seconds=rate_seconds * 2), rate_seconds))
    return Panel(Group(*parts), title=_project_title(state.project))


def _project_title(project: Project) -> str:
    return f"[bold]{project.name}[/bold]"


def _render_metrics(state: ViewingProject, rate_seconds: float) -> RenderableType:
    if state.metrics_error is not None:
        return Text(f"Could not fetch metrics: {state.metrics_error}", style="red")
    if state.metrics is None:
        return Spinner("dots", text=" Fetching metrics... please wait.")
    rows = metric_rows(state.metrics, rate_seconds)
    if not rows:
        return Group(Text("Overview", style="bold"), Text("No measurements"))
    table = Table(title="Overview", show_header=True, header_style="bold cyan")
    table.add_column("Plugin")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for row in rows:
        table.add_row(*row)
    return table


def _render_agents(
    state: ViewingProject, now: datetime, window: timedelta, rate_seconds: float
) -> RenderableType:
    if state.agents_error is not None:
        return Text(f"Could not fetch your agent list: {state.agents_error}", style="red")
    if state.agents is None:
        return Spinner("dots", text=" Fetching your agent list... please wait.")
    if not state.agents:
        return Text("No agents")
    table = Table(title="Agents", show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Records/s", justify="right")
    for agent in state.agents:
        table.add_row(
            agent.name,
            agent_description(agent, now, window),
            _agent_records_rate(state.metrics_for(agent.id), rate_seconds),
        )
    return table


def _agent_records_rate(snapshot: Optional[MetricsSnapshot], rate_seconds: float) -> str:
    if snapshot is None:
        return "-"
    total: Optional[float] = None
    for _, plugin, metric, points in snapshot.series():
        if metric != "records_total" or plugin.startswith(INTERNAL_PLUGIN_PREFIXES):
            continue
        value = metric_rate(points, rate_seconds)
        if value is not None:
            total = (total or 0.0) + value
    return "-" if total is None else fmt_float(total)
