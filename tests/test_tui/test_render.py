"""Tests for the dashboard renderer and its formatting helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from cloudtop.auth.device_flow import DeviceAuthorization
from cloudtop.models import Agent, AgentMetrics, MetricPoint, MetricsSnapshot, Project
from cloudtop.session.state import (
    AwaitingAuthorization,
    Failed,
    FailureKind,
    Idle,
    ListingProjects,
    RequestingDeviceCode,
    RetryTarget,
    ViewingProject,
)
from cloudtop.tui.render import (
    agent_description,
    fmt_age,
    fmt_bytes,
    fmt_float,
    metric_rate,
    metric_rows,
    render,
)


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
PROJECTS = (Project(id="p1", name="alpha"), Project(id="p2", name="beta"))


def _text(renderable) -> str:
    console = Console(record=True, width=120, color_system=None)
    console.print(renderable)
    return console.export_text()


def _points(*values) -> tuple[MetricPoint, ...]:
    return tuple(
        MetricPoint(time=NOW - timedelta(seconds=30 * (len(values) - i)), value=v)
        for i, v in enumerate(values)
    )


def _snapshot(series: dict[tuple[str, str, str], tuple[MetricPoint, ...]]) -> MetricsSnapshot:
    measurements: dict = {}
    for (measurement, plugin, metric), points in series.items():
        plugins = measurements.setdefault(measurement, {"plugins": {}})["plugins"]
        plugins.setdefault(plugin, {"metrics": {}})["metrics"][metric] = points
    return MetricsSnapshot.model_validate({"measurements": measurements})


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


class TestFormatting:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(12.6, "13"), (0.5, "0.5"), (0.25, "0.25"), (0.0, "0"), (-3.4, "-3"), (1.0, "1")],
    )
    def test_fmt_float(self, value, expected) -> None:
        assert fmt_float(value) == expected

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(512, "512B"), (1024, "1K"), (1536, "1.5K"), (3 * 1024**2, "3M"), (-5, "0B")],
    )
    def test_fmt_bytes(self, value, expected) -> None:
        assert fmt_bytes(value) == expected

    @pytest.mark.parametrize(
        ("delta", "expected"),
        [
            (timedelta(seconds=1), "1 second"),
            (timedelta(minutes=5), "5 minutes"),
            (timedelta(hours=1, minutes=59), "1 hour"),
            (timedelta(days=3), "3 days"),
            (timedelta(days=15), "2 weeks"),
        ],
    )
    def test_fmt_age(self, delta, expected) -> None:
        assert fmt_age(delta) == expected


class TestMetrics:
    def test_rate_from_last_pair(self) -> None:
        assert metric_rate(_points(0, 30, 90), 30) == 2.0

    def test_rate_skips_gaps(self) -> None:
        assert metric_rate(_points(30, 60, None), 30) == 1.0

    def test_rate_no_pair(self) -> None:
        assert metric_rate(_points(None, 5, None), 30) is None

    def test_rows(self) -> None:
        snapshot = _snapshot(
            {
                ("fluentbit_input", "cpu.0", "records_total"): _points(0, 300),
                ("fluentbit_input", "cpu.0", "bytes_total"): _points(0, 30 * 2048),
                ("fluentbit_output", "stdout.0", "errors_total"): _points(5),
                ("fluentbit_output", "stdout.0", "retries_total"): _points(None, None),
                ("fluentbit_input", "calyptia.0", "records_total"): _points(0, 30),
            }
        )

        rows = metric_rows(snapshot, 30)

        assert rows == [
            ("cpu.0 (fluentbit_input)", "bytes_total", "2K"),
            ("cpu.0 (fluentbit_input)", "records_total", "10"),
            ("stdout.0 (fluentbit_output)", "errors_total", "Not enough data"),
            ("stdout.0 (fluentbit_output)", "retries_total", "No data"),
        ]


class TestAgentDescription:
    def test_active(self) -> None:
        agent = Agent(
            id="a", name="n", type="fluentbit", version="2.1", last_metrics_added_at=NOW
        )
        assert agent_description(agent, NOW, timedelta(seconds=60)) == "fluentbit 2.1 (active)"

    def test_inactive_with_age(self) -> None:
        agent = Agent(id="a", name="n", type="fluentd", last_metrics_added_at=NOW - timedelta(days=3))
        assert agent_description(agent, NOW, timedelta(seconds=60)) == "fluentd (inactive for 3 days)"

    def test_never_reported(self) -> None:
        agent = Agent(id="a", name="n")
        assert agent_description(agent, NOW, timedelta(seconds=60)) == "(inactive)"


# ---------------------------------------------------------------------------
# Screens
# ---------------------------------------------------------------------------


class TestRender:
    def test_idle(self) -> None:
        assert "Starting" in _text(render(Idle(), now=NOW))

    def test_logged_out(self) -> None:
        out = _text(render(Idle(reason="Logged out."), now=NOW))
        assert "Logged out." in out
        assert "r log in" in out

    def test_requesting_device_code(self) -> None:
        assert "Requesting a new device code" in _text(render(RequestingDeviceCode(), now=NOW))

    def test_awaiting_authorization(self) -> None:
        auth = DeviceAuthorization(
            device_code="d",
            user_code="WXYZ-1234",
            verification_uri="https://sso/activate",
            issued_at=NOW,
        )
        out = _text(render(AwaitingAuthorization(auth, 5.0), now=NOW))

        assert "https://sso/activate" in out
        assert "WXYZ-1234" in out

    def test_projects_loading(self) -> None:
        assert "Fetching your project list" in _text(render(ListingProjects(), now=NOW))

    def test_projects(self) -> None:
        out = _text(render(ListingProjects(PROJECTS, cursor=1), now=NOW))

        assert "alpha" in out
        assert "beta" in out
        assert "enter select" in out

    def test_no_projects(self) -> None:
        assert "No projects" in _text(render(ListingProjects(()), now=NOW))

    def test_project_loading(self) -> None:
        out = _text(render(ViewingProject(PROJECTS[0]), now=NOW))

        assert "alpha" in out
        assert "Fetching metrics" in out
        assert "Fetching your agent list" in out

    def test_project_with_data(self) -> None:
        snapshot = _snapshot({("fluentbit_input", "cpu.0", "records_total"): _points(0, 600)})
        agents = (
            Agent(id="a1", name="edge", type="fluentbit", last_metrics_added_at=NOW),
            Agent(id="a2", name="old", type="fluentbit"),
        )
        state = ViewingProject(
            PROJECTS[0],
            metrics=snapshot,
            agents=agents,
            agent_metrics=(AgentMetrics(id="a1", metrics=snapshot),),
        )

        out = _text(render(state, now=NOW))

        assert "cpu.0 (fluentbit_input)" in out
        assert "records_total" in out
        assert "20" in out
        assert "edge" in out
        assert "(active)" in out
        assert "(inactive)" in out

    def test_project_errors_inline(self) -> None:
        state = ViewingProject(PROJECTS[0], metrics_error="HTTP 500", agents_error="HTTP 404")

        out = _text(render(state, now=NOW))

        assert "Could not fetch metrics: HTTP 500" in out
        assert "Could not fetch your agent list: HTTP 404" in out

    def test_no_measurements(self) -> None:
        state = ViewingProject(PROJECTS[0], metrics=MetricsSnapshot(), agents=())

        out = _text(render(state, now=NOW))

        assert "No measurements" in out
        assert "No agents" in out

    def test_failed(self) -> None:
        state = Failed("the authorization request was denied", FailureKind.DENIED, RetryTarget.LOGIN)

        out = _text(render(state, now=NOW))

        assert "Authorization denied" in out
        assert "r retry" in out

    def test_render_is_pure(self) -> None:
        state = ListingProjects(PROJECTS)
        assert _text(render(state, now=NOW)) == _text(render(state, now=NOW))
