"""Canonical Pydantic models shared across all cloudtop modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`AuthSettings`, :class:`RequestConfig`, :class:`DashboardConfig`,
    :class:`OutputConfig` and :class:`GlobalConfig`.

**Cloud resource models** -- decoded from the cloud REST API:
    :class:`Project`, :class:`Agent`, :class:`CoreInstance`,
    :class:`Pipeline`, :class:`MetricPoint` and :class:`MetricsSnapshot`.

Resource models accept the API's camelCase keys through aliases and are
frozen: once decoded they are handed between tasks and the session state
machine without copying, so nobody may mutate them in place.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# --- Configuration ---


class AuthSettings(BaseModel):
    """Authorization server settings used by the device flow.

    Example::

        AuthSettings(domain="sso.example.com", client_id="abc123")
    """

    domain: str = Field(
        default="sso.calyptia.com", description="Authorization server domain"
    )
    client_id: Optional[str] = Field(
        default=None, description="OAuth2 client ID registered for the CLI"
    )
    audience: str = Field(
        default="https://config.calyptia.com",
        description="API audience requested in the device code call",
    )
    scope: str = Field(
        default="user email offline_access",
        description="Space separated scopes requested for the token",
    )


class RequestConfig(BaseModel):
    """Default HTTP request settings applied to every API call."""

    timeout: int = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(default=3, description="Max retry attempts")


class DashboardConfig(BaseModel):
    """Timing settings for the interactive ``top`` dashboard."""

    refresh_interval: float = Field(
        default=5.0, description="Seconds between metrics refresh ticks"
    )
    metrics_start: int = Field(
        default=-60, description="Metrics window start, in seconds relative to now"
    )
    metrics_interval: int = Field(
        default=30, description="Metrics aggregation interval in seconds"
    )


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`GlobalConfig`."""

    format: str = Field(
        default="auto", description="Output format: auto, json, yaml, plain, rich"
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/cloudtop/config.json``.

    Loaded and saved by :func:`~cloudtop.config.load_global_config` and
    :func:`~cloudtop.config.save_global_config`.  See
    :func:`~cloudtop.config.resolve_config` for the precedence chain.
    """

    cloud_url: str = Field(
        default="https://cloud-api.calyptia.com", description="Cloud API base URL"
    )
    auth: AuthSettings = Field(default_factory=AuthSettings)
    request: RequestConfig = Field(default_factory=RequestConfig)
    dashboard: DashboardConfig = Field(default_factory=DashboardConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


# --- Cloud resources ---


class _Resource(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Project(_Resource):
    """A cloud project, the top-level container for agents and core instances."""

    id: str
    name: str
    created_at: Optional[datetime] = None


class Agent(_Resource):
    """A telemetry agent reporting metrics into a project.

    An agent is considered active when it reported metrics inside the
    current metrics window; see :meth:`is_active`.
    """

    id: str
    name: str
    type: str = ""
    version: str = ""
    first_metrics_added_at: Optional[datetime] = None
    last_metrics_added_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_active(self, window: timedelta, now: Optional[datetime] = None) -> bool:
        """Return ``True`` if the agent reported metrics within *window*."""
        if self.last_metrics_added_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        last = self.last_metrics_added_at
        if last.tzinfo is None:
            last = last.replace(tzinfo=timezone.utc)
        return last >= now - window


class CoreInstance(_Resource):
    """A managed core instance (aggregator) that runs pipelines."""

    id: str
    name: str
    created_at: Optional[datetime] = None


class Pipeline(_Resource):
    """A pipeline deployed on a core instance."""

    id: str
    name: str
    replicas_count: int = 0
    status: str = ""
    created_at: Optional[datetime] = None


class MetricPoint(_Resource):
    """One sample of a metric time series. ``value`` is ``None`` for gaps."""

    time: datetime
    value: Optional[float] = None


class PluginMetrics(_Resource):
    """Metric name to ordered time series, for one plugin instance."""

    metrics: dict[str, tuple[MetricPoint, ...]] = Field(default_factory=dict)


class Measurement(_Resource):
    """Plugin name to :class:`PluginMetrics`, for one measurement."""

    plugins: dict[str, PluginMetrics] = Field(default_factory=dict)


class MetricsSnapshot(_Resource):
    """Point-in-time view of project or agent metrics.

    Shape: measurement name -> plugin name -> metric name -> series.  A
    snapshot is replaced wholesale on every refresh; renderers always read
    a single consistent snapshot.
    """

    measurements: dict[str, Measurement] = Field(default_factory=dict)

    def series(self) -> list[tuple[str, str, str, tuple[MetricPoint, ...]]]:
        """Flatten to ``(measurement, plugin, metric, points)`` sorted by name."""
        out = []
        for measurement_name in sorted(self.measurements):
            plugins = self.measurements[measurement_name].plugins
            for plugin_name in sorted(plugins):
                metrics = plugins[plugin_name].metrics
                for metric_name in sorted(metrics):
                    out.append(
                        (measurement_name, plugin_name, metric_name, metrics[metric_name])
                    )
        return out

    @property
    def is_empty(self) -> bool:
        return not self.measurements


class AgentMetrics(_Resource):
    """Metrics snapshot for one agent, keyed by the agent ID for fan-in."""

    id: str
    metrics: MetricsSnapshot
