"""Immutable session states for the interactive dashboard.

Exactly one of these values describes the screen at any time.  They are
only ever created by :func:`cloudtop.session.reducer.reduce`; the runtime
replaces the current value wholesale after every message.

Every state carries an ``epoch``.  Background work is tagged with the epoch
of the state that started it, and the reducer drops results whose epoch no
longer matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from cloudtop.auth.device_flow import DeviceAuthorization
from cloudtop.models import Agent, AgentMetrics, MetricsSnapshot, Project


class FailureKind(str, Enum):
    """What went wrong, used to pick the message shown to the user."""

    DEVICE_CODE = "device_code"
    EXPIRED = "expired"
    DENIED = "denied"
    TRANSPORT = "transport"
    PROJECTS = "projects"
    UNAUTHORIZED = "unauthorized"


class RetryTarget(str, Enum):
    """The step a ``Retry`` from :class:`Failed` goes back to."""

    LOGIN = "login"
    PROJECTS = "projects"


@dataclass(frozen=True)
class Idle:
    epoch: int = 0
    reason: str = ""


@dataclass(frozen=True)
class RequestingDeviceCode:
    epoch: int = 0


@dataclass(frozen=True)
class AwaitingAuthorization:
    """Waiting for the user to approve the device.

    ``interval`` is the current polling interval; it only ever grows.
    """

    authorization: DeviceAuthorization
    interval: float
    epoch: int = 0


@dataclass(frozen=True)
class ListingProjects:
    """Project picker.  ``projects`` is ``None`` while the list is loading."""

    projects: Optional[tuple[Project, ...]] = None
    cursor: int = 0
    epoch: int = 0

    @property
    def loading(self) -> bool:
        return self.projects is None

    @property
    def selected(self) -> Optional[Project]:
        if not self.projects:
            return None
        return self.projects[self.cursor]


@dataclass(frozen=True)
class ViewingProject:
    """One project's metrics and agents.

    ``metrics`` and ``agents`` are ``None`` until their first fetch lands.
    ``projects`` and ``cursor`` remember the picker so going back needs no
    refetch.
    """

    project: Project
    projects: tuple[Project, ...] = ()
    cursor: int = 0
    metrics: Optional[MetricsSnapshot] = None
    metrics_error: Optional[str] = None
    agents: Optional[tuple[Agent, ...]] = None
    agent_metrics: tuple[AgentMetrics, ...] = ()
    agents_error: Optional[str] = None
    epoch: int = 0

    def metrics_for(self, agent_id: str) -> Optional[MetricsSnapshot]:
        for entry in self.agent_metrics:
            if entry.id == agent_id:
                return entry.metrics
        return None


@dataclass(frozen=True)
class Failed:
    """Terminal error screen.  Only ``Retry`` and ``Quit`` leave it."""

    reason: str
    kind: FailureKind
    retry_target: RetryTarget
    epoch: int = 0


SessionState = Union[
    Idle,
    RequestingDeviceCode,
    AwaitingAuthorization,
    ListingProjects,
    ViewingProject,
    Failed,
]
