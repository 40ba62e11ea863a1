"""Messages consumed by the session reducer.

Two families:

* user input (:class:`CursorMoved`, :class:`UserSelectedProject`,
  :class:`UserWentBack`, :class:`UserLoggedOut`, :class:`Retry`,
  :class:`Quit`) and timer ticks, which are never stale;
* results of background work, subclasses of :class:`ScopedMessage`, which
  carry the epoch of the state that requested them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from cloudtop.auth.device_flow import AccessCredential, DeviceAuthorization, PollOutcome, utcnow
from cloudtop.models import Agent, AgentMetrics, MetricsSnapshot, Project


class ScopedMessage:
    """Marker base for results tagged with the epoch that requested them."""

    epoch: int


# --- Session control ---


@dataclass(frozen=True)
class Start:
    """Begin the session, reusing *credential* when it is still usable."""

    credential: Optional[AccessCredential] = None
    now: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Retry:
    pass


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class Tick:
    """Periodic redraw; changes nothing."""


# --- User input ---


@dataclass(frozen=True)
class CursorMoved:
    delta: int


@dataclass(frozen=True)
class UserSelectedProject:
    """Open a project.  ``index`` defaults to the cursor position."""

    index: Optional[int] = None


@dataclass(frozen=True)
class UserWentBack:
    pass


@dataclass(frozen=True)
class UserLoggedOut:
    pass


# --- Background results ---


@dataclass(frozen=True)
class DeviceCodeReceived(ScopedMessage):
    authorization: DeviceAuthorization
    epoch: int = 0


@dataclass(frozen=True)
class DeviceCodeFailed(ScopedMessage):
    error: str
    epoch: int = 0


@dataclass(frozen=True)
class PollOutcomeReceived(ScopedMessage):
    outcome: PollOutcome
    epoch: int = 0


@dataclass(frozen=True)
class AuthorizationTimedOut(ScopedMessage):
    epoch: int = 0


@dataclass(frozen=True)
class ProjectsFetched(ScopedMessage):
    projects: tuple[Project, ...]
    epoch: int = 0


@dataclass(frozen=True)
class ProjectsFailed(ScopedMessage):
    error: str
    unauthorized: bool = False
    epoch: int = 0


@dataclass(frozen=True)
class AgentsFetched(ScopedMessage):
    agents: tuple[Agent, ...]
    agent_metrics: tuple[AgentMetrics, ...] = ()
    epoch: int = 0


@dataclass(frozen=True)
class AgentsFailed(ScopedMessage):
    error: str
    epoch: int = 0


@dataclass(frozen=True)
class MetricsTick(ScopedMessage):
    """One metrics refresh result.  Exactly one of ``snapshot`` / ``error`` is set."""

    snapshot: Optional[MetricsSnapshot] = None
    error: Optional[str] = None
    is_refresh: bool = False
    epoch: int = 0


Message = Union[
    Start,
    Retry,
    Quit,
    Tick,
    CursorMoved,
    UserSelectedProject,
    UserWentBack,
    UserLoggedOut,
    DeviceCodeReceived,
    DeviceCodeFailed,
    PollOutcomeReceived,
    AuthorizationTimedOut,
    ProjectsFetched,
    ProjectsFailed,
    AgentsFetched,
    AgentsFailed,
    MetricsTick,
]
