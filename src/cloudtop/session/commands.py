"""Side effects requested by the reducer and carried out by the runtime.

The reducer never performs I/O.  It returns these values and
:class:`~cloudtop.session.runtime.SessionRuntime` executes them, turning
each result into a future message tagged with the command's ``epoch``.

Every background command belongs to a :class:`Scope`; cancelling a scope
cancels all of its in-flight work at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Union

from cloudtop.auth.device_flow import AccessCredential


class Scope(str, Enum):
    LOGIN = "login"
    PROJECTS = "projects"
    PROJECT = "project"
    ALL = "all"


@dataclass(frozen=True)
class RequestDeviceCode:
    epoch: int
    scope: ClassVar[Scope] = Scope.LOGIN


@dataclass(frozen=True)
class SchedulePoll:
    """Sleep *delay* seconds, then poll once unless *deadline* has passed."""

    device_code: str
    delay: float
    deadline: datetime
    epoch: int
    scope: ClassVar[Scope] = Scope.LOGIN


@dataclass(frozen=True)
class SaveCredential:
    credential: AccessCredential


@dataclass(frozen=True)
class DeleteCredential:
    pass


@dataclass(frozen=True)
class FetchProjects:
    epoch: int
    scope: ClassVar[Scope] = Scope.PROJECTS


@dataclass(frozen=True)
class FetchAgents:
    """Fetch a project's agents, then the metrics of each active agent."""

    project_id: str
    epoch: int
    scope: ClassVar[Scope] = Scope.PROJECT


@dataclass(frozen=True)
class StartMetricsLoop:
    project_id: str
    epoch: int
    scope: ClassVar[Scope] = Scope.PROJECT


@dataclass(frozen=True)
class CancelScope:
    scope: Scope


@dataclass(frozen=True)
class OpenBrowser:
    url: str


@dataclass(frozen=True)
class Exit:
    reason: Optional[str] = None


Command = Union[
    RequestDeviceCode,
    SchedulePoll,
    SaveCredential,
    DeleteCredential,
    FetchProjects,
    FetchAgents,
    StartMetricsLoop,
    CancelScope,
    OpenBrowser,
    Exit,
]
