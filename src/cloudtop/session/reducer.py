"""Pure transition function for the dashboard session.

:func:`reduce` maps ``(state, message)`` to ``(new_state, commands)``.  It
performs no I/O, never raises for a well-formed message, and returns the
input state unchanged (with no commands) for messages that do not apply.

Transition summary::

    Idle                  --Start/Retry-->         RequestingDeviceCode | ListingProjects
    RequestingDeviceCode  --DeviceCodeReceived-->  AwaitingAuthorization
    AwaitingAuthorization --Pending/SlowDown-->    AwaitingAuthorization (poll again)
    AwaitingAuthorization --Success-->             ListingProjects (save, fetch)
    AwaitingAuthorization --Expired/Denied/...-->  Failed
    ListingProjects       --ProjectsFetched-->     ListingProjects (ready)
    ListingProjects       --UserSelectedProject--> ViewingProject (agents, metrics loop)
    ViewingProject        --MetricsTick-->         ViewingProject (new snapshot)
    ViewingProject        --UserWentBack-->        ListingProjects (cancel view)
    any but Failed        --UserLoggedOut-->       Idle (delete credential, cancel all)
    Failed                --Retry-->               the failed step
    any                   --Quit-->                Idle (cancel all, exit)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable

from cloudtop.auth.device_flow import (
    Denied,
    Expired,
    Pending,
    SlowDown,
    Success,
    TransportError,
    next_poll_interval,
)
from cloudtop.session import commands as cmd
from cloudtop.session import messages as msg
from cloudtop.session.state import (
    AwaitingAuthorization,
    Failed,
    FailureKind,
    Idle,
    ListingProjects,
    RequestingDeviceCode,
    RetryTarget,
    SessionState,
    ViewingProject,
)

logger = logging.getLogger(__name__)

Commands = tuple[cmd.Command, ...]
Transition = tuple[SessionState, Commands]

_NOTHING: Commands = ()


def reduce(state: SessionState, message: msg.Message) -> Transition:
    """Return the next state and the commands to run for *message*."""
    if isinstance(message, msg.ScopedMessage) and message.epoch != state.epoch:
        logger.debug(
            "dropping stale %s (epoch %d, current %d)",
            type(message).__name__, message.epoch, state.epoch,
        )
        return state, _NOTHING

    if isinstance(message, msg.Quit):
        return Idle(epoch=state.epoch + 1), (cmd.CancelScope(cmd.Scope.ALL), cmd.Exit())

    if isinstance(message, msg.Tick):
        return state, _NOTHING

    if isinstance(state, Failed):
        if isinstance(message, msg.Retry):
            return _retry(state)
        return state, _NOTHING

    if isinstance(message, msg.UserLoggedOut):
        return (
            Idle(epoch=state.epoch + 1, reason="Logged out."),
            (cmd.CancelScope(cmd.Scope.ALL), cmd.DeleteCredential()),
        )

    handler = _HANDLERS.get(type(state))
    if handler is None:  # pragma: no cover
        return state, _NOTHING
    return handler(state, message)


# ------------------------------------------------------------------ #
# Per-state handlers
# ------------------------------------------------------------------ #


def _idle(state: Idle, message: msg.Message) -> Transition:
    if isinstance(message, msg.Start):
        credential = message.credential
        if credential is not None and (
            credential.refresh_token or not credential.is_expired(message.now)
        ):
            return _list_projects(state.epoch + 1)
        return _request_device_code(state.epoch + 1)
    if isinstance(message, msg.Retry):
        return _request_device_code(state.epoch + 1)
    return state, _NOTHING


def _requesting_device_code(state: RequestingDeviceCode, message: msg.Message) -> Transition:
    if isinstance(message, msg.DeviceCodeReceived):
        authorization = message.authorization
        interval = float(authorization.interval)
        return (
            AwaitingAuthorization(authorization, interval, epoch=state.epoch),
            (
                cmd.OpenBrowser(authorization.browser_url),
                cmd.SchedulePoll(
                    authorization.device_code,
                    interval,
                    authorization.expires_at,
                    epoch=state.epoch,
                ),
            ),
        )
    if isinstance(message, msg.DeviceCodeFailed):
        return _fail(state, message.error, FailureKind.DEVICE_CODE, RetryTarget.LOGIN)
    return state, _NOTHING


def _awaiting_authorization(state: AwaitingAuthorization, message: msg.Message) -> Transition:
    if isinstance(message, msg.AuthorizationTimedOut):
        return _fail(
            state,
            "the device code expired before it was authorized",
            FailureKind.EXPIRED,
            RetryTarget.LOGIN,
        )
    if not isinstance(message, msg.PollOutcomeReceived):
        return state, _NOTHING

    outcome = message.outcome
    if isinstance(outcome, (Pending, SlowDown)):
        interval = next_poll_interval(outcome, state.interval)
        return (
            replace(state, interval=interval),
            (
                cmd.SchedulePoll(
                    state.authorization.device_code,
                    interval,
                    state.authorization.expires_at,
                    epoch=state.epoch,
                ),
            ),
        )
    if isinstance(outcome, Success):
        next_state, commands = _list_projects(state.epoch + 1)
        return next_state, (
            cmd.CancelScope(cmd.Scope.LOGIN),
            cmd.SaveCredential(outcome.credential),
            *commands,
        )
    if isinstance(outcome, Expired):
        reason, kind = "the device code expired before it was authorized", FailureKind.EXPIRED
    elif isinstance(outcome, Denied):
        reason, kind = "the authorization request was denied", FailureKind.DENIED
    elif isinstance(outcome, TransportError):
        reason, kind = f"could not fetch access token: {outcome}", FailureKind.TRANSPORT
    else:  # pragma: no cover
        return state, _NOTHING
    return _fail(state, reason, kind, RetryTarget.LOGIN)


def _listing_projects(state: ListingProjects, message: msg.Message) -> Transition:
    if isinstance(message, msg.ProjectsFetched):
        projects = tuple(message.projects)
        cursor = min(state.cursor, max(len(projects) - 1, 0))
        return replace(state, projects=projects, cursor=cursor), _NOTHING
    if isinstance(message, msg.ProjectsFailed):
        if message.unauthorized:
            return _fail(
                state,
                f"could not fetch your project list: {message.error}",
                FailureKind.UNAUTHORIZED,
                RetryTarget.LOGIN,
            )
        return _fail(
            state,
            f"could not fetch your project list: {message.error}",
            FailureKind.PROJECTS,
            RetryTarget.PROJECTS,
        )
    if isinstance(message, msg.Retry):
        return _list_projects(state.epoch + 1, cursor=state.cursor)
    if state.projects is None:
        return state, _NOTHING

    if isinstance(message, msg.CursorMoved):
        if not state.projects:
            return state, _NOTHING
        cursor = min(max(state.cursor + message.delta, 0), len(state.projects) - 1)
        return replace(state, cursor=cursor), _NOTHING
    if isinstance(message, msg.UserSelectedProject):
        index = state.cursor if message.index is None else message.index
        if not 0 <= index < len(state.projects):
            return state, _NOTHING
        project = state.projects[index]
        epoch = state.epoch + 1
        return (
            ViewingProject(project, projects=state.projects, cursor=index, epoch=epoch),
            (
                cmd.FetchAgents(project.id, epoch=epoch),
                cmd.StartMetricsLoop(project.id, epoch=epoch),
            ),
        )
    return state, _NOTHING


def _viewing_project(state: ViewingProject, message: msg.Message) -> Transition:
    if isinstance(message, msg.MetricsTick):
        if message.snapshot is not None:
            snapshot = message.snapshot
            # An empty refresh keeps the last non-empty snapshot on screen.
            if snapshot.is_empty and state.metrics is not None:
                snapshot = state.metrics
            return replace(state, metrics=snapshot, metrics_error=None), _NOTHING
        if message.is_refresh:
            return state, _NOTHING
        return replace(state, metrics_error=message.error or "unknown error"), _NOTHING
    if isinstance(message, msg.AgentsFetched):
        return (
            replace(
                state,
                agents=tuple(message.agents),
                agent_metrics=tuple(message.agent_metrics),
                agents_error=None,
            ),
            _NOTHING,
        )
    if isinstance(message, msg.AgentsFailed):
        return replace(state, agents_error=message.error), _NOTHING
    if isinstance(message, msg.UserWentBack):
        return (
            ListingProjects(state.projects, cursor=state.cursor, epoch=state.epoch + 1),
            (cmd.CancelScope(cmd.Scope.PROJECT),),
        )
    return state, _NOTHING


_HANDLERS: dict[type, Callable[..., Transition]] = {
    Idle: _idle,
    RequestingDeviceCode: _requesting_device_code,
    AwaitingAuthorization: _awaiting_authorization,
    ListingProjects: _listing_projects,
    ViewingProject: _viewing_project,
}


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _request_device_code(epoch: int) -> Transition:
    return RequestingDeviceCode(epoch=epoch), (cmd.RequestDeviceCode(epoch=epoch),)


def _list_projects(epoch: int, cursor: int = 0) -> Transition:
    return ListingProjects(cursor=cursor, epoch=epoch), (cmd.FetchProjects(epoch=epoch),)


def _fail(
    state: SessionState,
    reason: str,
    kind: FailureKind,
    target: RetryTarget,
) -> Transition:
    logger.debug("session failed (%s): %s", kind.value, reason)
    scope = cmd.Scope.LOGIN if target is RetryTarget.LOGIN else cmd.Scope.PROJECTS
    return (
        Failed(reason, kind, target, epoch=state.epoch + 1),
        (cmd.CancelScope(scope),),
    )


def _retry(state: Failed) -> Transition:
    if state.retry_target is RetryTarget.PROJECTS:
        return _list_projects(state.epoch + 1)
    return _request_device_code(state.epoch + 1)
