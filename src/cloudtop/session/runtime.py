"""Event loop that owns the session state and executes reducer commands.

:class:`SessionRuntime` is the only place where :class:`SessionState` is
replaced.  It consumes messages one at a time from an :class:`asyncio.Queue`,
feeds them to :func:`~cloudtop.session.reducer.reduce`, reports the new
state, and turns the returned commands into :class:`asyncio.Task` objects.
Every task finishes by posting a message; no exception raised by a service
ever reaches the reducer.

Tasks are grouped by :class:`~cloudtop.session.commands.Scope` so that going
back or logging out cancels the whole group, including any in-flight HTTP
request and the metrics refresh loop.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from cloudtop.auth.credential_store import TokenStore
from cloudtop.auth.device_flow import Clock, DeviceFlowClient, utcnow
from cloudtop.client.cloud_client import CloudClient
from cloudtop.exceptions import AuthError
from cloudtop.fetcher import fetch_all
from cloudtop.models import Agent, AgentMetrics, DashboardConfig
from cloudtop.session import commands as cmd
from cloudtop.session import messages as msg
from cloudtop.session.metrics_loop import MetricsFetched, MetricsRefreshLoop
from cloudtop.session.reducer import reduce
from cloudtop.session.state import Idle, SessionState

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SessionRuntime:
    """Drive the dashboard session until an ``Exit`` command.

    Args:
        flow: Device flow client used for login.
        cloud: Cloud API client, already entered as a context manager.
        tokens: Persistent credential storage.
        settings: Dashboard timings (refresh tick, metrics window).
        on_state: Called with every new state, typically to redraw.
        open_browser: Opens the verification URL.
        sleep: Awaitable sleep used by every timer, injectable for tests.
        clock: Current UTC time.
        redraw_interval: Seconds between :class:`~cloudtop.session.messages.Tick`
            messages; ``None`` disables them.
    """

    def __init__(
        self,
        flow: DeviceFlowClient,
        cloud: CloudClient,
        tokens: TokenStore,
        settings: Optional[DashboardConfig] = None,
        on_state: Optional[Callable[[SessionState], None]] = None,
        open_browser: Callable[[str], object] = webbrowser.open,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utcnow,
        redraw_interval: Optional[float] = 1.0,
    ) -> None:
        self._flow = flow
        self._cloud = cloud
        self._tokens = tokens
        self._settings = settings or DashboardConfig()
        self._on_state = on_state
        self._open_browser = open_browser
        self._sleep = sleep
        self._clock = clock
        self._redraw_interval = redraw_interval

        self._state: SessionState = Idle()
        self._queue: asyncio.Queue[msg.Message] = asyncio.Queue()
        self._tasks: dict[cmd.Scope, set[asyncio.Task[None]]] = {}
        self._ticker: Optional[asyncio.Task[None]] = None
        self._exiting = False

    @property
    def state(self) -> SessionState:
        return self._state

    # ------------------------------------------------------------------ #
    # Message intake
    # ------------------------------------------------------------------ #

    def post(self, message: msg.Message) -> None:
        """Queue *message*.  Must be called from the event loop thread."""
        self._queue.put_nowait(message)

    async def run(self) -> SessionState:
        """Start the session and process messages until an ``Exit`` command.

        Returns:
            The final state.
        """
        self._exiting = False
        self.post(msg.Start(self._tokens.load_or_none(), now=self._clock()))
        if self._redraw_interval:
            self._ticker = asyncio.ensure_future(self._tick_forever(self._redraw_interval))
        try:
            while not self._exiting:
                message = await self._queue.get()
                self.dispatch(message)
        finally:
            if self._ticker is not None:
                self._ticker.cancel()
            await self._cancel(cmd.Scope.ALL)
        return self._state

    def dispatch(self, message: msg.Message) -> None:
        """Reduce one message and execute the resulting commands."""
        state, commands = reduce(self._state, message)
        if state is not self._state:
            logger.debug("%s -> %s", type(self._state).__name__, type(state).__name__)
        self._state = state
        if self._on_state is not None:
            self._on_state(state)
        for command in commands:
            self._execute(command)

    # ------------------------------------------------------------------ #
    # Command execution
    # ------------------------------------------------------------------ #

    def _execute(self, command: cmd.Command) -> None:
        if isinstance(command, cmd.RequestDeviceCode):
            self._spawn(command.scope, self._request_device_code(command.epoch))
        elif isinstance(command, cmd.SchedulePoll):
            self._spawn(command.scope, self._poll(command))
        elif isinstance(command, cmd.SaveCredential):
            self._cloud.set_credential(command.credential)
            try:
                self._tokens.save(command.credential)
            except OSError as exc:
                logger.warning("could not save your login: %s", exc)
        elif isinstance(command, cmd.DeleteCredential):
            self._cloud.set_credential(None)
            try:
                self._tokens.delete()
            except OSError as exc:
                logger.warning("could not delete your login: %s", exc)
        elif isinstance(command, cmd.FetchProjects):
            self._spawn(command.scope, self._fetch_projects(command.epoch))
        elif isinstance(command, cmd.FetchAgents):
            self._spawn(command.scope, self._fetch_agents(command.project_id, command.epoch))
        elif isinstance(command, cmd.StartMetricsLoop):
            self._start_metrics_loop(command.project_id, command.epoch)
        elif isinstance(command, cmd.CancelScope):
            self._cancel_nowait(command.scope)
        elif isinstance(command, cmd.OpenBrowser):
            self._browse(command.url)
        elif isinstance(command, cmd.Exit):
            self._exiting = True

    def _spawn(self, scope: cmd.Scope, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        tasks = self._tasks.setdefault(scope, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    def _cancel_nowait(self, scope: cmd.Scope) -> list[asyncio.Task[None]]:
        scopes = list(self._tasks) if scope is cmd.Scope.ALL else [scope]
        cancelled: list[asyncio.Task[None]] = []
        for name in scopes:
            for task in list(self._tasks.get(name, ())):
                task.cancel()
                cancelled.append(task)
        return cancelled

    async def _cancel(self, scope: cmd.Scope) -> None:
        cancelled = self._cancel_nowait(scope)
        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)

    def _browse(self, url: str) -> None:
        try:
            self._open_browser(url)
        except webbrowser.Error as exc:
            logger.debug("could not open a browser: %s", exc)

    # ------------------------------------------------------------------ #
    # Background work
    # ------------------------------------------------------------------ #

    async def _tick_forever(self, interval: float) -> None:
        while True:
            await self._sleep(interval)
            self.post(msg.Tick())

    async def _request_device_code(self, epoch: int) -> None:
        try:
            authorization = await self._flow.request_device_code()
        except Exception as exc:
            self.post(msg.DeviceCodeFailed(str(exc), epoch=epoch))
            return
        self.post(msg.DeviceCodeReceived(authorization, epoch=epoch))

    async def _poll(self, command: cmd.SchedulePoll) -> None:
        await self._sleep(command.delay)
        if self._clock() >= command.deadline:
            self.post(msg.AuthorizationTimedOut(epoch=command.epoch))
            return
        outcome = await self._flow.poll_token(command.device_code)
        self.post(msg.PollOutcomeReceived(outcome, epoch=command.epoch))

    async def _fetch_projects(self, epoch: int) -> None:
        try:
            projects = await self._cloud.list_projects()
        except AuthError as exc:
            self.post(msg.ProjectsFailed(str(exc), unauthorized=True, epoch=epoch))
            return
        except Exception as exc:
            self.post(msg.ProjectsFailed(str(exc), epoch=epoch))
            return
        self.post(msg.ProjectsFetched(tuple(projects), epoch=epoch))

    async def _fetch_agents(self, project_id: str, epoch: int) -> None:
        settings = self._settings
        window = timedelta(seconds=abs(settings.metrics_start))
        now = self._clock()

        async def fetch_agent_metrics(agent: Agent) -> list[AgentMetrics]:
            snapshot = await self._cloud.agent_metrics(
                agent.id, settings.metrics_start, settings.metrics_interval
            )
            return [AgentMetrics(id=agent.id, metrics=snapshot)]

        try:
            agents = await self._cloud.list_agents(project_id)
            active = [agent for agent in agents if agent.is_active(window, now)]
            agent_metrics = await fetch_all(active, fetch_agent_metrics)
        except Exception as exc:
            self.post(msg.AgentsFailed(str(exc), epoch=epoch))
            return
        self.post(msg.AgentsFetched(tuple(agents), tuple(agent_metrics), epoch=epoch))

    def _start_metrics_loop(self, project_id: str, epoch: int) -> None:
        settings = self._settings
        loop = MetricsRefreshLoop(
            lambda: self._cloud.project_metrics(
                project_id, settings.metrics_start, settings.metrics_interval
            ),
            settings.refresh_interval,
            sleep=self._sleep,
        )
        self._spawn(cmd.Scope.PROJECT, self._forward_metrics(loop, epoch))

    async def _forward_metrics(self, loop: MetricsRefreshLoop, epoch: int) -> None:
        loop.start()
        try:
            async for result in loop.results():
                if isinstance(result, MetricsFetched):
                    self.post(
                        msg.MetricsTick(
                            snapshot=result.snapshot, is_refresh=result.is_refresh, epoch=epoch
                        )
                    )
                else:
                    self.post(msg.MetricsTick(error=str(result.error), epoch=epoch))
        finally:
            await loop.aclose()
