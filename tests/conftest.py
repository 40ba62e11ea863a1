"""Shared test fixtures for cloudtop.

Provides reusable fixtures for isolated config environments, in-memory
keyring backends, output state and CLI invocation.  These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from cloudtop.auth.credential_store import CredentialStore, TokenStore
from cloudtop.output import OutputFormat, OutputManager, reset_output, set_output


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Fake time
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced UTC clock, paired with a recording sleep.

    :meth:`sleep` advances the clock instead of waiting but still yields to
    the event loop, so periodic loops cannot starve other tasks.
    """

    def __init__(self, start: datetime = T0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Keyring backends
# ---------------------------------------------------------------------------


class MemoryKeyring(KeyringBackend):
    """Dict backed keyring for tests."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username) from None


class BrokenKeyring(KeyringBackend):
    """Keyring that fails every call, like a headless host without a backend."""

    priority = 1  # type: ignore[assignment]

    def get_password(self, service: str, username: str) -> Optional[str]:
        raise KeyringError("no backend")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise KeyringError("no backend")

    def delete_password(self, service: str, username: str) -> None:
        raise KeyringError("no backend")


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    return MemoryKeyring()


@pytest.fixture
def broken_keyring() -> BrokenKeyring:
    return BrokenKeyring()


@pytest.fixture
def token_store(tmp_path: Path, memory_keyring: MemoryKeyring) -> TokenStore:
    """TokenStore over an in-memory keyring and a temporary fallback dir."""
    return TokenStore(CredentialStore(fallback_dir=tmp_path / "creds", backend=memory_keyring))


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets HOME, XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of
    tmp_path so that tests never touch real user config, clears all
    CLOUDTOP_* environment variables, and installs an in-memory keyring as
    the process default.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    import keyring

    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("cloudtop.config._is_xdg_platform", lambda: True)

    for var in [
        "CLOUDTOP_CLOUD_URL",
        "CLOUDTOP_AUTH0_DOMAIN",
        "CLOUDTOP_AUTH0_CLIENT_ID",
        "CLOUDTOP_AUTH0_AUDIENCE",
    ]:
        monkeypatch.delenv(var, raising=False)

    previous = keyring.get_keyring()
    keyring.set_keyring(MemoryKeyring())
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    keyring.set_keyring(previous)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def json_response(status: int, body: Any) -> httpx.Response:
    return httpx.Response(
        status,
        content=json.dumps(body).encode(),
        headers={"Content-Type": "application/json"},
    )


class Router:
    """Route ``(method, path)`` pairs to canned responses and record requests.

    A route value is a ``(status, body)`` pair, a list of such pairs served
    in order (the last one repeats), or a callable taking the request.  An
    exception instance in place of a pair is raised, simulating a transport
    failure.
    """

    def __init__(self, routes: Optional[dict[tuple[str, str], Any]] = None) -> None:
        self.routes: dict[tuple[str, str], Any] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return json_response(404, {"error": f"no route for {request.url.path}"})
        if callable(route):
            return route(request)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        status, body = route
        return json_response(status, body)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def router() -> Router:
    return Router()


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Set up a quiet output manager for tests that don't care about output.

    Installs a PLAIN-format, quiet OutputManager as the global output
    and resets it after the test completes.
    """
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> OutputManager:
    """Set up JSON output for tests that check JSON-formatted output."""
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
