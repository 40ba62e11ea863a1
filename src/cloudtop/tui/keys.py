"""Keyboard input for the dashboard.

Key presses are read with :func:`click.getchar` on a daemon thread (the
call blocks) and translated into session messages that are handed to a
thread-safe ``post`` callable, normally one that schedules
:meth:`~cloudtop.session.runtime.SessionRuntime.post` with
:meth:`asyncio.loop.call_soon_threadsafe`.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import click

from cloudtop.session import messages as msg

logger = logging.getLogger(__name__)

KEYMAP: dict[str, msg.Message] = {
    "\r": msg.UserSelectedProject(),
    "\n": msg.UserSelectedProject(),
    "\x7f": msg.UserWentBack(),
    "\x08": msg.UserWentBack(),
    "\x05": msg.UserLoggedOut(),  # ctrl+e
    "\x1b[A": msg.CursorMoved(-1),
    "\x1b[B": msg.CursorMoved(1),
    "\xe0H": msg.CursorMoved(-1),  # windows arrows
    "\xe0P": msg.CursorMoved(1),
    "k": msg.CursorMoved(-1),
    "j": msg.CursorMoved(1),
    "r": msg.Retry(),
    "q": msg.Quit(),
    "\x1b": msg.Quit(),
}


def translate(key: str) -> Optional[msg.Message]:
    """Map a raw key sequence to a message, or ``None`` if it is unbound."""
    return KEYMAP.get(key)


class KeyReader:
    """Background thread forwarding key presses as messages.

    Args:
        post: Thread-safe callable receiving each message.
        getchar: Blocking single-key reader; :func:`click.getchar` by default.
    """

    def __init__(
        self,
        post: Callable[[msg.Message], None],
        getchar: Callable[[], str] = click.getchar,
    ) -> None:
        self._post = post
        self._getchar = getchar
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="cloudtop-keys", daemon=True)

    def start(self) -> KeyReader:
        self._thread.start()
        return self

    def stop(self) -> None:
        """Stop forwarding.  The blocked read ends with the process."""
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                key = self._getchar()
            except (KeyboardInterrupt, EOFError):
                key = "q"
            if self._stop.is_set():
                return
            message = translate(key)
            if message is None:
                logger.debug("unbound key %r", key)
                continue
            self._post(message)
            if isinstance(message, msg.Quit):
                return
