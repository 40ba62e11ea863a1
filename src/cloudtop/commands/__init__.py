"""Built-in CLI sub-commands for cloudtop.

This package groups all Typer sub-command modules that form the CLI's
top-level command tree:

* :mod:`~cloudtop.commands.auth` -- device flow login, logout and status.
* :mod:`~cloudtop.commands.config` -- view and modify global settings.
* :mod:`~cloudtop.commands.get` -- list projects, agents and pipelines.
* :mod:`~cloudtop.commands.top` -- the interactive dashboard.

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``auth`` and ``config``) or a plain callback
function registered directly on the root app (for single commands like
``top``).
"""
