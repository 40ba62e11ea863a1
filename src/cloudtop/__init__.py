"""cloudtop -- terminal client and live dashboard for a cloud telemetry service.

Signs the user in with the OAuth2 Device Authorization Grant, stores the
resulting credential, and exposes both plain listing commands and an
interactive, continuously refreshing dashboard of projects, agents and
metrics.

Typical workflow::

    cloudtop auth login          # authorize this terminal in a browser
    cloudtop get projects        # list projects
    cloudtop top                 # live dashboard

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for configuration and cloud resources.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    fetcher: Concurrent fan-out/fan-in helper.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
