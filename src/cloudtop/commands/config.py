"""Config commands -- view and modify global configuration.

Provides the ``cloudtop config`` sub-command group for reading, updating,
and resetting the user's global configuration file
(:class:`~cloudtop.models.GlobalConfig`).  Settings are persisted in the
cloudtop config directory and control the cloud URL, the authorization
server, request settings and dashboard timings.
"""

from __future__ import annotations

import typer

from cloudtop.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Example::

        cloudtop config show
        cloudtop --json config show
    """
    from cloudtop.config import get_config_dir, load_global_config

    config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'auth.client_id')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys.  The value is coerced to match the
    existing field's type (bool, int, float or str) and the result is
    validated against :class:`~cloudtop.models.GlobalConfig` before saving.

    Raises:
        typer.Exit: With code 2 if the key path is invalid, the value
            cannot be coerced, or validation fails.

    Example::

        cloudtop config set auth.client_id abc123
        cloudtop config set dashboard.refresh_interval 10
    """
    from cloudtop.config import load_global_config, save_global_config
    from cloudtop.models import GlobalConfig

    config = load_global_config()
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    current = target[final_key]
    coerced: object = value
    if isinstance(current, bool):
        coerced = value.lower() in ("true", "1", "yes")
    elif isinstance(current, (int, float)):
        try:
            coerced = type(current)(value)
        except ValueError:
            error(f"Expected {type(current).__name__} for {key}, got: {value}")
            raise typer.Exit(code=2) from None

    target[final_key] = coerced

    try:
        new_config = GlobalConfig.model_validate(data)
    except ValueError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_global_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("set-url")
def config_set_url(
    url: str = typer.Argument(help="Cloud API base URL (http or https)."),
) -> None:
    """Set the cloud API URL used by every command.

    Example::

        cloudtop config set-url https://cloud-api.example.com
    """
    from cloudtop.config import load_global_config, save_global_config, validate_cloud_url

    config = load_global_config()
    config.cloud_url = validate_cloud_url(url)
    save_global_config(config)
    success(f"Cloud URL set to {config.cloud_url}")


@config_app.command("unset-url")
def config_unset_url() -> None:
    """Restore the default cloud API URL."""
    from cloudtop.config import load_global_config, save_global_config
    from cloudtop.models import GlobalConfig

    config = load_global_config()
    config.cloud_url = GlobalConfig().cloud_url
    save_global_config(config)
    success(f"Cloud URL reset to {config.cloud_url}")


@config_app.command("reset")
def config_reset(
    ctx: typer.Context,
) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.

    Example::

        cloudtop config reset
        cloudtop --force config reset
    """
    from cloudtop.config import save_global_config
    from cloudtop.models import GlobalConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
