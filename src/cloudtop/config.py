"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for cloudtop:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.cloudtop/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~cloudtop.models.GlobalConfig`
  JSON file storing the cloud URL, authorization server settings and
  dashboard timings.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables and the config file into the effective
  configuration.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from cloudtop.exceptions import ConfigError
from cloudtop.models import GlobalConfig

_APP_NAME = "cloudtop"
_CONFIG_FILENAME = "config.json"

ENV_CLOUD_URL = "CLOUDTOP_CLOUD_URL"
ENV_AUTH_DOMAIN = "CLOUDTOP_AUTH0_DOMAIN"
ENV_AUTH_CLIENT_ID = "CLOUDTOP_AUTH0_CLIENT_ID"
ENV_AUTH_AUDIENCE = "CLOUDTOP_AUTH0_AUDIENCE"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/cloudtop/`` (default ``~/.config/cloudtop/``).
    On macOS/Windows: ``~/.cloudtop/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/cloudtop/`` (default ``~/.local/share/cloudtop/``).
    On macOS/Windows: ``~/.cloudtop/logs/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_fallback_credentials_dir() -> Path:
    """Directory used for credentials when no OS keyring is available.

    Always ``~/.cloudtop`` so that the location is the same on every
    platform and easy to wipe by hand.
    """
    return _fallback_base_dir()


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given the permissions are applied before any content is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the config directory.

    Returns:
        The deserialised :class:`~cloudtop.models.GlobalConfig`, or a
        default instance if the file does not exist.

    Raises:
        ConfigError: If the file contains invalid JSON or fails validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


def validate_cloud_url(url: str) -> str:
    """Return *url* without a trailing slash, rejecting non-HTTP schemes.

    Raises:
        ConfigError: If the URL has no host or its scheme is not http/https.
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ConfigError(f"Invalid cloud url scheme {parsed.scheme!r} in {url!r}")
    if not parsed.netloc:
        raise ConfigError(f"Invalid cloud url {url!r}: missing host")
    return url.rstrip("/")


# --- Precedence resolution ---


def resolve_config(
    cli_cloud_url: Optional[str] = None,
    cli_format: Optional[str] = None,
) -> GlobalConfig:
    """Resolve config with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_cloud_url``, ``cli_format``)
        2. Environment variables (``CLOUDTOP_CLOUD_URL``,
           ``CLOUDTOP_AUTH0_DOMAIN``, ``CLOUDTOP_AUTH0_CLIENT_ID``,
           ``CLOUDTOP_AUTH0_AUDIENCE``)
        3. User config (``~/.config/cloudtop/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~cloudtop.models.GlobalConfig`.

    Raises:
        ConfigError: If the resulting cloud URL is invalid.
    """
    config = load_global_config()

    env_domain = os.environ.get(ENV_AUTH_DOMAIN)
    if env_domain:
        config.auth.domain = env_domain
    env_client_id = os.environ.get(ENV_AUTH_CLIENT_ID)
    if env_client_id:
        config.auth.client_id = env_client_id
    env_audience = os.environ.get(ENV_AUTH_AUDIENCE)
    if env_audience:
        config.auth.audience = env_audience

    env_cloud_url = os.environ.get(ENV_CLOUD_URL)
    if cli_cloud_url is not None:
        config.cloud_url = cli_cloud_url
    elif env_cloud_url:
        config.cloud_url = env_cloud_url
    config.cloud_url = validate_cloud_url(config.cloud_url)

    if cli_format is not None:
        config.output.format = cli_format

    return config


def require_client_id(config: GlobalConfig) -> str:
    """Return the configured OAuth2 client ID.

    Raises:
        ConfigError: If no client ID is configured anywhere.
    """
    if not config.auth.client_id:
        raise ConfigError(
            "Missing required OAuth2 client id; set "
            f"{ENV_AUTH_CLIENT_ID} or run 'cloudtop config set auth.client_id <id>'"
        )
    return config.auth.client_id
