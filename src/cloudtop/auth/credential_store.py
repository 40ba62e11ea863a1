"""Persistent key/value credential store.

Secrets go to the operating system keyring through the :mod:`keyring`
library under the ``cloudtop`` service name.  Headless hosts often have no
usable keyring backend; when the backend raises
:class:`keyring.errors.KeyringError` the value is written to
``~/.cloudtop/<key>`` instead.  Fallback files are written atomically with
``0o600`` permissions so that secrets are never world-readable, even
momentarily.

:class:`TokenStore` sits on top and persists a whole
:class:`~cloudtop.auth.device_flow.AccessCredential` as three keys.

See Also:
    :class:`~cloudtop.auth.device_flow.DeviceFlowClient` -- produces the
    credentials stored here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError

from cloudtop.auth.device_flow import AccessCredential
from cloudtop.config import atomic_write, get_fallback_credentials_dir
from cloudtop.exceptions import CredentialNotFoundError

logger = logging.getLogger(__name__)

SERVICE_NAME = "cloudtop"

KEY_ACCESS_TOKEN = "auth.access_token"
KEY_REFRESH_TOKEN = "auth.refresh_token"
KEY_EXPIRES_AT = "auth.expires_at"


class CredentialStore:
    """Save, get and delete string secrets by key.

    Args:
        service_name: Keyring service the keys are stored under.
        fallback_dir: Directory for fallback files.  Defaults to
            :func:`~cloudtop.config.get_fallback_credentials_dir`.
        backend: Keyring backend to use.  Defaults to whatever
            :func:`keyring.get_keyring` selects for the platform.

    Example::

        store = CredentialStore()
        store.save("auth.access_token", "tok123")
        assert store.get("auth.access_token") == "tok123"
    """

    def __init__(
        self,
        service_name: str = SERVICE_NAME,
        fallback_dir: Optional[Path] = None,
        backend: Optional[KeyringBackend] = None,
    ) -> None:
        self._service = service_name
        self._fallback_dir = fallback_dir
        self._backend = backend

    @property
    def backend(self) -> KeyringBackend:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    @property
    def fallback_dir(self) -> Path:
        if self._fallback_dir is None:
            self._fallback_dir = get_fallback_credentials_dir()
        return self._fallback_dir

    def _fallback_path(self, key: str) -> Path:
        return self.fallback_dir / key

    def save(self, key: str, value: str) -> None:
        """Store *value* under *key*, falling back to a file if the keyring fails.

        Raises:
            OSError: If the fallback file cannot be written.
        """
        try:
            self.backend.set_password(self._service, key, value)
            return
        except KeyringError as exc:
            logger.debug("keyring unavailable for save(%s), using file: %s", key, exc)
        atomic_write(self._fallback_path(key), value, mode=0o600)

    def get(self, key: str) -> str:
        """Return the value stored under *key*.

        A keyring that works but has no entry is authoritative; the fallback
        file is only consulted when the keyring itself fails.

        Raises:
            CredentialNotFoundError: If nothing is stored under *key*.
        """
        try:
            value = self.backend.get_password(self._service, key)
        except KeyringError as exc:
            logger.debug("keyring unavailable for get(%s), using file: %s", key, exc)
        else:
            if value is None:
                raise CredentialNotFoundError(f"no credential stored for {key!r}")
            return value

        path = self._fallback_path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise CredentialNotFoundError(f"no credential stored for {key!r}") from None

    def delete(self, key: str) -> None:
        """Remove *key* from the keyring, or from the fallback file.

        Raises:
            CredentialNotFoundError: If *key* is in neither place.
        """
        try:
            self.backend.delete_password(self._service, key)
            return
        except KeyringError as exc:
            logger.debug("keyring delete(%s) failed, trying file: %s", key, exc)

        path = self._fallback_path(key)
        if not path.is_file():
            raise CredentialNotFoundError(f"no credential stored for {key!r}")
        path.unlink()


class TokenStore:
    """Persist an :class:`AccessCredential` in a :class:`CredentialStore`.

    The credential is split over :data:`KEY_ACCESS_TOKEN`,
    :data:`KEY_REFRESH_TOKEN` and :data:`KEY_EXPIRES_AT`; the expiry is
    stored as an ISO-8601 timestamp so it never has to be recomputed.
    """

    def __init__(self, store: Optional[CredentialStore] = None) -> None:
        self._store = store or CredentialStore()

    def save(self, credential: AccessCredential) -> None:
        self._store.save(KEY_ACCESS_TOKEN, credential.access_token)
        self._store.save(KEY_EXPIRES_AT, credential.expires_at.isoformat())
        if credential.refresh_token:
            self._store.save(KEY_REFRESH_TOKEN, credential.refresh_token)

    def load(self) -> AccessCredential:
        """Load the stored credential.

        Raises:
            CredentialNotFoundError: If no access token is stored.
        """
        access_token = self._store.get(KEY_ACCESS_TOKEN)
        try:
            refresh_token: Optional[str] = self._store.get(KEY_REFRESH_TOKEN)
        except CredentialNotFoundError:
            refresh_token = None
        try:
            expires_at = datetime.fromisoformat(self._store.get(KEY_EXPIRES_AT))
        except (CredentialNotFoundError, ValueError):
            # Unknown expiry: treat as already expired so it gets refreshed.
            expires_at = datetime.fromtimestamp(0, tz=timezone.utc)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return AccessCredential(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    def load_or_none(self) -> Optional[AccessCredential]:
        try:
            return self.load()
        except CredentialNotFoundError:
            return None

    def delete(self) -> bool:
        """Delete every stored token key.  Returns ``True`` if any existed."""
        deleted = False
        for key in (KEY_ACCESS_TOKEN, KEY_REFRESH_TOKEN, KEY_EXPIRES_AT):
            try:
                self._store.delete(key)
                deleted = True
            except CredentialNotFoundError:
                continue
        return deleted
