"""Provider API keys kept in the OS secret store."""

from __future__ import annotations

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import CredentialError

SERVICE_NAME = "voxtray"

LOG = logging.getLogger(__name__)


class CredentialVault:
    """Store one API key per provider name via :mod:`keyring`."""

    def __init__(self, service: str = SERVICE_NAME) -> None:
        self.service = service

    def save(self, provider: str, key: str) -> None:
        if not key or not key.strip():
            raise ValueError("API key cannot be empty.")
        try:
            keyring.set_password(self.service, provider, key.strip())
        except KeyringError as exc:
            raise CredentialError(f"Failed to store API key for {provider}: {exc}") from exc
        LOG.info("Stored API key for %s", provider)

    def delete(self, provider: str) -> None:
        try:
            keyring.delete_password(self.service, provider)
        except PasswordDeleteError:
            return
        except KeyringError as exc:
            raise CredentialError(f"Failed to delete API key for {provider}: {exc}") from exc
        LOG.info("Deleted API key for %s", provider)

    def get(self, provider: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service, provider)
        except KeyringError as exc:
            raise CredentialError(f"Failed to read API key for {provider}: {exc}") from exc

    def has(self, provider: str) -> bool:
        return bool(self.get(provider))
