"""
Credential lookup for the realtime endpoint.

Secrets are never stored in AppConfig; only the *name* of the credential is
configured. The provider is consulted on every connect so a rotated key is
picked up without restarting the process.
"""

from __future__ import annotations

import os
from typing import Mapping

from errors import CredentialError


class EnvCredentialProvider:
    """Reads credentials from the process environment (or a given mapping)."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def get_credential(self, name: str) -> str:
        value = self._environ.get(name, "").strip()
        if not value:
            raise CredentialError(f"{name} is not set")
        return value
