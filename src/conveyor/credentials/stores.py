"""Credential stores: thin lookups over environment variables or memory."""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Mapping
from typing import Final, Protocol

from conveyor.domain.errors import CredentialScopeError

DEFAULT_CREDENTIAL_ENV_PREFIX: Final[str] = "CONVEYOR_CREDENTIAL_"

_NON_ENV_CHARS = re.compile(r"[^A-Z0-9]+")


class Credential:
    """Username/secret pair that becomes unusable once revoked."""

    __slots__ = ("_lock", "_revoked", "_secret", "_username", "name")

    def __init__(self, name: str, username: str, secret: str) -> None:
        self.name = name
        self._username = username
        self._secret = secret
        self._revoked = False
        self._lock = threading.Lock()

    @property
    def username(self) -> str:
        self._check_live()
        return self._username

    @property
    def secret(self) -> str:
        self._check_live()
        return self._secret

    @property
    def revoked(self) -> bool:
        return self._revoked

    def revoke(self) -> None:
        with self._lock:
            self._revoked = True
            self._secret = ""
            self._username = ""

    def __repr__(self) -> str:
        state = "revoked" if self._revoked else "live"
        return f"Credential(name={self.name!r}, secret=<masked>, state={state})"

    def _check_live(self) -> None:
        if self._revoked:
            raise CredentialScopeError(f"credential {self.name!r} accessed outside of its scope")


class CredentialStore(Protocol):
    def fetch(self, name: str) -> Credential | None: ...


class EnvCredentialStore:
    """Resolve ``<prefix><NAME>_USERNAME`` / ``<prefix><NAME>_PASSWORD`` variables.

    ``NAME`` is the credential id upper-cased with runs of other characters
    collapsed to ``_`` (``docker-registry-credentials`` becomes
    ``DOCKER_REGISTRY_CREDENTIALS``). The environment is read on every fetch.
    """

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        *,
        prefix: str = DEFAULT_CREDENTIAL_ENV_PREFIX,
    ) -> None:
        self._environ = environ
        self._prefix = prefix

    def env_names(self, name: str) -> tuple[str, str]:
        stem = _NON_ENV_CHARS.sub("_", name.upper()).strip("_")
        return f"{self._prefix}{stem}_USERNAME", f"{self._prefix}{stem}_PASSWORD"

    def fetch(self, name: str) -> Credential | None:
        environ = os.environ if self._environ is None else self._environ
        username_var, password_var = self.env_names(name)
        secret = environ.get(password_var)
        if not secret:
            return None
        return Credential(name, environ.get(username_var, ""), secret)


class InMemoryCredentialStore:
    """Credential store backed by a mapping of ``name -> (username, secret)``."""

    def __init__(self, entries: Mapping[str, tuple[str, str]] | None = None) -> None:
        self._entries = dict(entries or {})
        self.fetch_count = 0

    def add(self, name: str, username: str, secret: str) -> None:
        self._entries[name] = (username, secret)

    def fetch(self, name: str) -> Credential | None:
        self.fetch_count += 1
        entry = self._entries.get(name)
        if entry is None:
            return None
        username, secret = entry
        return Credential(name, username, secret)


__all__ = [
    "DEFAULT_CREDENTIAL_ENV_PREFIX",
    "Credential",
    "CredentialStore",
    "EnvCredentialStore",
    "InMemoryCredentialStore",
]
