"""Credential stores and the scoped credential broker."""

from conveyor.credentials.broker import CredentialBroker
from conveyor.credentials.stores import (
    DEFAULT_CREDENTIAL_ENV_PREFIX,
    Credential,
    CredentialStore,
    EnvCredentialStore,
    InMemoryCredentialStore,
)

__all__ = [
    "DEFAULT_CREDENTIAL_ENV_PREFIX",
    "Credential",
    "CredentialBroker",
    "CredentialStore",
    "EnvCredentialStore",
    "InMemoryCredentialStore",
]
