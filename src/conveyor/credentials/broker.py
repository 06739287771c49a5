"""Scoped credential materialization."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from conveyor.credentials.stores import Credential, CredentialStore
from conveyor.domain.errors import CredentialNotFound
from conveyor.security.redaction import SecretMasker

logger = logging.getLogger(__name__)


class CredentialBroker:
    """Hands out credentials that only live inside a ``with`` block.

    Every scope fetches from the store afresh; nothing is cached between
    scopes and a missing credential is not retried.
    """

    def __init__(self, store: CredentialStore, masker: SecretMasker) -> None:
        self._store = store
        self._masker = masker

    @property
    def masker(self) -> SecretMasker:
        return self._masker

    @contextmanager
    def scoped(self, name: str) -> Iterator[Credential]:
        credential = self._store.fetch(name)
        if credential is None:
            raise CredentialNotFound(name)

        secret = credential.secret
        self._masker.register(secret)
        logger.debug("credential scope entered", extra={"credential_id": name})
        try:
            yield credential
        finally:
            credential.revoke()
            self._masker.unregister(secret)
            logger.debug("credential scope exited", extra={"credential_id": name})


__all__ = ["CredentialBroker"]
