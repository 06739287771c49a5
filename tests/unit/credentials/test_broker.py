"""
conveyor — unit tests for credential stores and the scoped broker

File: tests/unit/credentials/test_broker.py
Last updated: 2026-10-19

Purpose
- A credential is readable only inside its scope, its secret is masked for
  exactly that long, and nothing is cached between scopes.
"""

from __future__ import annotations

import pytest

from conveyor.constants import REDACTED_VALUE
from conveyor.credentials.broker import CredentialBroker
from conveyor.credentials.stores import Credential, EnvCredentialStore, InMemoryCredentialStore
from conveyor.domain.errors import CredentialNotFound, CredentialScopeError, StageFailure
from conveyor.security.redaction import SecretMasker


@pytest.mark.unit
def test_env_store_derives_variable_names() -> None:
    store = EnvCredentialStore({})

    assert store.env_names("docker-registry-credentials") == (
        "CONVEYOR_CREDENTIAL_DOCKER_REGISTRY_CREDENTIALS_USERNAME",
        "CONVEYOR_CREDENTIAL_DOCKER_REGISTRY_CREDENTIALS_PASSWORD",
    )
    assert EnvCredentialStore({}, prefix="CI_").env_names("quay.io robot") == (
        "CI_QUAY_IO_ROBOT_USERNAME",
        "CI_QUAY_IO_ROBOT_PASSWORD",
    )


@pytest.mark.unit
def test_env_store_reads_environment_on_every_fetch() -> None:
    environ: dict[str, str] = {}
    store = EnvCredentialStore(environ)

    assert store.fetch("registry") is None

    environ["CONVEYOR_CREDENTIAL_REGISTRY_USERNAME"] = "ci-bot"
    environ["CONVEYOR_CREDENTIAL_REGISTRY_PASSWORD"] = "pw-1"
    credential = store.fetch("registry")
    assert credential is not None
    assert (credential.username, credential.secret) == ("ci-bot", "pw-1")

    environ["CONVEYOR_CREDENTIAL_REGISTRY_PASSWORD"] = "pw-2"
    rotated = store.fetch("registry")
    assert rotated is not None
    assert rotated.secret == "pw-2"


@pytest.mark.unit
def test_env_store_treats_empty_password_as_missing() -> None:
    store = EnvCredentialStore({"CONVEYOR_CREDENTIAL_REGISTRY_PASSWORD": ""})

    assert store.fetch("registry") is None


@pytest.mark.unit
def test_revoked_credential_cannot_be_read() -> None:
    credential = Credential("registry", "ci-bot", "hunter22")

    assert "hunter22" not in repr(credential)
    credential.revoke()

    assert credential.revoked
    with pytest.raises(CredentialScopeError, match="outside of its scope"):
        _ = credential.secret
    with pytest.raises(CredentialScopeError):
        _ = credential.username
    assert "revoked" in repr(credential)


@pytest.mark.unit
def test_scope_masks_secret_only_while_open() -> None:
    masker = SecretMasker()
    broker = CredentialBroker(InMemoryCredentialStore({"registry": ("ci-bot", "hunter22")}), masker)

    with broker.scoped("registry") as credential:
        assert credential.secret == "hunter22"
        assert masker.mask_literals("pw=hunter22") == f"pw={REDACTED_VALUE}"

    assert credential.revoked
    assert masker.active_count == 0
    assert masker.mask_literals("pw=hunter22") == "pw=hunter22"


@pytest.mark.unit
def test_scope_revokes_even_when_body_raises() -> None:
    masker = SecretMasker()
    broker = CredentialBroker(InMemoryCredentialStore({"registry": ("ci-bot", "hunter22")}), masker)

    with pytest.raises(RuntimeError), broker.scoped("registry") as credential:
        raise RuntimeError("push failed")

    assert credential.revoked
    assert masker.active_count == 0


@pytest.mark.unit
def test_missing_credential_is_a_stage_failure_and_not_retried() -> None:
    store = InMemoryCredentialStore()
    broker = CredentialBroker(store, SecretMasker())

    with pytest.raises(CredentialNotFound) as excinfo, broker.scoped("registry"):
        pass

    assert isinstance(excinfo.value, StageFailure)
    assert excinfo.value.name == "registry"
    assert store.fetch_count == 1


@pytest.mark.unit
def test_each_scope_fetches_afresh() -> None:
    store = InMemoryCredentialStore({"registry": ("ci-bot", "first")})
    broker = CredentialBroker(store, SecretMasker())

    with broker.scoped("registry") as first:
        assert first.secret == "first"
    store.add("registry", "ci-bot", "second")
    with broker.scoped("registry") as second:
        assert second.secret == "second"

    assert store.fetch_count == 2
    assert first is not second


@pytest.mark.unit
def test_nested_scopes_over_same_secret_unmask_at_outermost_exit() -> None:
    masker = SecretMasker()
    broker = CredentialBroker(InMemoryCredentialStore({"registry": ("ci-bot", "hunter22")}), masker)

    with broker.scoped("registry"):
        with broker.scoped("registry"):
            assert masker.active_count == 1
        assert masker.mask_literals("hunter22") == REDACTED_VALUE

    assert masker.active_count == 0
