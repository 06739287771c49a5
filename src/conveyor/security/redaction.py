"""
conveyor — secret redaction and masking

File: src/conveyor/security/redaction.py
Last updated: 2026-10-19

Purpose
- Pattern-based redaction of secret-like text and sensitive mapping keys.
- ``SecretMasker``: replaces the literal values of credentials that are
  currently in scope wherever command lines, captured output, or log records
  would otherwise carry them.

Functional requirements
- Masking of registered secrets is exact-match and applied before pattern rules.
- Redaction is deterministic and idempotent for stable inputs.
"""

from __future__ import annotations

import re
import threading
from collections import Counter
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Final

from conveyor.constants import REDACTED_VALUE

DEFAULT_SENSITIVE_KEY_DENYLIST: Final[frozenset[str]] = frozenset(
    {
        "access_token",
        "api_key",
        "apikey",
        "auth_token",
        "authorization",
        "client_secret",
        "credential",
        "credentials",
        "password",
        "passwd",
        "private_key",
        "secret",
        "token",
    }
)

_DEFAULT_SENSITIVE_KEY_SUFFIXES: Final[tuple[str, ...]] = (
    "_api_key",
    "_access_token",
    "_password",
    "_passwd",
    "_secret",
    "_token",
)

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class _TextRule:
    name: str
    pattern: re.Pattern[str]
    sensitive_group: int | None = None


_TEXT_RULES: Final[tuple[_TextRule, ...]] = (
    _TextRule(
        name="private_key_block",
        pattern=re.compile(
            r"-----BEGIN(?: [A-Z0-9]+)* PRIVATE KEY-----"
            r"[\s\S]+?"
            r"-----END(?: [A-Z0-9]+)* PRIVATE KEY-----"
        ),
    ),
    _TextRule(
        name="authorization_bearer",
        pattern=re.compile(r"(?i)(\bauthorization\s*:\s*bearer\s+)([A-Za-z0-9\-._~+/=]{8,})"),
        sensitive_group=2,
    ),
    _TextRule(
        name="explicit_secret_assignment",
        pattern=re.compile(
            r"(?i)(\b(?:password|passwd|secret|api[_-]?key|client[_-]?secret|"
            r"access[_-]?token|token)\b\s*[:=]\s*[\"']?)"
            r"([A-Za-z0-9._~+/=-]{6,})"
        ),
        sensitive_group=2,
    ),
    _TextRule(name="aws_access_key", pattern=re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")),
    _TextRule(name="github_token", pattern=re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,255}\b")),
    _TextRule(
        name="docker_hub_token", pattern=re.compile(r"\bdckr_pat_[A-Za-z0-9_-]{20,255}\b")
    ),
    _TextRule(
        name="jwt",
        pattern=re.compile(r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\b"),
    ),
)


def redact_text(text: str) -> str:
    """Replace secret-like substrings with ``REDACTED_VALUE``."""

    if not isinstance(text, str):
        raise TypeError(f"text must be a string, got {type(text).__name__}")

    redacted = text
    for rule in _TEXT_RULES:
        redacted = _apply_text_rule(redacted, rule)
    return redacted


def is_sensitive_key(key: str) -> bool:
    """Return whether a mapping key names a secret-bearing field."""

    normalized = _normalize_key(key)
    if normalized in DEFAULT_SENSITIVE_KEY_DENYLIST:
        return True
    return normalized.endswith(_DEFAULT_SENSITIVE_KEY_SUFFIXES)


def redact_structure(value: object) -> object:
    """Return a deep-redacted copy of nested mappings/sequences."""

    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key, item in value.items():
            key_text = str(key)
            out[key_text] = REDACTED_VALUE if is_sensitive_key(key_text) else redact_structure(item)
        return out
    if isinstance(value, (list, tuple)):
        return [redact_structure(item) for item in value]
    if isinstance(value, str):
        return redact_text(value)
    return value


class SecretMasker:
    """Thread-safe registry of in-scope secret values.

    Registrations are reference counted so nested scopes over the same
    credential unmask only when the outermost scope exits.
    """

    def __init__(self, replacement: str = REDACTED_VALUE) -> None:
        self._replacement = replacement
        self._lock = threading.Lock()
        self._secrets: Counter[str] = Counter()

    def register(self, secret: str) -> None:
        if not isinstance(secret, str):
            raise TypeError(f"secret must be a string, got {type(secret).__name__}")
        if not secret:
            return
        with self._lock:
            self._secrets[secret] += 1

    def unregister(self, secret: str) -> None:
        if not secret:
            return
        with self._lock:
            remaining = self._secrets[secret] - 1
            if remaining > 0:
                self._secrets[secret] = remaining
            else:
                del self._secrets[secret]

    @contextmanager
    def scoped(self, *secrets: str) -> Iterator[None]:
        for secret in secrets:
            self.register(secret)
        try:
            yield
        finally:
            for secret in secrets:
                self.unregister(secret)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._secrets)

    def mask_literals(self, text: str) -> str:
        """Mask registered secrets only."""

        with self._lock:
            # Longest first so a secret containing another secret is masked whole.
            active = sorted(self._secrets, key=len, reverse=True)
        masked = text
        for secret in active:
            masked = masked.replace(secret, self._replacement)
        return masked

    def mask(self, text: str) -> str:
        """Mask registered secrets, then apply pattern redaction."""

        return redact_text(self.mask_literals(text))

    def mask_args(self, argv: tuple[str, ...] | list[str]) -> tuple[str, ...]:
        return tuple(self.mask(item) for item in argv)


def _apply_text_rule(text: str, rule: _TextRule) -> str:
    if rule.sensitive_group is None:
        return rule.pattern.sub(REDACTED_VALUE, text)

    group = rule.sensitive_group

    def _replace(match: re.Match[str]) -> str:
        start, end = match.span(group)
        whole_start = match.start()
        prefix = match.group(0)[: start - whole_start]
        suffix = match.group(0)[end - whole_start :]
        return f"{prefix}{REDACTED_VALUE}{suffix}"

    return rule.pattern.sub(_replace, text)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


__all__ = [
    "DEFAULT_SENSITIVE_KEY_DENYLIST",
    "REDACTED_VALUE",
    "SecretMasker",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
]
