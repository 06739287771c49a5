"""Secret redaction and masking helpers."""

from conveyor.security.redaction import (
    REDACTED_VALUE,
    SecretMasker,
    is_sensitive_key,
    redact_structure,
    redact_text,
)

__all__ = [
    "REDACTED_VALUE",
    "SecretMasker",
    "is_sensitive_key",
    "redact_structure",
    "redact_text",
]
