"""
conveyor — configuration schema and validation.

File: src/conveyor/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secret values; secrets are referenced via ``*_env`` names only.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from conveyor.constants import (
    APPROVALS_DIR,
    ARTIFACTS_DIR,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_APPROVAL_MESSAGE,
    DEFAULT_APPROVAL_TIMEOUT_MINUTES,
    DEFAULT_DEPLOY,
    DEFAULT_ENVIRONMENT,
    DEFAULT_RUN_TESTS,
    ENVIRONMENTS,
    LOGS_DIR,
    RESULTS_DIR,
    WORKSPACES_DIR,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CREDENTIAL_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "workspace_root"),
    ("paths", "artifacts_root"),
    ("paths", "approvals_dir"),
    ("paths", "state_dir"),
    ("observability", "log_dir"),
    ("pipeline", "definition_file"),
)


class MetaConfig(TypedDict):
    schema_version: int


class PipelineConfig(TypedDict):
    registry: str
    image_name: str
    results_dir: str
    command_timeout_seconds: int
    repository: NotRequired[str]
    repository_url: NotRequired[str]
    definition_file: NotRequired[str]


class ParametersConfig(TypedDict):
    environment: Literal["development", "staging", "production"]
    run_tests: bool
    deploy: bool


class CredentialsConfig(TypedDict):
    registry_credential_id: str


class ApprovalConfig(TypedDict):
    service: Literal["file", "auto"]
    timeout_minutes: int
    poll_interval_seconds: float
    message: str


class StatusConfig(TypedDict):
    sink: Literal["logging", "commit_status"]
    retries: int
    api_url: str
    token_env: str
    context_prefix: str
    timeout_seconds: float


class NotificationsConfig(TypedDict):
    notifier: Literal["logging", "smtp"]
    owners: list[str]
    sender: str
    smtp_host: str
    smtp_port: int
    smtp_username_env: NotRequired[str]
    smtp_password_env: NotRequired[str]
    subject_template: NotRequired[str]
    body_template: NotRequired[str]


class PathsConfig(TypedDict):
    workspace_root: str
    artifacts_root: str
    approvals_dir: str
    state_dir: str


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class CommandsConfig(TypedDict):
    git: str
    container: str
    test_script: str
    deploy_script: str


class ConveyorConfig(TypedDict):
    meta: MetaConfig
    pipeline: PipelineConfig
    parameters: ParametersConfig
    credentials: CredentialsConfig
    approval: ApprovalConfig
    status: StatusConfig
    notifications: NotificationsConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    commands: CommandsConfig


DEFAULT_CONFIG: Final[ConveyorConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "pipeline": {
        "registry": "registry.example.com",
        "image_name": "app",
        "results_dir": RESULTS_DIR,
        "command_timeout_seconds": 3600,
    },
    "parameters": {
        "environment": DEFAULT_ENVIRONMENT,  # type: ignore[typeddict-item]
        "run_tests": DEFAULT_RUN_TESTS,
        "deploy": DEFAULT_DEPLOY,
    },
    "credentials": {
        "registry_credential_id": "docker-registry-credentials",
    },
    "approval": {
        "service": "file",
        "timeout_minutes": DEFAULT_APPROVAL_TIMEOUT_MINUTES,
        "poll_interval_seconds": 5.0,
        "message": DEFAULT_APPROVAL_MESSAGE,
    },
    "status": {
        "sink": "logging",
        "retries": 2,
        "api_url": "https://api.github.com",
        "token_env": "CONVEYOR_STATUS_TOKEN",
        "context_prefix": "ci/conveyor",
        "timeout_seconds": 10.0,
    },
    "notifications": {
        "notifier": "logging",
        "owners": [],
        "sender": "conveyor@localhost",
        "smtp_host": "localhost",
        "smtp_port": 25,
    },
    "paths": {
        "workspace_root": str(WORKSPACES_DIR),
        "artifacts_root": str(ARTIFACTS_DIR),
        "approvals_dir": str(APPROVALS_DIR),
        "state_dir": ".conveyor/state",
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": str(LOGS_DIR),
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "commands": {
        "git": "git",
        "container": "docker",
        "test_script": "./run_tests.sh",
        "deploy_script": "./deploy.sh",
    },
}

_REQUIRED_SECTIONS: Final[tuple[str, ...]] = tuple(DEFAULT_CONFIG)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_SectionValidator = Callable[[Mapping[str, object], str, _IssueCollector], dict[str, Any]]


def default_config() -> ConveyorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade conveyor.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the conveyor runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    _reject_unknown_keys(root, set(_SECTION_VALIDATORS), "", issues)
    _require_keys(root, set(_REQUIRED_SECTIONS), "", issues)

    normalized: dict[str, Any] = {}
    for key, validator in _SECTION_VALIDATORS.items():
        raw = root.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        normalized[key] = validator(section, key, issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs and CLI output."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_pipeline(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    required = {"registry", "image_name", "results_dir", "command_timeout_seconds"}
    optional = {"repository", "repository_url", "definition_file"}
    _reject_unknown_keys(payload, required | optional, path, issues)
    _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    for key in ("registry", "image_name", "repository", "repository_url"):
        if key in payload:
            parsed = _as_str(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    if "definition_file" in payload:
        parsed_file = _as_path_text(
            payload["definition_file"], _join(path, "definition_file"), issues
        )
        if parsed_file is not None:
            out["definition_file"] = parsed_file

    if "results_dir" in payload:
        results_path = _join(path, "results_dir")
        parsed_results = _as_path_text(payload["results_dir"], results_path, issues)
        if parsed_results is not None:
            if parsed_results.startswith("/") or ".." in parsed_results.split("/"):
                issues.add(results_path, "must be a relative path inside the workspace")
            else:
                out["results_dir"] = parsed_results

    if "command_timeout_seconds" in payload:
        parsed_timeout = _as_int(
            payload["command_timeout_seconds"],
            _join(path, "command_timeout_seconds"),
            issues,
            minimum=0,
        )
        if parsed_timeout is not None:
            out["command_timeout_seconds"] = parsed_timeout
    return out


def _validate_parameters(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"environment", "run_tests", "deploy"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "environment" in payload:
        parsed = _as_enum(
            payload["environment"],
            _join(path, "environment"),
            issues,
            allowed_values=ENVIRONMENTS,
        )
        if parsed is not None:
            out["environment"] = parsed
    for key in ("run_tests", "deploy"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    return out


def _validate_credentials(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"registry_credential_id"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "registry_credential_id" in payload:
        id_path = _join(path, "registry_credential_id")
        parsed_id = _as_str(payload["registry_credential_id"], id_path, issues)
        if parsed_id is not None:
            if _CREDENTIAL_ID_PATTERN.fullmatch(parsed_id):
                out["registry_credential_id"] = parsed_id
            else:
                issues.add(id_path, "must contain only [A-Za-z0-9._-]")
    return out


def _validate_approval(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"service", "timeout_minutes", "poll_interval_seconds", "message"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "service" in payload:
        parsed = _as_enum(
            payload["service"], _join(path, "service"), issues, allowed_values=("file", "auto")
        )
        if parsed is not None:
            out["service"] = parsed
    if "timeout_minutes" in payload:
        parsed_timeout = _as_int(
            payload["timeout_minutes"], _join(path, "timeout_minutes"), issues, minimum=1
        )
        if parsed_timeout is not None:
            out["timeout_minutes"] = parsed_timeout
    if "poll_interval_seconds" in payload:
        parsed_poll = _as_float(
            payload["poll_interval_seconds"],
            _join(path, "poll_interval_seconds"),
            issues,
            exclusive_minimum=0.0,
        )
        if parsed_poll is not None:
            out["poll_interval_seconds"] = parsed_poll
    if "message" in payload:
        parsed_message = _as_str(payload["message"], _join(path, "message"), issues)
        if parsed_message is not None:
            out["message"] = parsed_message
    return out


def _validate_status(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"sink", "retries", "api_url", "token_env", "context_prefix", "timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "sink" in payload:
        parsed = _as_enum(
            payload["sink"],
            _join(path, "sink"),
            issues,
            allowed_values=("logging", "commit_status"),
        )
        if parsed is not None:
            out["sink"] = parsed
    if "retries" in payload:
        parsed_retries = _as_int(payload["retries"], _join(path, "retries"), issues, minimum=0)
        if parsed_retries is not None:
            out["retries"] = parsed_retries
    if "api_url" in payload:
        url_path = _join(path, "api_url")
        parsed_url = _as_str(payload["api_url"], url_path, issues)
        if parsed_url is not None:
            if parsed_url.startswith(("https://", "http://")):
                out["api_url"] = parsed_url.rstrip("/")
            else:
                issues.add(url_path, "must be an http(s) URL")
    if "token_env" in payload:
        parsed_env = _as_env_name(payload["token_env"], _join(path, "token_env"), issues)
        if parsed_env is not None:
            out["token_env"] = parsed_env
    if "context_prefix" in payload:
        parsed_prefix = _as_str(payload["context_prefix"], _join(path, "context_prefix"), issues)
        if parsed_prefix is not None:
            out["context_prefix"] = parsed_prefix
    if "timeout_seconds" in payload:
        parsed_timeout = _as_float(
            payload["timeout_seconds"],
            _join(path, "timeout_seconds"),
            issues,
            exclusive_minimum=0.0,
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout
    return out


def _validate_notifications(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    required = {"notifier", "owners", "sender", "smtp_host", "smtp_port"}
    optional = {"smtp_username_env", "smtp_password_env"}
    templates = {"subject_template", "body_template"}
    _reject_unknown_keys(payload, required | optional | templates, path, issues)
    _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    if "notifier" in payload:
        parsed = _as_enum(
            payload["notifier"],
            _join(path, "notifier"),
            issues,
            allowed_values=("logging", "smtp"),
        )
        if parsed is not None:
            out["notifier"] = parsed
    if "owners" in payload:
        parsed_owners = _as_str_list(payload["owners"], _join(path, "owners"), issues)
        if parsed_owners is not None:
            out["owners"] = parsed_owners
    for key in ("sender", "smtp_host"):
        if key in payload:
            parsed_text = _as_str(payload[key], _join(path, key), issues)
            if parsed_text is not None:
                out[key] = parsed_text
    if "smtp_port" in payload:
        port_path = _join(path, "smtp_port")
        parsed_port = _as_int(payload["smtp_port"], port_path, issues, minimum=1)
        if parsed_port is not None:
            if parsed_port > 65535:
                issues.add(port_path, "must be <= 65535")
            else:
                out["smtp_port"] = parsed_port
    for key in sorted(optional):
        if key in payload:
            parsed_env = _as_env_name(payload[key], _join(path, key), issues)
            if parsed_env is not None:
                out[key] = parsed_env
    for key in sorted(templates):
        if key not in payload:
            continue
        template = payload[key]
        # Kept verbatim: leading and trailing whitespace is part of the template.
        if isinstance(template, str) and template.strip():
            out[key] = template
        else:
            issues.add(_join(path, key), "must be a non-empty template string")
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"workspace_root", "artifacts_root", "approvals_dir", "state_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        parsed_log_level = _as_enum(
            payload["log_level"],
            _join(path, "log_level"),
            issues,
            allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
        )
        if parsed_log_level is not None:
            out["log_level"] = parsed_log_level
    if "log_dir" in payload:
        parsed_log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_log_dir is not None:
            out["log_dir"] = parsed_log_dir
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_flag = _as_bool(payload[key], _join(path, key), issues)
            if parsed_flag is not None:
                out[key] = parsed_flag
    return out


def _validate_commands(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"git", "container", "test_script", "deploy_script"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key not in payload:
            continue
        key_path = _join(path, key)
        parsed = _as_str(payload[key], key_path, issues)
        if parsed is None:
            continue
        if any(char.isspace() for char in parsed):
            # Commands run as argv vectors; whitespace would need a shell to split.
            issues.add(key_path, "must be a single executable without whitespace")
            continue
        out[key] = parsed
    return out


_SECTION_VALIDATORS: Final[dict[str, _SectionValidator]] = {
    "meta": _validate_meta,
    "pipeline": _validate_pipeline,
    "parameters": _validate_parameters,
    "credentials": _validate_credentials,
    "approval": _validate_approval,
    "status": _validate_status,
    "notifications": _validate_notifications,
    "paths": _validate_paths,
    "observability": _validate_observability,
    "commands": _validate_commands,
}


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected array of strings, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: CONVEYOR_STATUS_TOKEN)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    exclusive_minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if exclusive_minimum is not None and parsed <= exclusive_minimum:
        issues.add(path, f"must be > {exclusive_minimum:g}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ConveyorConfig",
    "DEFAULT_CONFIG",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
