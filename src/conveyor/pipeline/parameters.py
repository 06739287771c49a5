"""
conveyor — runtime parameter resolution

File: src/conveyor/pipeline/parameters.py
Last updated: 2026-10-19

Purpose
- Merge caller-supplied runtime parameters over the default table and
  produce an immutable ``PipelineParameters``.

Functional requirements
- Parameter names are case-insensitive; unknown names are rejected.
- ``ENVIRONMENT`` must be one of development/staging/production.
- Flags accept booleans or 1/0/true/false/yes/no/on/off in any case.
- Every failure raises ``InvalidParameter`` naming the offending parameter.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Final

from conveyor.constants import (
    DEFAULT_DEPLOY,
    DEFAULT_ENVIRONMENT,
    DEFAULT_RUN_TESTS,
    FALSE_STRINGS,
    PARAM_DEPLOY,
    PARAM_ENVIRONMENT,
    PARAM_RUN_TESTS,
    TRUE_STRINGS,
)
from conveyor.domain.errors import InvalidParameter
from conveyor.domain.models import Environment, PipelineParameters

PARAMETER_DEFAULTS: Final[Mapping[str, object]] = MappingProxyType(
    {
        PARAM_ENVIRONMENT: DEFAULT_ENVIRONMENT,
        PARAM_RUN_TESTS: DEFAULT_RUN_TESTS,
        PARAM_DEPLOY: DEFAULT_DEPLOY,
    }
)


def resolve_parameters(
    raw: Mapping[str, object] | None = None,
    *,
    defaults: Mapping[str, object] | None = None,
) -> PipelineParameters:
    """Resolve ``raw`` over ``defaults`` (the built-in table when omitted)."""

    merged = dict(_normalize_keys(PARAMETER_DEFAULTS if defaults is None else defaults))
    merged.update(_normalize_keys(raw or {}))
    return PipelineParameters(
        environment=parse_environment(merged[PARAM_ENVIRONMENT]),
        run_tests=parse_flag(PARAM_RUN_TESTS, merged[PARAM_RUN_TESTS]),
        deploy=parse_flag(PARAM_DEPLOY, merged[PARAM_DEPLOY]),
    )


def defaults_from_config(config: Mapping[str, object]) -> dict[str, object]:
    """Default table taken from the ``[parameters]`` config section."""

    section = config.get("parameters")
    if not isinstance(section, Mapping):
        return dict(PARAMETER_DEFAULTS)
    return {
        PARAM_ENVIRONMENT: section.get("environment", DEFAULT_ENVIRONMENT),
        PARAM_RUN_TESTS: section.get("run_tests", DEFAULT_RUN_TESTS),
        PARAM_DEPLOY: section.get("deploy", DEFAULT_DEPLOY),
    }


def parse_parameter_assignments(assignments: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings; later assignments of the same key win."""

    parsed: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise InvalidParameter(item, "expected KEY=VALUE")
        parsed[key.upper()] = value.strip()
    return parsed


def parse_environment(value: object) -> Environment:
    if isinstance(value, Environment):
        return value
    if not isinstance(value, str):
        raise InvalidParameter(PARAM_ENVIRONMENT, f"expected a string, got {type(value).__name__}")
    normalized = value.strip().lower()
    try:
        return Environment(normalized)
    except ValueError:
        allowed = ", ".join(item.value for item in Environment)
        raise InvalidParameter(
            PARAM_ENVIRONMENT, f"{value!r} is not one of: {allowed}"
        ) from None


def parse_flag(name: str, value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    raise InvalidParameter(name, f"{value!r} is not a boolean")


def _normalize_keys(raw: Mapping[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            raise InvalidParameter(repr(key), "parameter names must be strings")
        normalized = key.strip().upper()
        if normalized not in PARAMETER_DEFAULTS:
            raise InvalidParameter(key, "unknown parameter")
        if normalized in out and out[normalized] != value:
            raise InvalidParameter(key, "supplied more than once with different values")
        out[normalized] = value
    return out


__all__ = [
    "PARAMETER_DEFAULTS",
    "defaults_from_config",
    "parse_environment",
    "parse_flag",
    "parse_parameter_assignments",
    "resolve_parameters",
]
