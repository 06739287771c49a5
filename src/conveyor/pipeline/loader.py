"""
conveyor — declarative pipeline definitions

File: src/conveyor/pipeline/loader.py
Last updated: 2026-10-19

Purpose
- Load a ``PipelineDefinition`` from a YAML file so a repository can declare
  its own stages instead of using the built-in CI definition.

Document shape
- Top level: ``name`` (optional), ``stages`` (non-empty sequence), ``post``
  (optional hook table).
- Stage: ``name``, ``steps``, optional ``when`` guard and ``post`` hooks.
- ``when`` is a boolean parameter name (``RUN_TESTS``, ``DEPLOY``), optionally
  prefixed with ``!`` (quoted, since YAML reads a bare ``!`` as a tag), or
  ``{environment: [...]}``.
- Step forms:
  - ``{run: [argv...], name, stdin, env, timeout_seconds, cwd}``
  - ``{with_credentials: {id, username_var, password_var, steps}}``
  - ``{deploy: {run: [argv...], name, requires_approval: [environments]}}``
  - ``{archive_results: <glob>}`` or ``{archive_results: {pattern, allow_empty}}``
  - ``notify`` and ``clean_workspace`` (bare strings or single-key mappings)

Functional requirements
- Unknown fields and malformed values fail with ``PipelineDefinitionError``
  naming the offending location.
- ``run`` must be an argument vector; a single shell string is rejected.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, cast

import yaml

from conveyor.approval.gate import DEFAULT_APPROVAL_TIMEOUT_SECONDS
from conveyor.constants import DEFAULT_APPROVAL_MESSAGE
from conveyor.domain.ids import validate_stage_name
from conveyor.domain.models import Environment, PipelineParameters
from conveyor.pipeline.definition import notification_templates
from conveyor.pipeline.deploy import Deploy, DeployTarget, Direct, RequiresApproval
from conveyor.pipeline.stages import Guard, HookTable, PipelineDefinition, Stage, always_run
from conveyor.pipeline.steps import (
    ArchiveResults,
    CleanWorkspace,
    Command,
    Notify,
    Step,
    WithCredentials,
)
from conveyor.reporting.notifications import NotificationTemplates

_ALLOWED_TOP_LEVEL: Final[frozenset[str]] = frozenset({"name", "stages", "post"})
_ALLOWED_STAGE_FIELDS: Final[frozenset[str]] = frozenset({"name", "steps", "when", "post"})
_ALLOWED_HOOK_FIELDS: Final[frozenset[str]] = frozenset({"success", "failure", "always"})
_ALLOWED_COMMAND_FIELDS: Final[frozenset[str]] = frozenset(
    {"run", "name", "stdin", "env", "timeout_seconds", "cwd"}
)
_ALLOWED_CREDENTIAL_FIELDS: Final[frozenset[str]] = frozenset(
    {"id", "username_var", "password_var", "steps"}
)
_ALLOWED_DEPLOY_FIELDS: Final[frozenset[str]] = frozenset({"run", "name", "requires_approval"})
_ALLOWED_ARCHIVE_FIELDS: Final[frozenset[str]] = frozenset({"pattern", "allow_empty"})
_BOOLEAN_PARAMETERS: Final[frozenset[str]] = frozenset({"RUN_TESTS", "DEPLOY"})


class PipelineDefinitionError(ValueError):
    """Raised when a pipeline definition file cannot be loaded or is malformed."""


@dataclass(frozen=True, slots=True)
class ParameterEnabled:
    """Guard that follows a boolean parameter, optionally negated."""

    name: str
    negate: bool = False

    def __call__(self, parameters: PipelineParameters) -> bool:
        value = parameters.run_tests if self.name == "RUN_TESTS" else parameters.deploy
        return value != self.negate


@dataclass(frozen=True, slots=True)
class EnvironmentIn:
    environments: frozenset[Environment]

    def __call__(self, parameters: PipelineParameters) -> bool:
        return parameters.environment in self.environments


@dataclass(frozen=True, slots=True)
class DefinitionDefaults:
    """Values a definition file inherits from config rather than declaring."""

    approval_message: str = DEFAULT_APPROVAL_MESSAGE
    approval_timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS
    templates: NotificationTemplates = NotificationTemplates()


def load_pipeline_definition(
    path: Path | str,
    config: Mapping[str, Any],
) -> PipelineDefinition:
    """Read and validate a YAML pipeline definition.

    Approval prompts and notification templates come from ``config`` so a
    definition file only describes stages and steps.
    """

    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except FileNotFoundError as exc:
        raise PipelineDefinitionError(f"pipeline definition not found: {source}") from exc
    except yaml.YAMLError as exc:
        raise PipelineDefinitionError(f"{source}: invalid YAML ({exc})") from exc

    approval = config["approval"]
    defaults = DefinitionDefaults(
        approval_message=approval["message"],
        approval_timeout_seconds=float(approval["timeout_minutes"]) * 60.0,
        templates=notification_templates(config),
    )
    return parse_pipeline_definition(loaded, defaults=defaults, location=source.name)


def parse_pipeline_definition(
    document: object,
    *,
    defaults: DefinitionDefaults = DefinitionDefaults(),
    location: str = "pipeline",
) -> PipelineDefinition:
    parsed = _as_mapping(document, location)
    _reject_unknown(parsed, _ALLOWED_TOP_LEVEL, location)

    name = _as_text(parsed.get("name", "pipeline"), f"{location}.name")
    raw_stages = parsed.get("stages")
    if not isinstance(raw_stages, list) or not raw_stages:
        raise PipelineDefinitionError(f"{location}.stages: expected a non-empty sequence")

    stages = tuple(
        _parse_stage(item, defaults, f"{location}.stages[{index}]")
        for index, item in enumerate(raw_stages)
    )
    hooks = _parse_hooks(parsed.get("post"), defaults, f"{location}.post")
    try:
        return PipelineDefinition(name=name, stages=stages, hooks=hooks)
    except ValueError as exc:
        raise PipelineDefinitionError(f"{location}: {exc}") from exc


def _parse_stage(value: object, defaults: DefinitionDefaults, location: str) -> Stage:
    parsed = _as_mapping(value, location)
    _reject_unknown(parsed, _ALLOWED_STAGE_FIELDS, location)
    if "name" not in parsed or "steps" not in parsed:
        raise PipelineDefinitionError(f"{location}: 'name' and 'steps' are required")

    name = _as_text(parsed["name"], f"{location}.name")
    try:
        validate_stage_name(name)
    except ValueError as exc:
        raise PipelineDefinitionError(f"{location}.name: {exc}") from exc

    return Stage(
        name=name,
        steps=_parse_steps(parsed["steps"], defaults, f"{location}.steps"),
        guard=_parse_guard(parsed.get("when"), f"{location}.when"),
        hooks=_parse_hooks(parsed.get("post"), defaults, f"{location}.post"),
    )


def _parse_guard(value: object, location: str) -> Guard:
    if value is None:
        return always_run
    if isinstance(value, str):
        text = value.strip()
        negate = text.startswith("!")
        name = text.lstrip("!").strip().upper()
        if name not in _BOOLEAN_PARAMETERS:
            expected = ", ".join(sorted(_BOOLEAN_PARAMETERS))
            raise PipelineDefinitionError(
                f"{location}: unknown boolean parameter {name!r}; expected one of: {expected}"
            )
        return ParameterEnabled(name, negate=negate)

    parsed = _as_mapping(value, location)
    _reject_unknown(parsed, frozenset({"environment"}), location)
    return EnvironmentIn(_as_environments(parsed.get("environment"), f"{location}.environment"))


def _parse_hooks(value: object, defaults: DefinitionDefaults, location: str) -> HookTable:
    if value is None:
        return HookTable()
    parsed = _as_mapping(value, location)
    _reject_unknown(parsed, _ALLOWED_HOOK_FIELDS, location)
    return HookTable(
        success=_parse_steps(parsed.get("success", []), defaults, f"{location}.success"),
        failure=_parse_steps(parsed.get("failure", []), defaults, f"{location}.failure"),
        always=_parse_steps(parsed.get("always", []), defaults, f"{location}.always"),
    )


def _parse_steps(value: object, defaults: DefinitionDefaults, location: str) -> tuple[Step, ...]:
    if not isinstance(value, list):
        raise PipelineDefinitionError(
            f"{location}: expected a sequence of steps, got {type(value).__name__}"
        )
    return tuple(
        _parse_step(item, defaults, f"{location}[{index}]") for index, item in enumerate(value)
    )


def _parse_step(value: object, defaults: DefinitionDefaults, location: str) -> Step:
    if value == "notify":
        return Notify(templates=defaults.templates)
    if value == "clean_workspace":
        return CleanWorkspace()

    parsed = _as_mapping(value, location)
    if "run" in parsed:
        return _parse_command(parsed, location)
    if len(parsed) != 1:
        raise PipelineDefinitionError(
            f"{location}: expected a 'run' step or a single-key step mapping"
        )

    ((kind, body),) = parsed.items()
    body_location = f"{location}.{kind}"
    if kind == "with_credentials":
        return _parse_with_credentials(body, defaults, body_location)
    if kind == "deploy":
        return _parse_deploy(body, defaults, body_location)
    if kind == "archive_results":
        return _parse_archive(body, body_location)
    if kind == "notify":
        return Notify(templates=defaults.templates)
    if kind == "clean_workspace":
        return CleanWorkspace()
    raise PipelineDefinitionError(f"{location}: unknown step type {kind!r}")


def _parse_command(parsed: Mapping[str, object], location: str) -> Command:
    _reject_unknown(parsed, _ALLOWED_COMMAND_FIELDS, location)
    timeout = parsed.get("timeout_seconds")
    if timeout is not None and (
        isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
    ):
        raise PipelineDefinitionError(f"{location}.timeout_seconds: must be a positive number")

    return Command(
        argv=_as_argv(parsed["run"], f"{location}.run"),
        stdin=_optional_text(parsed.get("stdin"), f"{location}.stdin"),
        env=_as_str_mapping(parsed.get("env", {}), f"{location}.env"),
        timeout_seconds=float(timeout) if timeout is not None else None,
        cwd=_optional_text(parsed.get("cwd"), f"{location}.cwd"),
        name=_optional_text(parsed.get("name"), f"{location}.name"),
    )


def _parse_with_credentials(
    value: object, defaults: DefinitionDefaults, location: str
) -> WithCredentials:
    parsed = _as_mapping(value, location)
    _reject_unknown(parsed, _ALLOWED_CREDENTIAL_FIELDS, location)
    if "id" not in parsed or "steps" not in parsed:
        raise PipelineDefinitionError(f"{location}: 'id' and 'steps' are required")

    return WithCredentials(
        credential_id=_as_text(parsed["id"], f"{location}.id"),
        steps=_parse_steps(parsed["steps"], defaults, f"{location}.steps"),
        username_var=_as_text(parsed.get("username_var", "USERNAME"), f"{location}.username_var"),
        password_var=_as_text(parsed.get("password_var", "PASSWORD"), f"{location}.password_var"),
    )


def _parse_deploy(value: object, defaults: DefinitionDefaults, location: str) -> Deploy:
    parsed = _as_mapping(value, location)
    _reject_unknown(parsed, _ALLOWED_DEPLOY_FIELDS, location)
    if "run" not in parsed:
        raise PipelineDefinitionError(f"{location}: 'run' is required")

    gated = (
        _as_environments(parsed["requires_approval"], f"{location}.requires_approval")
        if "requires_approval" in parsed
        else frozenset({Environment.PRODUCTION})
    )
    approval = RequiresApproval(
        message=defaults.approval_message,
        timeout_seconds=defaults.approval_timeout_seconds,
    )
    targets = {
        environment: DeployTarget(
            environment, approval if environment in gated else Direct()
        )
        for environment in Environment
    }
    command = Command(
        argv=_as_argv(parsed["run"], f"{location}.run"),
        name=_optional_text(parsed.get("name"), f"{location}.name") or "deploy-script",
    )
    return Deploy(command=command, targets=targets)


def _parse_archive(value: object, location: str) -> ArchiveResults:
    if isinstance(value, str):
        return ArchiveResults(pattern=_as_text(value, location))
    parsed = _as_mapping(value, location)
    _reject_unknown(parsed, _ALLOWED_ARCHIVE_FIELDS, location)
    allow_empty = parsed.get("allow_empty", True)
    if not isinstance(allow_empty, bool):
        raise PipelineDefinitionError(f"{location}.allow_empty: expected boolean")
    return ArchiveResults(
        pattern=_as_text(parsed.get("pattern", "*.xml"), f"{location}.pattern"),
        allow_empty=allow_empty,
    )


def _as_mapping(value: object, location: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise PipelineDefinitionError(f"{location}: expected mapping, got {type(value).__name__}")
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise PipelineDefinitionError(f"{location}: keys must be strings")
        out[key] = item
    return out


def _reject_unknown(parsed: Mapping[str, object], allowed: frozenset[str], location: str) -> None:
    unknown = sorted(set(parsed) - allowed)
    if unknown:
        raise PipelineDefinitionError(
            f"{location}: unexpected fields: {unknown}; allowed fields: {sorted(allowed)}"
        )


def _as_text(value: object, location: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise PipelineDefinitionError(f"{location}: expected non-empty string")
    return value.strip()


def _optional_text(value: object, location: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise PipelineDefinitionError(f"{location}: expected string")
    return value


def _as_argv(value: object, location: str) -> tuple[str, ...]:
    if isinstance(value, str):
        raise PipelineDefinitionError(
            f"{location}: must be a list of arguments, not a shell string"
        )
    if not isinstance(value, list) or not value:
        raise PipelineDefinitionError(f"{location}: expected a non-empty list of arguments")
    argv: list[str] = []
    for index, item in enumerate(value):
        # YAML turns bare 1 or true into scalars; keep them as argument text.
        if isinstance(item, bool):
            argv.append("true" if item else "false")
        elif isinstance(item, (str, int, float)):
            argv.append(str(item))
        else:
            raise PipelineDefinitionError(f"{location}[{index}]: expected scalar argument")
    return tuple(argv)


def _as_str_mapping(value: object, location: str) -> dict[str, str]:
    parsed = _as_mapping(value, location)
    out: dict[str, str] = {}
    for key, item in parsed.items():
        if not isinstance(item, str):
            raise PipelineDefinitionError(f"{location}.{key}: expected string")
        out[key] = item
    return out


def _as_environments(value: object, location: str) -> frozenset[Environment]:
    items = [value] if isinstance(value, str) else value
    if not isinstance(items, list):
        raise PipelineDefinitionError(f"{location}: expected environment name or list")
    environments: set[Environment] = set()
    for item in items:
        try:
            environments.add(Environment(str(item).strip().lower()))
        except ValueError as exc:
            expected = ", ".join(member.value for member in Environment)
            raise PipelineDefinitionError(
                f"{location}: unknown environment {item!r}; expected one of: {expected}"
            ) from exc
    return frozenset(environments)


__all__ = [
    "DefinitionDefaults",
    "EnvironmentIn",
    "ParameterEnabled",
    "PipelineDefinitionError",
    "load_pipeline_definition",
    "parse_pipeline_definition",
]
