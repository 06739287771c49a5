"""
conveyor — runtime config loader.

File: src/conveyor/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the effective config for a run from four layers, lowest first:
  built-in defaults, ``conveyor.toml``, ``CONVEYOR_*`` environment variables,
  and CLI overrides given as dotted keys.

Functional requirements
- An explicitly named config file must exist; the implicit ``./conveyor.toml``
  is optional.
- Every scalar or list setting can be overridden from the environment as
  ``CONVEYOR_<SECTION>_<KEY>``; the raw string is converted to the type of the
  value it replaces. A few optional keys without defaults are bindable too.
- The file layer is validated before env overrides apply and the merged
  result is validated again, so a bad file is reported against the file.
- Path settings are resolved against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from conveyor.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from conveyor.constants import FALSE_STRINGS, TRUE_STRINGS

DEFAULT_CONFIG_FILE: Final[str] = "conveyor.toml"
ENV_PREFIX: Final[str] = "CONVEYOR_"

# Optional settings with no default value; the env layer cannot infer their type.
_OPTIONAL_TEXT_SETTINGS: Final[tuple[tuple[str, ...], ...]] = (
    ("pipeline", "repository"),
    ("pipeline", "repository_url"),
    ("pipeline", "definition_file"),
    ("notifications", "smtp_username_env"),
    ("notifications", "smtp_password_env"),
)

ConfigPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


@dataclass(frozen=True, slots=True)
class _EnvSetting:
    """One config setting reachable through a ``CONVEYOR_*`` variable."""

    variable: str
    path: ConfigPath
    convert: Callable[[str], object]
    expected: str

    def read(self, raw: str) -> object:
        try:
            return self.convert(raw.strip())
        except ValueError as exc:
            dotted = ".".join(self.path)
            raise ConfigLoadError(f"{self.variable} -> {dotted} must be {self.expected}") from exc


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config (CLI > env > file > defaults)."""

    source = _locate(config_path)
    file_layer = _read_toml(source, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), file_layer))

    env_layer = _env_layer(config, os.environ if environ is None else environ)
    cli_layer = _cli_layer(cli_overrides or {})
    config = assert_valid_config(merge_config(merge_config(config, env_layer), cli_layer))

    return normalize_paths(config, base_dir=source.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Return a copy of ``config`` with every path setting made absolute."""

    resolved = merge_config({}, config)
    for path in PATH_FIELDS:
        *parents, leaf = path
        section = _section(resolved, parents)
        if section is not None and isinstance(section.get(leaf), str):
            section[leaf] = _absolute_posix(section[leaf], base_dir)
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Redacted config as stable, indented JSON."""

    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _locate(config_path: str | Path | None) -> Path:
    if config_path is None:
        return Path.cwd().joinpath(DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for setting in _env_settings(config):
        raw = environ.get(setting.variable)
        if raw is not None:
            _plant(layer, setting.path, setting.read(raw))
    return layer


def _env_settings(config: Mapping[str, object]) -> list[_EnvSetting]:
    settings: dict[str, _EnvSetting] = {}
    for path, value in _leaves(config):
        converter = _converter_for(value)
        if converter is not None:
            variable = _variable_for(path)
            settings[variable] = _EnvSetting(variable, path, *converter)
    for path in _OPTIONAL_TEXT_SETTINGS:
        variable = _variable_for(path)
        settings.setdefault(variable, _EnvSetting(variable, path, str, "a string"))
    return [settings[name] for name in sorted(settings)]


def _leaves(
    payload: Mapping[str, object], prefix: ConfigPath = ()
) -> Iterator[tuple[ConfigPath, object]]:
    for key, value in payload.items():
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _converter_for(default: object) -> tuple[Callable[[str], object], str] | None:
    # bool before int: bool is an int subclass.
    if isinstance(default, bool):
        return _to_bool, "a boolean (true/false/1/0/yes/no/on/off)"
    if isinstance(default, int):
        return int, "an integer"
    if isinstance(default, float):
        return float, "a number"
    if isinstance(default, str):
        return str, "a string"
    if isinstance(default, list):
        return _to_list, "a comma-separated list"
    return None


def _to_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in TRUE_STRINGS:
        return True
    if lowered in FALSE_STRINGS:
        return False
    raise ValueError(raw)


def _to_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for key, value in overrides.items():
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        _plant(layer, path, value)
    return layer


def _plant(target: dict[str, Any], path: ConfigPath, value: object) -> None:
    *parents, leaf = path
    for part in parents:
        child = target.get(part)
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = value


def _section(payload: dict[str, Any], parents: list[str]) -> dict[str, Any] | None:
    node: object = payload
    for part in parents:
        node = node.get(part) if isinstance(node, dict) else None
    return node if isinstance(node, dict) else None


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


def _variable_for(path: ConfigPath) -> str:
    return ENV_PREFIX + "_".join(path).upper()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
