"""
execution-policy — layered config loader.

Purpose
- Build the effective execution-policy config from ordered layers:
  defaults, the TOML file, an optional profile, ``EXECPOLICY_`` env vars,
  and CLI overrides. Later layers win.

What should be included in this file
- ``load_config`` returning the validated, path-normalized mapping.
- ``load_config_with_sources`` additionally reporting which layer set each key.
- Env var bindings derived from the default config's leaf types.

Functional requirements
- Validation runs after the file layer and again after all layers merge.
- ``execution.working_directory`` and ``observability.log_dir`` are resolved
  against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Final

from execution_policy.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "execution_policy.toml"
ENV_PREFIX: Final[str] = "EXECPOLICY_"
PROFILE_ENV_VAR: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUTHY: Final[tuple[str, ...]] = ("1", "true", "yes", "on")
_FALSY: Final[tuple[str, ...]] = ("0", "false", "no", "off")
_UNBOUND_SECTIONS: Final[frozenset[str]] = frozenset({"meta", "profiles"})


class ConfigLoadError(ValueError):
    """The config file or an override could not be read or coerced."""


class ConfigLayer(StrEnum):
    DEFAULTS = "defaults"
    FILE = "file"
    PROFILE = "profile"
    ENV = "env"
    CLI = "cli"


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    """Effective config plus provenance of every overridden leaf."""

    config: dict[str, Any]
    config_path: Path
    profile: str | None = None
    sources: Mapping[str, ConfigLayer] = field(default_factory=dict)

    def source_of(self, dotted_key: str) -> ConfigLayer:
        return self.sources.get(dotted_key, ConfigLayer.DEFAULTS)


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the effective config. Precedence: CLI > env > profile > file > defaults."""

    return load_config_with_sources(
        config_path,
        profile=profile,
        cli_overrides=cli_overrides,
        environ=environ,
    ).config


def load_config_with_sources(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> LoadedConfig:
    path = _config_file_path(config_path)
    env = os.environ if environ is None else environ
    cli = dict(cli_overrides) if cli_overrides else {}

    file_layer = _read_toml(path, required=config_path is not None)
    effective = assert_valid_config(merge_config(default_config(), file_layer))
    layers: list[tuple[ConfigLayer, Mapping[str, Any]]] = [(ConfigLayer.FILE, file_layer)]

    profile_name = _select_profile(profile, cli, env)
    if profile_name is not None:
        overlay = effective.get("profiles", {}).get(profile_name, {})
        effective = apply_profile_overlay(effective, profile_name)
        layers.append((ConfigLayer.PROFILE, overlay))

    env_layer = _env_layer(env)
    cli_layer = _cli_layer(cli)
    layers.append((ConfigLayer.ENV, env_layer))
    layers.append((ConfigLayer.CLI, cli_layer))

    effective = assert_valid_config(merge_config(merge_config(effective, env_layer), cli_layer))
    return LoadedConfig(
        config=normalize_paths(effective, base_dir=path.parent),
        config_path=path,
        profile=profile_name,
        sources=_provenance(layers),
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``; absolute values are kept."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        values = normalized.get(section)
        if isinstance(values, dict) and isinstance(values.get(key), str):
            values[key] = _resolve_path(values[key], base_dir)
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(config, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def env_var_for(dotted_key: str) -> str:
    """``fallback.max_retries`` -> ``EXECPOLICY_FALLBACK_MAX_RETRIES``."""

    return ENV_PREFIX + dotted_key.replace(".", "_").upper()


def _config_file_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return Path.cwd().joinpath(DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"cannot read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None,
    cli: Mapping[str, object],
    env: Mapping[str, str],
) -> str | None:
    if explicit is not None:
        candidate: object = explicit
    elif "profile" in cli:
        candidate = cli["profile"]
    else:
        candidate = env.get(PROFILE_ENV_VAR)
    if candidate is None:
        return None
    if not isinstance(candidate, str):
        raise ConfigLoadError("profile override must be a string")
    return candidate.strip() or None


def _env_layer(env: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted_key, default in _leaves(default_config()):
        if dotted_key.split(".", 1)[0] in _UNBOUND_SECTIONS:
            continue
        name = env_var_for(dotted_key)
        raw = env.get(name)
        if raw is not None:
            _assign(layer, dotted_key, _coerce_like(default, raw.strip(), name))
    return layer


def _coerce_like(default: object, raw: str, name: str) -> object:
    # bool before int: bool is an int subclass.
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ConfigLoadError(f"{name} must be a boolean, one of {_TRUTHY + _FALSY}")
    if isinstance(default, list):
        return [part.strip() for part in raw.split(",") if part.strip()]
    if isinstance(default, (int, float)):
        kind = type(default)
        try:
            return kind(raw)
        except ValueError as exc:
            expected = "an integer" if kind is int else "a number"
            raise ConfigLoadError(f"{name} must be {expected}, got {raw!r}") from exc
    return raw


def _cli_layer(cli: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted_key, value in sorted(cli.items()):
        if dotted_key == "profile" or value is None:
            continue
        if not all(dotted_key.split(".")):
            raise ConfigLoadError(f"invalid CLI override key {dotted_key!r}")
        _assign(layer, dotted_key, value)
    return layer


def _provenance(layers: list[tuple[ConfigLayer, Mapping[str, Any]]]) -> dict[str, ConfigLayer]:
    sources: dict[str, ConfigLayer] = {}
    for layer, payload in layers:
        for dotted_key, _ in _leaves(payload):
            sources[dotted_key] = layer
    return sources


def _leaves(payload: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, object]]:
    for key in sorted(payload):
        dotted_key = f"{prefix}{key}"
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _leaves(value, f"{dotted_key}.")
        else:
            yield dotted_key, value


def _assign(target: dict[str, Any], dotted_key: str, value: object) -> None:
    *parents, leaf = dotted_key.split(".")
    node = target
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir.joinpath(candidate)
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV_VAR",
    "ConfigLayer",
    "ConfigLoadError",
    "LoadedConfig",
    "dump_effective_config",
    "env_var_for",
    "load_config",
    "load_config_with_sources",
    "normalize_paths",
]
