"""Configuration loader for lxrestore.

Values are read from multiple sources, later ones winning:

1. Built-in defaults.
2. ``/etc/lxrestore/config.yml`` (or an override path).
3. Environment variables prefixed with ``LXRESTORE_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export LXRESTORE_STORAGE__BUCKET=instance-backups
    export LXRESTORE_TRANSFER__CHUNK_SIZE=4194304

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` and handed explicitly to the restore coordinator.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "LXRESTORE_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

DEFAULT_CHUNK_SIZE = 1024 * 1024


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class StorageConfig:
    """Object-storage bucket and endpoint settings."""

    bucket: str = "lxrestore"
    endpoint_url: str | None = None
    region: str = "us-east-1"
    addressing_style: str = "auto"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "bucket": self.bucket,
            "endpoint_url": self.endpoint_url,
            "region": self.region,
            "addressing_style": self.addressing_style,
        }


@dataclass(frozen=True)
class TransferConfig:
    """Download tuning knobs."""

    chunk_size: int = DEFAULT_CHUNK_SIZE

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"chunk_size": self.chunk_size}


@dataclass(frozen=True)
class LxcConfig:
    """Virtualization manager integration settings."""

    lxc_bin: str = "lxc"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"lxc_bin": self.lxc_bin}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for lxrestore."""

    config_file: Path
    staging_root: Path
    logs_dir: Path
    storage: StorageConfig
    transfer: TransferConfig
    lxc: LxcConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "staging_root": str(self.staging_root),
            "logs_dir": str(self.logs_dir),
            "storage": self.storage.to_dict(),
            "transfer": self.transfer.to_dict(),
            "lxc": self.lxc.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/lxrestore/config.yml",
    "staging_root": "/var/lib/lxrestore/staging",
    "logs_dir": "/var/log/lxrestore",
    "storage": {
        "bucket": "lxrestore",
        "endpoint_url": None,
        "region": "us-east-1",
        "addressing_style": "auto",
    },
    "transfer": {
        "chunk_size": DEFAULT_CHUNK_SIZE,
    },
    "lxc": {
        "lxc_bin": "lxc",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_ADDRESSING_STYLES = {"auto", "path", "virtual"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    storage_map = _as_dict(raw.get("storage"), "storage")
    unknown = set(storage_map.keys()) - {"bucket", "endpoint_url", "region", "addressing_style"}
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown storage configuration keys: {joined}.")
    bucket = storage_map.get("bucket")
    if bucket is None or not str(bucket).strip():
        raise ConfigError("storage.bucket must be a non-empty string.")
    style = storage_map.get("addressing_style")
    if style is not None and str(style) not in ALLOWED_ADDRESSING_STYLES:
        allowed = ", ".join(sorted(ALLOWED_ADDRESSING_STYLES))
        raise ConfigError(
            f"Unsupported storage addressing style '{style}'. Allowed: {allowed}."
        )

    transfer_map = _as_dict(raw.get("transfer"), "transfer")
    unknown = set(transfer_map.keys()) - {"chunk_size"}
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown transfer configuration keys: {joined}.")

    lxc_map = _as_dict(raw.get("lxc"), "lxc")
    unknown = set(lxc_map.keys()) - {"lxc_bin"}
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown lxc configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    storage_mapping = _as_dict(raw.get("storage"), "storage")
    endpoint_value = storage_mapping.get("endpoint_url")
    endpoint_url: str | None = None
    if endpoint_value is not None and str(endpoint_value).strip():
        endpoint_url = str(endpoint_value).strip()
    storage = StorageConfig(
        bucket=str(storage_mapping.get("bucket", "lxrestore")).strip(),
        endpoint_url=endpoint_url,
        region=str(storage_mapping.get("region", "us-east-1")),
        addressing_style=str(storage_mapping.get("addressing_style", "auto")),
    )

    transfer_mapping = _as_dict(raw.get("transfer"), "transfer")
    chunk_size = _expect_int(
        transfer_mapping.get("chunk_size"),
        "transfer.chunk_size",
        default=DEFAULT_CHUNK_SIZE,
    )
    if chunk_size <= 0:
        raise ConfigError("transfer.chunk_size must be greater than zero.")

    lxc_mapping = _as_dict(raw.get("lxc"), "lxc")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        staging_root=_to_path(raw.get("staging_root")),
        logs_dir=_to_path(raw.get("logs_dir")),
        storage=storage,
        transfer=TransferConfig(chunk_size=chunk_size),
        lxc=LxcConfig(lxc_bin=str(lxc_mapping.get("lxc_bin", "lxc"))),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "LxcConfig",
    "StorageConfig",
    "TransferConfig",
    "load_config",
]
