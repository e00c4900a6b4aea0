"""Configuration loader for cdk-agc.

Defaults can be kept in a YAML file so a project does not have to repeat
``--keep-hours`` on every invocation:

    # .cdk-agc.yaml
    outdir: cdk.out
    keep_hours: 24
    docker_command: finch
    temp_dir: /var/tmp

Resolution order: built-in defaults, then the config file, then the
``CDK_DOCKER`` environment variable, then command-line flags.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from cdk_agc.errors import ConfigError
from cdk_agc.images import DEFAULT_DOCKER_COMMAND, DOCKER_COMMAND_ENV

DEFAULT_CONFIG_PATH = Path(".cdk-agc.yaml")
CONFIG_PATH_ENV = "CDK_AGC_CONFIG"

DEFAULT_OUTDIR = "cdk.out"

_KNOWN_KEYS = frozenset({"outdir", "keep_hours", "docker_command", "temp_dir"})


@dataclass(frozen=True)
class AgcConfig:
    """Resolved settings for one invocation."""

    outdir: str = DEFAULT_OUTDIR
    keep_hours: float = 0.0
    docker_command: str = DEFAULT_DOCKER_COMMAND
    temp_dir: str | None = None

    def with_overrides(self, **overrides: Any) -> AgcConfig:
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def parse_keep_hours(value: Any) -> float:
    """Validate a retention window given as number or string.

    Raises:
        ConfigError: If the value is not a finite, non-negative number.
    """
    if isinstance(value, bool):
        raise ConfigError("keep_hours must be a non-negative number")
    try:
        hours = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError("keep_hours must be a non-negative number") from e
    if not math.isfinite(hours) or hours < 0:
        raise ConfigError("keep_hours must be a non-negative number")
    return hours


def _from_mapping(data: dict[str, Any], path: Path) -> AgcConfig:
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"Unknown key(s) in {path}: {', '.join(unknown)}")

    for key in ("outdir", "docker_command", "temp_dir"):
        if key in data and data[key] is not None and not isinstance(data[key], str):
            raise ConfigError(f"{key} in {path} must be a string")

    config = AgcConfig()
    if data.get("keep_hours") is not None:
        config = replace(config, keep_hours=parse_keep_hours(data["keep_hours"]))
    return config.with_overrides(
        outdir=data.get("outdir"),
        docker_command=data.get("docker_command"),
        temp_dir=data.get("temp_dir"),
    )


def resolve_config_path(
    config_path: Path | None = None,
    env: dict[str, str] | None = None,
    cwd: Path | None = None,
) -> Path | None:
    """Pick the config file: explicit path, then ``CDK_AGC_CONFIG``, then the
    project default if it exists.

    Raises:
        ConfigError: If an explicitly named file does not exist.
    """
    source = os.environ if env is None else env
    explicit = config_path or (Path(source[CONFIG_PATH_ENV]) if source.get(CONFIG_PATH_ENV) else None)
    if explicit is not None:
        if not explicit.is_file():
            raise ConfigError(f"Config file not found: {explicit}")
        return explicit

    default = (cwd or Path.cwd()) / DEFAULT_CONFIG_PATH
    return default if default.is_file() else None


def load_config(
    config_path: Path | None = None,
    env: dict[str, str] | None = None,
    cwd: Path | None = None,
) -> AgcConfig:
    """Load configuration from YAML and the environment.

    Args:
        config_path: Explicit config file. Defaults to ``CDK_AGC_CONFIG`` or
            ``.cdk-agc.yaml`` in ``cwd`` when present.
        env: Environment mapping. Defaults to ``os.environ``.
        cwd: Directory searched for the default config file.

    Returns:
        AgcConfig with file and environment values applied.

    Raises:
        ConfigError: If the file is not valid YAML or has invalid values.
    """
    source = os.environ if env is None else env
    path = resolve_config_path(config_path, source, cwd)

    config = AgcConfig()
    if path is not None:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping in {path}")
        config = _from_mapping(data, path)

    return config.with_overrides(docker_command=source.get(DOCKER_COMMAND_ENV) or None)
