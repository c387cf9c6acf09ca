"""Service YAML loading with ${VAR:-default} interpolation and packaged defaults."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from dynamo_stream.config.models import ReconcilerConfig, ServiceConfig

# ${VAR} or ${VAR:-default}; a default may contain escaped braces (\})
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")

RECONCILER_SECTION = "dynamoStream"
RECONCILER_DEFAULTS = Path(__file__).parent / "defaults" / "reconciler.yaml"


def _substitute(match: re.Match[str]) -> str:
    name, default = match.group(1), match.group(2)
    value = os.environ.get(name)
    if value is None and default is None:
        msg = f"Environment variable '{name}' is not set and no default provided"
        raise ValueError(msg)
    return value if value is not None else default.replace("\\}", "}")


def resolve_env_vars(data: Any) -> Any:
    """Resolve ``${VAR}`` references in every string of a parsed YAML tree."""
    if isinstance(data, str):
        return _ENV_PATTERN.sub(_substitute, data)
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge *overrides* into a copy of *base*; lists are replaced."""
    merged: dict[str, Any] = {**base}
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = value
    return merged


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a YAML mapping from *path* and resolve its env references."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(p.read_text())
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        msg = f"Failed to parse YAML in {p}{where}: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def load_service_config(
    path: str | Path,
    *,
    stage: str | None = None,
    region: str | None = None,
) -> ServiceConfig:
    """Load a service YAML, applying optional stage/region overrides."""
    data = load_yaml(path)
    provider_overrides = {
        k: v for k, v in (("stage", stage), ("region", region)) if v is not None
    }
    if provider_overrides:
        provider = data.get("provider") or {}
        data["provider"] = merge_configs(provider, provider_overrides)
    try:
        return ServiceConfig.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid service config ({path}):\n{exc}"
        raise ValueError(msg) from exc


def load_reconciler_config(
    service: ServiceConfig,
    *,
    overrides: dict[str, Any] | None = None,
) -> ReconcilerConfig:
    """Build reconciler settings.

    Precedence, lowest first: the packaged ``reconciler.yaml`` defaults, the
    service's ``custom.dynamoStream`` section, then explicit *overrides*
    (CLI flags).
    """
    section = service.custom.get(RECONCILER_SECTION) or {}
    if not isinstance(section, dict):
        msg = (
            f"Expected custom.{RECONCILER_SECTION} to be a mapping, "
            f"got {type(section).__name__}"
        )
        raise TypeError(msg)
    merged = merge_configs(
        merge_configs(load_yaml(RECONCILER_DEFAULTS), section), overrides or {}
    )
    try:
        return ReconcilerConfig.model_validate(merged)
    except ValidationError as exc:
        msg = f"Invalid custom.{RECONCILER_SECTION} settings:\n{exc}"
        raise ValueError(msg) from exc
