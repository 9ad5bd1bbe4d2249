"""Configuration precedence and flattening helpers."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import TidyConfig

ENV_PREFIX = "TIDYWATCH__"


def resolve_with_precedence(
    *,
    defaults: TidyConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> TidyConfig:
    """Merge configuration layers: defaults < file < environment < CLI.

    Args:
        defaults: Baseline configuration.
        file_overrides: Values read from the YAML file.
        env_overrides: Nested values extracted from ``TIDYWATCH__`` variables.
        cli_overrides: Values supplied on the command line, optionally dotted.

    Returns:
        TidyConfig: Validated configuration.

    Raises:
        ConfigError: If an override layer is malformed or the merged values fail
            validation.
    """
    merged: dict[str, Any] = defaults.model_dump(mode="python")
    layers = (("file", file_overrides), ("environment", env_overrides), ("cli", cli_overrides))
    for label, layer in layers:
        if layer is None:
            continue
        merged = _deep_merge(merged, _expand_dotted(layer, label=label))

    try:
        return TidyConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def flatten_for_env(config: TidyConfig) -> Dict[str, str]:
    """Render the config as ``TIDYWATCH__SECTION__KEY`` environment assignments."""
    flat: Dict[str, str] = {}

    def _walk(parts: list[str], value: Any) -> None:
        if isinstance(value, dict) and value and all(isinstance(key, str) for key in value):
            if len(parts) >= 2:
                # Free-form mappings (category tables) are emitted as one YAML value.
                flat[ENV_PREFIX + "__".join(part.upper() for part in parts)] = yaml.safe_dump(
                    value, default_flow_style=True
                ).strip()
                return
            for key, child in value.items():
                _walk(parts + [key], child)
            return
        key = ENV_PREFIX + "__".join(part.upper() for part in parts)
        if isinstance(value, (list, dict)):
            flat[key] = yaml.safe_dump(value, default_flow_style=True).strip()
        elif value is None:
            flat[key] = "null"
        else:
            flat[key] = str(value)

    for section, payload in config.model_dump(mode="python").items():
        _walk([section], payload)
    return flat


def _expand_dotted(source: Mapping[str, Any], *, label: str) -> dict[str, Any]:
    if not isinstance(source, MappingABC):
        raise ConfigError(f"{label.capitalize()} overrides must be a mapping.")

    expanded: dict[str, Any] = {}
    for key, value in source.items():
        if not isinstance(key, str):
            raise ConfigError(f"{label.capitalize()} override keys must be strings.")
        segments = key.split(".")
        node = expanded
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(
                    f"{label.capitalize()} override for {key} conflicts with an existing value."
                )
            node = child
        leaf = segments[-1]
        if isinstance(value, MappingABC):
            current = node.get(leaf)
            nested = _expand_dotted(value, label=label)
            node[leaf] = _deep_merge(current, nested) if isinstance(current, dict) else nested
        else:
            node[leaf] = value
    return expanded


def _deep_merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    result = {key: deepcopy(value) for key, value in base.items()}
    for key, value in overrides.items():
        current = result.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = deepcopy(value)
    return result


__all__ = ["ENV_PREFIX", "resolve_with_precedence", "flatten_for_env"]
