from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

"""Config loader and validator.

Provides `load_config` which accepts either a path to a YAML file,
a dictionary or None and returns a normalized configuration dict
using DEFAULTS for missing values.
"""


DEFAULTS: dict[str, Any] = {
    "cell_width": 8,
    "lenient_log": False,
}


class ConfigError(ValueError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _convert_types(cfg: dict[str, Any]) -> None:
    """Normalize types for configuration values in-place.

    Raises ConfigError on conversion failure.
    """
    try:
        # cell_width
        v = cfg.get("cell_width")
        if v is None:
            cfg["cell_width"] = int(DEFAULTS["cell_width"])
        else:
            cfg["cell_width"] = int(v)

        # lenient_log (bool coercion)
        cfg["lenient_log"] = bool(cfg.get("lenient_log", DEFAULTS["lenient_log"]))
    except Exception as e:
        msg = f"Bad types in config: {e}"
        raise ConfigError(msg) from e


def _validate_cfg(cfg: dict[str, Any]) -> None:
    """Perform semantic validation on normalized config dict.

    Raises ConfigError on invalid values.
    """
    if cfg["cell_width"] <= 0 or cfg["cell_width"] % 8 != 0:
        msg = f"cell_width ({cfg['cell_width']}) must be a positive multiple of 8"
        raise ConfigError(msg)

    if not isinstance(cfg["lenient_log"], bool):
        msg = "lenient_log must be boolean"
        raise ConfigError(msg)


def _read_yaml(p: Path) -> dict[str, Any]:
    """Read a YAML mapping from `p`; an empty file is an empty mapping."""
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise ConfigError(msg)
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        msg = f"Failed to load config file {p}: {e}"
        raise ConfigError(msg) from e
    if not isinstance(data, dict):
        msg = f"Config file {p} does not contain a mapping"
        raise ConfigError(msg)
    return data


def load_config(path_or_dict: str | Path | dict[str, Any] | None = None) -> dict[str, Any]:
    """Build the machine settings from DEFAULTS plus overrides.

    Overrides come from a dict or a YAML file path; None means DEFAULTS
    alone. The result has `cell_width` as int and `lenient_log` as bool.
    """
    if path_or_dict is None:
        overrides: dict[str, Any] = {}
    elif isinstance(path_or_dict, dict):
        overrides = path_or_dict
    elif isinstance(path_or_dict, (str, Path)):
        overrides = _read_yaml(Path(path_or_dict))
    else:
        msg = f"Unsupported config input: {type(path_or_dict).__name__}"
        raise ConfigError(msg)

    cfg = {**DEFAULTS, **overrides}
    _convert_types(cfg)
    _validate_cfg(cfg)
    return cfg
