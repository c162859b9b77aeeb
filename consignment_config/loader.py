"""
Configuration Loader (``consignment_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and flattens its nested mapping into the
dotted keys of ``consignment_config.keys``::

    trigger:
      three_tranche:
        t2_percent: 10

becomes ``{"trigger.three_tranche.t2_percent": Decimal("10")}``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key  -> ``ConfigurationError`` (typos must not silently fall
  back to a default).
* Out-of-range value  -> ``ConfigurationError`` from the provider.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from consignment_config import keys
from consignment_config.provider import StaticConfigProvider
from consignment_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested mappings into dotted keys."""
    flat: dict[str, Any] = {}
    for name, value in data.items():
        key = f"{prefix}.{name}" if prefix else str(name)
        if isinstance(value, dict):
            flat.update(flatten(value, key))
        else:
            flat[key] = value
    return flat


def parse_config(data: dict[str, Any]) -> StaticConfigProvider:
    """Build a validated provider from an already-parsed mapping."""
    flat = flatten(data)
    unknown = sorted(set(flat) - set(keys.DEFAULTS))
    if unknown:
        raise ConfigurationError(unknown[0], f"unknown configuration key(s): {unknown}")
    # YAML floats (e.g. 2.5) are read back through str() to stay exact
    values = {k: str(v) if isinstance(v, float) else v for k, v in flat.items()}
    return StaticConfigProvider(values)


def load_config_file(path: Path | str) -> StaticConfigProvider:
    """Load, flatten and validate a YAML configuration file."""
    return parse_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
