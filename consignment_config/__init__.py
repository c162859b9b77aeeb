"""
consignment_config -- configuration for the consignment engines.

Responsibility:
    Provides the ``ConfigProvider`` contract, validated providers, typed
    rule views and ``get_active_config()``, the runtime entrypoint that
    loads a YAML configuration file (``sets/default.yaml`` unless another
    path is given).

Architecture position:
    Configuration -- sits above ``consignment_kernel`` and below
    ``consignment_engines`` / ``consignment_services``.  The kernel never
    imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- configuration file does not exist.
    - ``ConfigurationError`` -- unknown key or out-of-range value.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``CONSIGNMENT_CONFIG_TRACE`` log entry with the file path and checksum,
    tying computed amounts to the exact configuration that produced them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from consignment_config.loader import (
    compute_checksum,
    load_config_file,
    load_yaml_file,
    parse_config,
)
from consignment_config.provider import (
    ConfigProvider,
    InMemoryConfigProvider,
    StaticConfigProvider,
    freeze,
)
from consignment_config.rules import (
    LotRules,
    ProfitRules,
    SettlementRules,
    WholesaleTier,
    WholesaleTierTable,
)

_logger = logging.getLogger("consignment_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> StaticConfigProvider:
    """Load and validate the active configuration.

    Args:
        config_path: Override path to a YAML file.  Defaults to
            consignment_config/sets/default.yaml.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_FILE
    data = load_yaml_file(path)
    provider = parse_config(data)

    _logger.info(
        "CONSIGNMENT_CONFIG_TRACE",
        extra={
            "trace_type": "CONSIGNMENT_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": compute_checksum(data),
            "key_count": len(provider.as_dict()),
        },
    )
    return provider


__all__ = [
    "ConfigProvider",
    "InMemoryConfigProvider",
    "LotRules",
    "ProfitRules",
    "SettlementRules",
    "StaticConfigProvider",
    "WholesaleTier",
    "WholesaleTierTable",
    "freeze",
    "get_active_config",
    "load_config_file",
]
