"""
billing_config -- single public entrypoint for billing job configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services and strategies receive the parsed
    ``BillingConfiguration`` (or pieces of it) by injection and never read
    configuration files themselves.

Architecture position:
    Configuration -- sits above ``billing_kernel`` and below
    ``billing_batch``.  The kernel MUST NEVER import from ``billing_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigurationError`` -- structural or value validation failure.
"""

from __future__ import annotations

import logging
from pathlib import Path

from billing_config.loader import load_configuration
from billing_config.schema import (
    BillingConfiguration,
    ExpansionSettings,
    RenewCostTransition,
    TldDefinition,
)

_logger = logging.getLogger("billing_kernel.config")

# Default configuration set shipped with the package
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> BillingConfiguration:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned configuration has passed structural validation.
        - A ``billing_config_loaded`` log entry is emitted on every
          successful call, carrying the source path and checksum.

    Args:
        config_path: Override path to a YAML configuration file.
            Defaults to billing_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = load_configuration(path)

    _logger.info(
        "billing_config_loaded",
        extra={
            "config_source": config.source,
            "checksum": config.checksum,
            "tld_count": len(config.tlds),
            "strategy": config.expansion.strategy,
            "batch_size": config.expansion.batch_size,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "BillingConfiguration",
    "ExpansionSettings",
    "RenewCostTransition",
    "TldDefinition",
]
