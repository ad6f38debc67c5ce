"""
rental_config -- single public entrypoint for inventory configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns an ``InventoryConfiguration`` whose
    ``settings`` is passed to kernel service constructors.

Architecture position:
    Configuration -- YAML-driven tunables.  This package sits above
    ``rental_kernel``.  The kernel MUST NEVER import from ``rental_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- unknown keys, wrong types or failed cross-field rules.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``INVENTORY_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying behaviour (thresholds, expiries, serial format) to the
    exact document that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from rental_config.loader import compute_checksum, load_yaml_file, parse_settings
from rental_config.schema import InventoryConfiguration

_logger = logging.getLogger("rental_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> InventoryConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a YAML document.  Defaults to
            rental_config/sets/default.yaml.

    Returns:
        InventoryConfiguration with validated ``KernelSettings``.

    Raises:
        FileNotFoundError: If the document does not exist.
        ValueError: If the document fails validation.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    settings = parse_settings(data)

    config = InventoryConfiguration(
        config_id=str(data.get("config_id", path.stem)),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        settings=settings,
        source_path=path,
    )

    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "large_operation_threshold": settings.bulk.large_operation_threshold,
            "immediate_max_records": settings.exports.immediate_max_records,
            "async_max_records": settings.exports.async_max_records,
        },
    )
    return config


__all__ = ["InventoryConfiguration", "get_active_config"]
