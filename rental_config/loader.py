"""
Configuration Loader (``rental_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the kernel's
frozen ``KernelSettings``.  Runtime callers go through
``rental_config.get_active_config()``; this module is the parsing step
behind it and is used directly by tests.

Invariants enforced
-------------------
* Every section is optional; a missing key keeps the kernel default.
* Unknown sections and unknown keys raise ``ValueError`` (a typo must not
  silently fall back to a default).
* Values are type-checked against the defaults' types (an int is accepted
  where a float is expected; a bool is never accepted as a number).
* Cross-field rules are checked together and reported in one
  ``ValueError``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown or invalid keys  -> ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from rental_kernel.domain.settings import (
    BulkEditSettings,
    ExportSettings,
    HistorySettings,
    KernelSettings,
    QuantitySettings,
    SerialSettings,
)

_SECTIONS: dict[str, type] = {
    "serial": SerialSettings,
    "bulk": BulkEditSettings,
    "exports": ExportSettings,
    "quantity": QuantitySettings,
    "history": HistorySettings,
}

_IDENTITY_KEYS = frozenset({"config_id", "version"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")
    return data


def _check_type(section: str, key: str, value: Any, default: Any) -> None:
    expected = type(default)
    if isinstance(value, bool) and expected is not bool:
        raise ValueError(f"{section}.{key}: expected {expected.__name__}, got bool")
    if expected is float and isinstance(value, int):
        return
    if not isinstance(value, expected):
        raise ValueError(
            f"{section}.{key}: expected {expected.__name__}, got {type(value).__name__}"
        )


def parse_section(name: str, data: dict[str, Any] | None) -> Any:
    """Parse one section into its settings dataclass."""
    cls = _SECTIONS[name]
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section '{name}' must be a mapping")

    defaults = cls()
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in section '{name}': {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in data.items():
        default = getattr(defaults, key)
        _check_type(name, key, value, default)
        values[key] = float(value) if isinstance(default, float) else value
    return cls(**values)


def validate_settings(settings: KernelSettings) -> list[str]:
    """Cross-field rules.  Returns error messages; empty means valid."""
    errors: list[str] = []

    if not settings.serial.prefix:
        errors.append("serial.prefix must not be empty")
    if settings.serial.padding_length < 1:
        errors.append("serial.padding_length must be at least 1")
    if settings.serial.start_number < 1:
        errors.append("serial.start_number must be at least 1")

    if settings.bulk.large_operation_threshold < 1:
        errors.append("bulk.large_operation_threshold must be at least 1")
    if settings.bulk.max_workers < 1:
        errors.append("bulk.max_workers must be at least 1")
    if settings.bulk.item_timeout_seconds <= 0:
        errors.append("bulk.item_timeout_seconds must be positive")

    exports = settings.exports
    if exports.immediate_max_records < 0:
        errors.append("exports.immediate_max_records must not be negative")
    if exports.async_max_records < exports.immediate_max_records:
        errors.append("exports.async_max_records must be >= exports.immediate_max_records")
    if exports.inventory_expiry_hours < 1:
        errors.append("exports.inventory_expiry_hours must be at least 1")
    if exports.audit_expiry_days < 1:
        errors.append("exports.audit_expiry_days must be at least 1")
    for key in ("inventory_download_url", "audit_download_url"):
        if "{export_id}" not in getattr(exports, key):
            errors.append(f"exports.{key} must contain '{{export_id}}'")

    ratio = settings.quantity.significant_reduction_ratio
    if not 0 < ratio < 1:
        errors.append("quantity.significant_reduction_ratio must be between 0 and 1")

    history = settings.history
    if history.max_page_size < 1:
        errors.append("history.max_page_size must be at least 1")
    if not 1 <= history.default_page_size <= history.max_page_size:
        errors.append("history.default_page_size must be between 1 and history.max_page_size")

    return errors


def parse_settings(data: dict[str, Any]) -> KernelSettings:
    """
    Parse a whole configuration document into ``KernelSettings``.

    Raises:
        ValueError: unknown sections or keys, wrong types, or failed
            cross-field rules.
    """
    unknown = sorted(set(data) - set(_SECTIONS) - _IDENTITY_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(unknown)}")

    settings = KernelSettings(
        **{name: parse_section(name, data.get(name)) for name in _SECTIONS}
    )
    errors = validate_settings(settings)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )
    return settings


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums, whatever the
    key order in the source YAML.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
