"""
Kernel tunables as frozen dataclasses.

The kernel never reads configuration files.  ``rental_config`` parses YAML
into a ``KernelSettings`` and callers pass it to service constructors; the
defaults here are what services use when nothing is passed.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SerialSettings:
    """Defaults for lazily created serial number sequences."""

    prefix: str = "SN"
    padding_length: int = 8
    start_number: int = 1


@dataclass(frozen=True)
class BulkEditSettings:
    """
    large_operation_threshold: batches with more ids than this need
        ``confirm_large_operation``.
    max_workers: 1 processes items sequentially, >1 uses a thread pool.
    item_timeout_seconds: budget for one item's transaction.
    """

    large_operation_threshold: int = 100
    max_workers: int = 1
    item_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ExportSettings:
    immediate_max_records: int = 1000
    async_max_records: int = 10000
    inventory_expiry_hours: int = 24
    audit_expiry_days: int = 7
    inventory_download_url: str = "/api/inventory/export/{export_id}/download"
    audit_download_url: str = "/api/audit/export/{export_id}/download"


@dataclass(frozen=True)
class QuantitySettings:
    # Fraction of the previous quantity; drops strictly above it are flagged
    significant_reduction_ratio: float = 0.5


@dataclass(frozen=True)
class HistorySettings:
    default_page_size: int = 20
    max_page_size: int = 100


@dataclass(frozen=True)
class KernelSettings:
    serial: SerialSettings = field(default_factory=SerialSettings)
    bulk: BulkEditSettings = field(default_factory=BulkEditSettings)
    exports: ExportSettings = field(default_factory=ExportSettings)
    quantity: QuantitySettings = field(default_factory=QuantitySettings)
    history: HistorySettings = field(default_factory=HistorySettings)


DEFAULT_SETTINGS = KernelSettings()
