"""
InventoryConfiguration schema.

The loaded, validated configuration handed to callers.  ``settings`` is the
kernel-side value object; the rest identifies which document produced it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rental_kernel.domain.settings import KernelSettings


@dataclass(frozen=True)
class InventoryConfiguration:
    """A parsed configuration document and its identity."""

    config_id: str
    version: int
    checksum: str
    settings: KernelSettings
    source_path: Path | None = None
