"""Domain models for building Windows installation drives.

This package contains the type-safe values shared by the CLI, the geometry
planner and the flash orchestrator.
"""

from __future__ import annotations

from .models import (
    DiskGeometry,
    Filesystem,
    FlashRequest,
    PartitionPlan,
    PartitionRole,
    PartitionScheme,
    PartitionSpec,
)


__all__ = [
    "DiskGeometry",
    "Filesystem",
    "FlashRequest",
    "PartitionPlan",
    "PartitionRole",
    "PartitionScheme",
    "PartitionSpec",
]
