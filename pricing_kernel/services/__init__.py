"""Kernel services that bridge storage and the pure engines."""

from pricing_kernel.services.snapshot_loader import SnapshotLoader

__all__ = ["SnapshotLoader"]
