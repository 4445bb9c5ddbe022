"""User interaction helpers."""

from .progress import PageRateColumn, SourceProgressState, SyncProgress

__all__ = ["PageRateColumn", "SourceProgressState", "SyncProgress"]
