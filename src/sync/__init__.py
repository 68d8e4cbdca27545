"""Resumable diff-based sync engine module."""

from .engine import SyncOrchestrator
from .models import ItemRecord, RunSummary, SyncPlan

__all__ = ["SyncOrchestrator", "ItemRecord", "RunSummary", "SyncPlan"]
