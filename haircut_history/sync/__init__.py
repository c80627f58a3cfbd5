"""Sync reconciliation: push the queue, diff the snapshot, pull changes."""

from .diff import SyncPlan, compute_sync_plan
from .reconciler import Reconciler

__all__ = ["Reconciler", "SyncPlan", "compute_sync_plan"]
