"""Incremental synchronization engine."""

from .cursor import SymbolCursor, SyncCursor, SyncRun
from .detector import DeltaDetector
from .fetcher import PaginatedFetcher
from .orchestrator import SyncOrchestrator, SyncState
from .progress import UNAUTHORIZED, PostSyncHooks, ProgressPublisher

__all__ = [
    "DeltaDetector",
    "PaginatedFetcher",
    "PostSyncHooks",
    "ProgressPublisher",
    "SymbolCursor",
    "SyncCursor",
    "SyncOrchestrator",
    "SyncRun",
    "SyncState",
    "UNAUTHORIZED",
]
