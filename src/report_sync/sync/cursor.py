"""Per-run cursor state, kept apart from the immutable collection schemas."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

PUBLIC_SCOPE = "public"


@dataclass
class SymbolCursor:
    """Boundaries of one symbol of a configurable public collection."""
    base_start_from: Optional[int] = None
    base_start_to: Optional[int] = None
    curr_start: Optional[int] = None

    @property
    def has_gap(self) -> bool:
        return self.base_start_from is not None and self.base_start_to is not None

    @property
    def is_empty(self) -> bool:
        return not self.has_gap and self.curr_start is None


@dataclass
class SyncCursor:
    """Where a collection's fetch starts in this run."""
    has_new_data: bool = False
    start: int = 0
    symbols: Dict[str, SymbolCursor] = field(default_factory=dict)


class SyncRun:
    """Cursor map owned by one orchestration run."""

    def __init__(self):
        self.run_id = uuid.uuid4().hex[:12]
        self.started_at = datetime.utcnow()
        self.cursors: Dict[Tuple[str, str], SyncCursor] = {}

    def get_cursor(self, collection: str, scope: str = PUBLIC_SCOPE) -> Optional[SyncCursor]:
        return self.cursors.get((collection, scope))

    def set_cursor(self, collection: str, scope: str, cursor: SyncCursor) -> SyncCursor:
        """Attach a cursor; its start never moves backward within the run."""
        previous = self.cursors.get((collection, scope))

        if previous is not None and cursor.start < previous.start:
            cursor.start = previous.start

        self.cursors[(collection, scope)] = cursor
        return cursor

    def summary(self) -> Dict[str, int]:
        """Count of cursors with and without new data."""
        with_data = sum(1 for cursor in self.cursors.values() if cursor.has_new_data)
        return {
            "cursors": len(self.cursors),
            "with_new_data": with_data,
            "without_new_data": len(self.cursors) - with_data
        }
