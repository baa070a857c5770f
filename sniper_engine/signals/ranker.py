"""
Target ranker: one entry per subject, highest priority first, bounded size.
"""

import time
from typing import Optional

from ..models import Target


def _sort_key(target: Target) -> tuple[float, float]:
    return (-target.priority, -target.created_at)


class TargetRanker:
    """
    Deduplicated, priority-ordered target list.

    Not synchronized; the engine state owns it and mutates it under its lock.
    """

    def __init__(self, capacity: int = 20):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._targets: list[Target] = []

    def __len__(self) -> int:
        return len(self._targets)

    def upsert(self, target: Target) -> bool:
        """
        Insert or replace the target for its subject.

        Returns:
            True if the target is retained after truncation
        """
        self._targets = [t for t in self._targets if t.subject_id != target.subject_id]
        self._targets.append(target)
        self._targets.sort(key=_sort_key)
        del self._targets[self.capacity:]
        return any(t is target for t in self._targets)

    def list(self) -> list[Target]:
        return list(self._targets)

    def get(self, subject_id: str) -> Optional[Target]:
        for target in self._targets:
            if target.subject_id == subject_id:
                return target
        return None

    def remove(self, subject_id: str) -> Optional[Target]:
        target = self.get(subject_id)
        if target is not None:
            self._targets.remove(target)
        return target

    def evict(self, older_than: float, now: Optional[float] = None) -> int:
        """Drop targets created more than `older_than` seconds ago."""
        cutoff = (now if now is not None else time.time()) - older_than
        before = len(self._targets)
        self._targets = [t for t in self._targets if t.created_at >= cutoff]
        return before - len(self._targets)

    def resize(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        del self._targets[capacity:]
