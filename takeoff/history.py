"""Linear undo/redo history of per-page markup snapshots."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Deque, List, Optional, Tuple
from uuid import uuid4

from takeoff.catalog.products import LinkedMeasurement
from takeoff.geometry.contract import MAX_HISTORY

LinkDelta = Tuple[str, LinkedMeasurement]


@dataclass(frozen=True)
class HistoryEntry:
    """
    One page mutation. ``before`` and ``after`` are full collections; replay
    diffs them by markup id. ``linked_measurements`` holds the link payloads
    captured when markups left the page; ``unlinked_ids`` names the markups
    that had no link when a replay last removed them.
    """

    page: int
    before: Tuple[Any, ...]
    after: Tuple[Any, ...]
    description: str
    linked_measurements: Tuple[LinkDelta, ...] = ()
    unlinked_ids: Tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: float = field(default_factory=time.time)

    def with_links(self, links: Tuple[LinkDelta, ...], unlinked_ids: Tuple[str, ...] = ()) -> "HistoryEntry":
        return replace(self, linked_measurements=links, unlinked_ids=unlinked_ids)


HistoryStep = Tuple[HistoryEntry, ...]


class History:
    """Bounded past/future stacks. The oldest step is evicted first."""

    def __init__(self, max_history: int = MAX_HISTORY) -> None:
        if max_history < 1:
            raise ValueError("max_history must be >= 1")
        self.max_history = max_history
        self._past: Deque[HistoryStep] = deque(maxlen=max_history)
        self._future: List[HistoryStep] = []

    @property
    def past(self) -> Tuple[HistoryStep, ...]:
        return tuple(self._past)

    @property
    def future(self) -> Tuple[HistoryStep, ...]:
        return tuple(self._future)

    def can_undo(self) -> bool:
        return bool(self._past)

    def can_redo(self) -> bool:
        return bool(self._future)

    def push(self, step: HistoryStep | HistoryEntry) -> None:
        if isinstance(step, HistoryEntry):
            step = (step,)
        if not step:
            return
        self._past.append(tuple(step))
        self._future.clear()

    def undo(self) -> Optional[HistoryStep]:
        """Pop the newest step onto the future stack. None means nothing to undo."""
        if not self._past:
            return None
        step = self._past.pop()
        self._future.append(step)
        return step

    def redo(self) -> Optional[HistoryStep]:
        if not self._future:
            return None
        step = self._future.pop()
        self._past.append(step)
        return step

    def replace_top_future(self, step: HistoryStep) -> None:
        """Swap the step just undone for a copy carrying captured links."""
        if self._future:
            self._future[-1] = step

    def replace_top_past(self, step: HistoryStep) -> None:
        if self._past:
            self._past[-1] = step

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()


__all__ = ["History", "HistoryEntry", "HistoryStep", "LinkDelta"]
