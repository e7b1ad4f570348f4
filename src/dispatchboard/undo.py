from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Iterator

RestoreFn = Callable[[], Awaitable[None]]


class UndoKind(str, Enum):
    ASSIGN = "assign"
    UNASSIGN = "unassign"
    RESCHEDULE = "reschedule"


@dataclass(slots=True)
class UndoAction:
    """One entry of the undo log.

    ``restore`` is set for reversible actions only; informational entries
    (deletions) stay in the log for history but cannot be replayed backwards.
    """

    kind: UndoKind
    description: str
    timestamp: float
    dispatch_id: str | None = None
    job_id: str | None = None
    technician_id: str | None = None
    service_order_id: str | None = None
    dispatch_number: str | None = None
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None
    original_start: datetime | None = None
    original_end: datetime | None = None
    restore: RestoreFn | None = field(default=None, repr=False, compare=False)

    @property
    def reversible(self) -> bool:
        return self.restore is not None


class UndoLog:
    """Fixed-capacity stack: pushing past capacity evicts the oldest entry, popping returns the newest."""

    def __init__(self, capacity: int = 5) -> None:
        if capacity < 1:
            raise ValueError("undo capacity must be >= 1")
        self._actions: deque[UndoAction] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._actions.maxlen or 0

    def push(self, action: UndoAction) -> None:
        self._actions.append(action)

    def peek(self) -> UndoAction | None:
        return self._actions[-1] if self._actions else None

    def pop(self) -> UndoAction | None:
        return self._actions.pop() if self._actions else None

    def clear(self) -> None:
        self._actions.clear()

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[UndoAction]:
        return iter(list(self._actions))
