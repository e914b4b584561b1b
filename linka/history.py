# history.py
"""
Undo/redo over node positions.

Snapshots hold deep copies of positions only. Saves arriving within the
debounce window of the previous accepted save are dropped, so a drag does not
record every intermediate pixel.
"""

import time
from typing import Callable, Dict, List, Sequence

from linka.models.graph import GraphNode, Position

PositionSnapshot = Dict[str, Position]

MAX_HISTORY_SIZE = 50
DEBOUNCE_MS = 500


def snapshot_of(nodes: Sequence[GraphNode]) -> PositionSnapshot:
    return {node.id: node.position.model_copy() for node in nodes}


def apply_snapshot(nodes: Sequence[GraphNode], snapshot: PositionSnapshot) -> List[GraphNode]:
    """Nodes with positions restored from the snapshot; nodes missing from it keep theirs."""
    return [
        node.model_copy(update={"position": snapshot[node.id].model_copy()}) if node.id in snapshot else node
        for node in nodes
    ]


class UndoRedoHistory:
    def __init__(
        self,
        max_size: int = MAX_HISTORY_SIZE,
        debounce_ms: int = DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.debounce = debounce_ms / 1000.0
        self.clock = clock
        self._stack: List[PositionSnapshot] = []
        self._index = -1
        self._last_save: float | None = None

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._stack) - 1

    def __len__(self) -> int:
        return len(self._stack)

    def save_state(self, nodes: Sequence[GraphNode]) -> bool:
        """Record a snapshot. Returns False when the call was debounced away."""
        now = self.clock()
        if self._last_save is not None and now - self._last_save < self.debounce:
            return False
        self._last_save = now

        # Linear history: saving after an undo discards the redo branch
        del self._stack[self._index + 1:]
        self._stack.append(snapshot_of(nodes))

        if len(self._stack) > self.max_size:
            self._stack.pop(0)
        self._index = len(self._stack) - 1
        return True

    def undo(self) -> PositionSnapshot | None:
        if not self.can_undo:
            return None
        self._index -= 1
        return self._copy(self._stack[self._index])

    def redo(self) -> PositionSnapshot | None:
        if not self.can_redo:
            return None
        self._index += 1
        return self._copy(self._stack[self._index])

    def clear(self) -> None:
        self._stack.clear()
        self._index = -1
        self._last_save = None

    @staticmethod
    def _copy(snapshot: PositionSnapshot) -> PositionSnapshot:
        return {table_id: position.model_copy() for table_id, position in snapshot.items()}
