"""Plain records shared by the editing, history and search code."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


@dataclass(frozen=True, order=True)
class Pos:
    """A position in a buffer: zero-based line and character column."""

    line: int = 0
    col: int = 0


class OpKind(enum.IntEnum):
    """Kind of a primitive edit; the values are the on-disk codes."""

    INSERT = 0
    DELETE = 1


@dataclass(frozen=True)
class Operation:
    """A single insert or delete of ``data`` at byte offset ``pos``."""

    kind: OpKind
    pos: int
    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", OpKind(self.kind))
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))
        if self.pos < 0:
            raise ValueError(f"operation offset must be non-negative, got {self.pos}")


@dataclass
class OperationGroup:
    """Operations undone or redone together, with the cursor around them."""

    ops: list[Operation] = field(default_factory=list)
    cursor_before: Pos = field(default_factory=Pos)
    cursor_after: Pos = field(default_factory=Pos)