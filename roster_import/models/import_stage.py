from __future__ import annotations

from enum import Enum

"""ImportStage enum: lifecycle of one import run.

State transitions:
    idle → parsing → mapping → validating → dispatching → aggregating → done

FAILED is reachable only from PARSING. Every later problem is recorded per
record or per chunk and the run still reaches DONE.
"""

__all__ = [
    "ImportStage",
]


class ImportStage(Enum):
    IDLE = "idle"
    PARSING = "parsing"
    MAPPING = "mapping"
    VALIDATING = "validating"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStage.DONE, ImportStage.FAILED)


_ORDER = [
    ImportStage.IDLE,
    ImportStage.PARSING,
    ImportStage.MAPPING,
    ImportStage.VALIDATING,
    ImportStage.DISPATCHING,
    ImportStage.AGGREGATING,
    ImportStage.DONE,
]


def can_transition(current: ImportStage, nxt: ImportStage) -> bool:
    """True when ``current -> nxt`` is a legal move of the run state machine."""
    if nxt is ImportStage.FAILED:
        return current is ImportStage.PARSING
    if current.is_terminal:
        return False
    return _ORDER.index(nxt) == _ORDER.index(current) + 1
