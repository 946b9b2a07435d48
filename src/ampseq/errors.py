# src/ampseq/errors.py
from __future__ import annotations

from typing import Optional


class AmpseqError(Exception):
    """Base class for every error the pipeline raises on purpose."""


# -------- Input errors (abort before any stage runs) -------------------------

class InputError(AmpseqError):
    pass


class SampleMismatchError(InputError):
    pass


class MetadataError(InputError):
    pass


# -------- Stage-collaborator errors ------------------------------------------

class StageError(AmpseqError):
    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"[{stage}] {message}")
        self.stage = stage


class FilterIOError(StageError):
    def __init__(self, message: str, sample_id: Optional[str] = None) -> None:
        super().__init__("filter", message)
        self.sample_id = sample_id


class EmptyVariantTableError(StageError):
    def __init__(self, message: str = "no sequence variants survived chimera removal",
                 stage: str = "chimera") -> None:
        super().__init__(stage, message)


class ClassificationError(StageError):
    def __init__(self, message: str, tier: int = 1) -> None:
        super().__init__(f"taxonomy/tier{tier}", message)
        self.tier = tier


# -------- Consistency errors (never silently repaired) -----------------------

class ConsistencyError(AmpseqError):
    pass


class TreeLeafMismatchError(ConsistencyError):
    def __init__(self, missing: set, extra: set) -> None:
        parts = []
        if missing:
            parts.append(f"variants without a leaf: {sorted(missing)[:5]}")
        if extra:
            parts.append(f"leaves without a variant: {sorted(extra)[:5]}")
        super().__init__("Tree leaves do not match variant identifiers; " + "; ".join(parts))
        self.missing = missing
        self.extra = extra
