# src/ampseq/pipeline/tracker.py
from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Tuple

from ampseq.utils.logger import get_logger

LOG = get_logger("tracker")

PAIRED_STAGES: Tuple[str, ...] = (
    "input", "filtered", "denoised_f", "denoised_r", "merged", "nonchim", "tax_filtered", "decontam",
)
SINGLE_STAGES: Tuple[str, ...] = (
    "input", "filtered", "denoised_f", "nonchim", "tax_filtered", "decontam",
)


def stages_for(paired: bool) -> Tuple[str, ...]:
    return PAIRED_STAGES if paired else SINGLE_STAGES


class StageTracker:
    """
    Per-sample read counts after each stage.

    Purely diagnostic: a count that goes up between stages is logged, never raised.
    """

    def __init__(self, stages: Sequence[str], sample_ids: Sequence[str] = ()) -> None:
        self.stages: Tuple[str, ...] = tuple(stages)
        self._index = {name: i for i, name in enumerate(self.stages)}
        self._counts: Dict[str, Dict[str, int]] = {sid: {} for sid in sample_ids}

    def record(self, sample_id: str, stage_name: str, count: int) -> None:
        if stage_name not in self._index:
            raise ValueError(f"Unknown stage {stage_name!r}; expected one of {self.stages}")
        if count < 0:
            raise ValueError(f"Negative count for {sample_id} at {stage_name}: {count}")
        row = self._counts.setdefault(sample_id, {})
        if stage_name in row:
            LOG.warning("Overwriting %s count for %s (%d -> %d)", stage_name, sample_id, row[stage_name], count)

        prev = self._previous(row, stage_name)
        if prev is not None and count > prev[1]:
            LOG.warning(
                "Sample %s gained reads: %s=%d > %s=%d",
                sample_id, stage_name, count, prev[0], prev[1],
            )
        row[stage_name] = int(count)

    def record_many(self, stage_name: str, counts: Mapping[str, int]) -> None:
        for sid, n in counts.items():
            self.record(sid, stage_name, n)

    def _previous(self, row: Mapping[str, int], stage_name: str):
        for name in reversed(self.stages[: self._index[stage_name]]):
            if name in row:
                return name, row[name]
        return None

    def count(self, sample_id: str, stage_name: str) -> int:
        return self._counts.get(sample_id, {}).get(stage_name, 0)

    def finalize(self) -> List[Dict[str, object]]:
        """Dense table: one row per sample, one column per stage, gaps filled with 0."""
        table: List[Dict[str, object]] = []
        for sid, row in self._counts.items():
            out: Dict[str, object] = {"sample_id": sid}
            for name in self.stages:
                out[name] = row.get(name, 0)
            table.append(out)
        return table

    def write_tsv(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as fh:
            writer = csv.DictWriter(
                fh, fieldnames=["sample_id", *self.stages], delimiter="\t", lineterminator="\n",
            )
            writer.writeheader()
            writer.writerows(self.finalize())
        LOG.info("Stage tracking table written → %s", path)
        return path
