# src/ampseq/pipeline/table.py
from __future__ import annotations

import csv
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from ampseq.config.schema import Params
from ampseq.errors import EmptyVariantTableError
from ampseq.pipeline.tracker import StageTracker
from ampseq.utils.logger import get_logger

LOG = get_logger("table")


class AbundanceMatrix:
    """
    Samples × variants → counts. Treated as a value: every operation returns a new matrix.

    Variant order is meaningful (it drives the final identifiers); sample rows may be all zero.
    """

    def __init__(
        self,
        samples: Sequence[str],
        variants: Sequence[str],
        counts: Mapping[str, Mapping[str, int]],
    ) -> None:
        self.samples: Tuple[str, ...] = tuple(samples)
        self.variants: Tuple[str, ...] = tuple(variants)
        known = set(self.variants)
        self._counts: Dict[str, Dict[str, int]] = {}
        for s in self.samples:
            row: Dict[str, int] = {}
            for v, n in counts.get(s, {}).items():
                if n < 0:
                    raise ValueError(f"Negative abundance for {s}: {n}")
                if n and v in known:
                    row[v] = int(n)
            self._counts[s] = row

    # -------- queries --------------------------------------------------------

    def get(self, sample: str, variant: str) -> int:
        return self._counts.get(sample, {}).get(variant, 0)

    def row(self, sample: str) -> Dict[str, int]:
        return dict(self._counts[sample])

    def sample_totals(self) -> Dict[str, int]:
        return {s: sum(row.values()) for s, row in self._counts.items()}

    def variant_totals(self) -> Dict[str, int]:
        totals = {v: 0 for v in self.variants}
        for row in self._counts.values():
            for v, n in row.items():
                totals[v] += n
        return totals

    def samples_containing(self, variant: str) -> Set[str]:
        return {s for s, row in self._counts.items() if row.get(variant, 0) > 0}

    @property
    def total(self) -> int:
        return sum(self.sample_totals().values())

    @property
    def n_variants(self) -> int:
        return len(self.variants)

    def __len__(self) -> int:
        return len(self.variants)

    # -------- transformations ------------------------------------------------

    def keep_variants(self, keep: Iterable[str]) -> "AbundanceMatrix":
        wanted = set(keep)
        return AbundanceMatrix(self.samples, [v for v in self.variants if v in wanted], self._counts)

    def drop_variants(self, drop: Iterable[str]) -> "AbundanceMatrix":
        gone = set(drop)
        return AbundanceMatrix(self.samples, [v for v in self.variants if v not in gone], self._counts)

    def drop_samples(self, drop: Iterable[str]) -> "AbundanceMatrix":
        gone = set(drop)
        return AbundanceMatrix([s for s in self.samples if s not in gone], self.variants, self._counts)

    def drop_empty_variants(self) -> "AbundanceMatrix":
        totals = self.variant_totals()
        return self.keep_variants(v for v in self.variants if totals[v] > 0)

    def rename_variants(self, mapping: Mapping[str, str]) -> "AbundanceMatrix":
        missing = [v for v in self.variants if v not in mapping]
        if missing:
            raise KeyError(f"{len(missing)} variant(s) have no new identifier")
        counts = {s: {mapping[v]: n for v, n in row.items()} for s, row in self._counts.items()}
        return AbundanceMatrix(self.samples, [mapping[v] for v in self.variants], counts)

    def write_tsv(self, path: Path, *, id_header: str = "#OTU ID") -> Path:
        """Variants as rows, samples as columns."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh, delimiter="\t", lineterminator="\n")
            writer.writerow([id_header, *self.samples])
            for v in self.variants:
                writer.writerow([v, *(self.get(s, v) for s in self.samples)])
        return path


# ---------------------------
# Chimeras
# ---------------------------

class ChimeraDetector(Protocol):
    def detect(self, matrix: AbundanceMatrix) -> Set[str]: ...


def _common_prefix(a: str, b: str) -> int:
    n = 0
    for x, y in zip(a, b):
        if x != y:
            break
        n += 1
    return n


def _common_suffix(a: str, b: str) -> int:
    return _common_prefix(a[::-1], b[::-1])


def is_bimera(seq: str, parents: Sequence[str]) -> bool:
    """True if *seq* is a prefix of one parent joined to a suffix of a different parent."""
    size = len(seq)
    left = [_common_prefix(seq, p) for p in parents]
    right = [_common_suffix(seq, p) for p in parents]
    for i, lp in enumerate(left):
        if not 0 < lp < size:
            continue
        for j, rs in enumerate(right):
            if i != j and 0 < rs < size and lp + rs >= size:
                return True
    return False


class ConsensusChimeraDetector:
    """Per-sample bimera calls, combined into a consensus across the samples holding each variant."""

    def __init__(self, min_fold_parent: float = 1.0, min_sample_fraction: float = 0.9) -> None:
        self.min_fold_parent = min_fold_parent
        self.min_sample_fraction = min_sample_fraction

    def detect(self, matrix: AbundanceMatrix) -> Set[str]:
        flagged: Set[str] = set()
        for v in matrix.variants:
            present = flags = 0
            for s in matrix.samples:
                n = matrix.get(s, v)
                if not n:
                    continue
                present += 1
                row = matrix.row(s)
                # parents must be strictly more abundant than the candidate
                parents = [p for p, m in row.items() if p != v and m > self.min_fold_parent * n]
                if len(parents) >= 2 and is_bimera(v, parents):
                    flags += 1
            if present and flags / present >= self.min_sample_fraction:
                flagged.add(v)
        return flagged


class VariantTable:
    def __init__(self, params: Params, detector: Optional[ChimeraDetector] = None) -> None:
        self.warn_fraction = params.chimera_warn_fraction
        self.detector = detector or ConsensusChimeraDetector(
            min_fold_parent=params.min_fold_parent,
            min_sample_fraction=params.min_sample_fraction,
        )

    @staticmethod
    def build(merged_per_sample: Mapping[str, Mapping[str, int]]) -> AbundanceMatrix:
        """One column per distinct sequence, ordered by descending total abundance (ties: first seen)."""
        totals: Counter = Counter()
        first_seen: Dict[str, int] = {}
        for row in merged_per_sample.values():
            for seq, n in row.items():
                first_seen.setdefault(seq, len(first_seen))
                totals[seq] += n
        variants = sorted((v for v in totals if totals[v] > 0), key=lambda v: (-totals[v], first_seen[v]))
        matrix = AbundanceMatrix(list(merged_per_sample), variants, merged_per_sample)
        LOG.info("Sequence table: %d sample(s) × %d variant(s)", len(matrix.samples), matrix.n_variants)
        return matrix

    def remove_chimeras(self, matrix: AbundanceMatrix, tracker: Optional[StageTracker] = None
                        ) -> Tuple[AbundanceMatrix, float]:
        before = matrix.total
        chimeras = self.detector.detect(matrix)
        pruned = matrix.drop_variants(chimeras)
        retained = pruned.total / before if before else 0.0
        LOG.info("Removed %d chimeric variant(s) of %d; %.1f%% of abundance retained",
                 len(chimeras), matrix.n_variants, 100.0 * retained)
        if before and 1.0 - retained > self.warn_fraction:
            LOG.warning("Chimeras account for %.1f%% of reads; check primer trimming.", 100.0 * (1.0 - retained))
        if tracker is not None:
            tracker.record_many("nonchim", pruned.sample_totals())
        if pruned.n_variants == 0:
            raise EmptyVariantTableError()
        return pruned, retained


def length_distribution(matrix: AbundanceMatrix) -> Dict[int, int]:
    """Number of variants per sequence length."""
    return dict(sorted(Counter(len(v) for v in matrix.variants).items()))


def sequence_lengths_summary(matrix: AbundanceMatrix) -> List[str]:
    return [f"{length}bp:{n}" for length, n in length_distribution(matrix).items()]
