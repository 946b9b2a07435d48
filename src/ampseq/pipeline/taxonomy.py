# src/ampseq/pipeline/taxonomy.py
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from ampseq.config.schema import Params
from ampseq.errors import ClassificationError, EmptyVariantTableError
from ampseq.pipeline.table import AbundanceMatrix
from ampseq.pipeline.tracker import StageTracker
from ampseq.utils.logger import get_logger

LOG = get_logger("taxonomy")

UNCLASSIFIED_PREFIX = "Unclassified_"

Ranks = Tuple[Optional[str], ...]


@dataclass(frozen=True)
class TaxonomyRecord:
    """Rank labels from coarsest to finest; None means unresolved."""
    ranks: Ranks

    @classmethod
    def of(cls, labels: Sequence[Optional[str]], n_ranks: int) -> "TaxonomyRecord":
        cleaned = [(lab.strip() or None) if isinstance(lab, str) else None for lab in labels[:n_ranks]]
        cleaned += [None] * (n_ranks - len(cleaned))
        return cls(tuple(cleaned))

    @classmethod
    def unresolved(cls, n_ranks: int) -> "TaxonomyRecord":
        return cls((None,) * n_ranks)

    @property
    def domain(self) -> Optional[str]:
        return self.ranks[0]

    def is_resolved(self, index: int) -> bool:
        return self.ranks[index] is not None


TaxonomyTable = Dict[str, TaxonomyRecord]


class Classifier(Protocol):
    def classify(self, sequences: Sequence[str]) -> Mapping[str, Sequence[Optional[str]]]: ...


# ---------------------------
# Pure table operations
# ---------------------------

def merge_tiers(tier1: Mapping[str, TaxonomyRecord], tier2: Mapping[str, TaxonomyRecord],
                target_domain: str) -> TaxonomyTable:
    """
    Tier-2 replaces Tier-1 for a variant only when Tier-2 places it in *target_domain*.
    The result has exactly Tier-1's keys.
    """
    merged: TaxonomyTable = {}
    for variant, record in tier1.items():
        replacement = tier2.get(variant)
        if replacement is not None and replacement.domain == target_domain:
            merged[variant] = replacement
        else:
            merged[variant] = record
    stray = set(tier2) - set(tier1)
    if stray:
        LOG.debug("Ignoring %d tier-2 record(s) for unknown variants", len(stray))
    return merged


def gap_fill(record: TaxonomyRecord, root_label: str = "Unclassified") -> TaxonomyRecord:
    """Unresolved ranks take 'Unclassified_<nearest coarser resolved label>'."""
    if record.domain is None:
        return TaxonomyRecord((UNCLASSIFIED_PREFIX + root_label,) * len(record.ranks))
    filled: List[str] = []
    nearest = record.domain
    for label in record.ranks:
        if label is None:
            filled.append(UNCLASSIFIED_PREFIX + nearest)
        else:
            filled.append(label)
            nearest = label
    return TaxonomyRecord(tuple(filled))


def tier2_candidates(table: Mapping[str, TaxonomyRecord], trigger_index: int) -> List[str]:
    return [v for v, rec in table.items() if rec.is_resolved(0) and not rec.is_resolved(trigger_index)]


def write_taxonomy_tsv(table: Mapping[str, TaxonomyRecord], ranks: Sequence[str], path: Path,
                       *, order: Optional[Sequence[str]] = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh, delimiter="\t", lineterminator="\n")
        writer.writerow(["Feature ID", *[r.capitalize() for r in ranks]])
        for v in (order if order is not None else table):
            writer.writerow([v, *("" if lab is None else lab for lab in table[v].ranks)])
    return path


# ---------------------------
# Resolver
# ---------------------------

class TaxonomyResolver:
    """Two-tier classification cascade, gap-filling and the target-domain filter."""

    def __init__(self, params: Params, primary: Classifier, secondary: Optional[Classifier] = None) -> None:
        self.ranks = tuple(params.ranks)
        self.trigger_index = self.ranks.index(params.tier2_trigger_rank)
        self.target = params.profile().kingdom_label
        self.root_label = params.unresolved_root_label
        self.primary = primary
        self.secondary = secondary

    def _records(self, calls: Mapping[str, Sequence[Optional[str]]], sequences: Sequence[str]) -> TaxonomyTable:
        n = len(self.ranks)
        table: TaxonomyTable = {}
        missing = 0
        for seq in sequences:
            labels = calls.get(seq)
            if labels is None:
                missing += 1
                table[seq] = TaxonomyRecord.unresolved(n)
            else:
                table[seq] = TaxonomyRecord.of(labels, n)
        if missing:
            LOG.warning("Classifier returned no call for %d sequence(s); marked unresolved.", missing)
        return table

    def classify(self, sequences: Sequence[str]) -> TaxonomyTable:
        """Tier 1 over every sequence."""
        try:
            calls = self.primary.classify(list(sequences))
        except ClassificationError:
            raise
        except Exception as e:
            raise ClassificationError(f"primary classifier failed: {e}", tier=1) from e
        table = self._records(calls, sequences)
        LOG.info("Tier 1: %d/%d variant(s) resolved at %s",
                 sum(1 for r in table.values() if r.is_resolved(self.trigger_index)),
                 len(table), self.ranks[self.trigger_index])
        return table

    def refine(self, table: Mapping[str, TaxonomyRecord]) -> TaxonomyTable:
        """Tier 2 for domain-resolved variants missing the trigger rank, merge, then gap-fill."""
        candidates = tier2_candidates(table, self.trigger_index)
        tier2: TaxonomyTable = {}
        if candidates and self.secondary is not None:
            try:
                calls = self.secondary.classify(candidates)
            except ClassificationError:
                raise
            except Exception as e:
                raise ClassificationError(f"secondary classifier failed: {e}", tier=2) from e
            tier2 = self._records(calls, candidates)
            LOG.info("Tier 2: re-classified %d variant(s) unresolved at %s",
                     len(candidates), self.ranks[self.trigger_index])
        elif candidates:
            LOG.info("No secondary classifier configured; %d variant(s) keep their tier-1 call.", len(candidates))

        merged = merge_tiers(table, tier2, self.target)
        replaced = sum(1 for v in tier2 if merged[v] is tier2[v])
        if tier2:
            LOG.info("Tier 2 replaced %d of %d record(s)", replaced, len(tier2))
        return {v: gap_fill(rec, self.root_label) for v, rec in merged.items()}

    def filter_domain(
        self,
        matrix: AbundanceMatrix,
        taxonomy: Mapping[str, TaxonomyRecord],
        tracker: Optional[StageTracker] = None,
    ) -> Tuple[AbundanceMatrix, TaxonomyTable]:
        keep = [v for v in matrix.variants if taxonomy[v].domain == self.target]
        pruned = matrix.keep_variants(keep)
        kept_tax = {v: taxonomy[v] for v in pruned.variants}
        LOG.info("Kept %d/%d variant(s) classified as %s", pruned.n_variants, matrix.n_variants, self.target)
        if tracker is not None:
            tracker.record_many("tax_filtered", pruned.sample_totals())
        if pruned.n_variants == 0:
            raise EmptyVariantTableError(f"no variants classified as {self.target}", stage="taxonomy")
        return pruned, kept_tax

    def run(self, matrix: AbundanceMatrix, tracker: Optional[StageTracker] = None
            ) -> Tuple[AbundanceMatrix, TaxonomyTable]:
        taxonomy = self.refine(self.classify(matrix.variants))
        return self.filter_domain(matrix, taxonomy, tracker)
