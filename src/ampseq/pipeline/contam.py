# src/ampseq/pipeline/contam.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Protocol, Set

from ampseq.config.schema import Params
from ampseq.errors import EmptyVariantTableError
from ampseq.metadata.read import SampleMetadata
from ampseq.pipeline.table import AbundanceMatrix
from ampseq.pipeline.taxonomy import TaxonomyRecord, TaxonomyTable
from ampseq.pipeline.tracker import StageTracker
from ampseq.utils.logger import get_logger

LOG = get_logger("contam")


class ContaminantScorer(Protocol):
    def score(
        self,
        matrix: AbundanceMatrix,
        taxonomy: Mapping[str, TaxonomyRecord],
        metadata: SampleMetadata,
        method: str,
        threshold: float,
    ) -> Dict[str, bool]: ...


def prevalence_statistic(matrix: AbundanceMatrix, controls: Set[str]) -> Dict[str, float]:
    """
    p_ctrl / (p_ctrl + p_true) per variant, where p_x is the fraction of samples of
    class x containing the variant. 1.0 = seen only in controls, 0.0 = never in controls.
    """
    ctrl = [s for s in matrix.samples if s in controls]
    true = [s for s in matrix.samples if s not in controls]
    stats: Dict[str, float] = {}
    for v in matrix.variants:
        present = matrix.samples_containing(v)
        p_ctrl = sum(1 for s in ctrl if s in present) / len(ctrl) if ctrl else 0.0
        p_true = sum(1 for s in true if s in present) / len(true) if true else 0.0
        denom = p_ctrl + p_true
        stats[v] = p_ctrl / denom if denom else 0.0
    return stats


class PrevalenceScorer:
    def score(self, matrix, taxonomy, metadata, method, threshold) -> Dict[str, bool]:
        if method != "prevalence":
            raise ValueError(f"Unsupported contaminant method: {method}")
        controls = {s for s in matrix.samples if s in metadata.rows and metadata.is_negative(s)}
        stats = prevalence_statistic(matrix, controls)
        return {v: stat > threshold for v, stat in stats.items()}


@dataclass
class DecontamResult:
    matrix: AbundanceMatrix
    taxonomy: TaxonomyTable
    metadata: SampleMetadata
    contaminants: Set[str]
    controls_removed: Set[str]


class ContaminantFilter:
    def __init__(self, params: Params, scorer: Optional[ContaminantScorer] = None) -> None:
        self.method = params.contaminant_method
        self.threshold = params.contaminant_threshold
        self.scorer = scorer or PrevalenceScorer()

    def run(
        self,
        matrix: AbundanceMatrix,
        taxonomy: Mapping[str, TaxonomyRecord],
        metadata: SampleMetadata,
        tracker: Optional[StageTracker] = None,
    ) -> DecontamResult:
        controls = {s for s in matrix.samples if metadata.is_negative(s)}
        contaminants: Set[str] = set()
        if controls:
            calls = self.scorer.score(matrix, taxonomy, metadata, self.method, self.threshold)
            contaminants = {v for v in matrix.variants if calls.get(v, False)}
            LOG.info("Flagged %d contaminant variant(s) from %d control sample(s) (%s, threshold=%.2f)",
                     len(contaminants), len(controls), self.method, self.threshold)
        else:
            LOG.warning("No negative-control samples; contaminant scoring skipped.")

        pruned = matrix.drop_variants(contaminants).drop_samples(controls)
        orphans = set(pruned.variants) - set(pruned.drop_empty_variants().variants)
        if orphans:
            LOG.info("Retiring %d variant(s) found only in control samples", len(orphans))
            pruned = pruned.drop_variants(orphans)
        if pruned.n_variants == 0:
            raise EmptyVariantTableError("every variant was removed as a contaminant", stage="decontam")

        kept_tax = {v: taxonomy[v] for v in pruned.variants}
        kept_meta = metadata.subset(pruned.samples)
        if tracker is not None:
            tracker.record_many("decontam", pruned.sample_totals())
        return DecontamResult(
            matrix=pruned,
            taxonomy=kept_tax,
            metadata=kept_meta,
            contaminants=contaminants,
            controls_removed=controls,
        )
