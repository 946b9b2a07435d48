# src/ampseq/pipeline/denoise.py
from __future__ import annotations

import random
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from Bio.Seq import reverse_complement

from ampseq.config.schema import Params
from ampseq.pipeline.fastq import iter_fastq, phred_scores
from ampseq.pipeline.tracker import StageTracker
from ampseq.utils.logger import get_logger
from ampseq.utils.samples import SampleRegistry

LOG = get_logger("denoise")


@dataclass(frozen=True)
class ErrorModel:
    orientation: str
    n_reads: int
    n_bases: int
    error_rate: float           # mean per-base substitution probability


@dataclass
class DenoisedSample:
    sample_id: str
    abundances: Dict[str, int] = field(default_factory=dict)
    # denoised sequence each input read was assigned to (None = discarded)
    assignments: List[Optional[str]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return sum(self.abundances.values())


class Denoiser(Protocol):
    def learn_errors(self, files: Sequence[Path], orientation: str, rng: random.Random) -> ErrorModel: ...

    def denoise(self, sample_id: str, path: Optional[Path], model: ErrorModel) -> DenoisedSample: ...


def _hamming_one(a: str, b: str) -> bool:
    if len(a) != len(b):
        return False
    diff = 0
    for x, y in zip(a, b):
        if x != y:
            diff += 1
            if diff > 1:
                return False
    return diff == 1


class DereplicatingDenoiser:
    """
    Dereplicate reads, fold single-substitution neighbours into their parent when the
    error model explains their abundance, then drop uniques below min_abundance.
    """

    def __init__(self, n_bases_learn: int = 100_000_000, min_abundance: int = 2, omega_fold: float = 3.0) -> None:
        self.n_bases_learn = n_bases_learn
        self.min_abundance = min_abundance
        self.omega_fold = omega_fold

    def learn_errors(self, files, orientation, rng) -> ErrorModel:
        order = [p for p in files if p is not None and p.exists()]
        rng.shuffle(order)
        n_reads = n_bases = 0
        total_err = 0.0
        for path in order:
            for _, _, qual in iter_fastq(path):
                n_reads += 1
                n_bases += len(qual)
                total_err += sum(10 ** (-q / 10) for q in phred_scores(qual))
            if n_bases >= self.n_bases_learn:
                break
        rate = total_err / n_bases if n_bases else 0.0
        LOG.info("Learned %s error rate %.2e from %d reads (%d bases, %d file(s))",
                 orientation, rate, n_reads, n_bases, len(order))
        return ErrorModel(orientation=orientation, n_reads=n_reads, n_bases=n_bases, error_rate=rate)

    def _explained(self, child: int, parent: int, length: int, rate: float) -> bool:
        expected = parent * (rate / 3.0) * (1.0 - rate) ** max(length - 1, 0)
        return child <= self.omega_fold * expected

    def denoise(self, sample_id, path, model) -> DenoisedSample:
        if path is None or not path.exists():
            return DenoisedSample(sample_id)
        reads = [seq for _, seq, _ in iter_fastq(path)]
        derep = Counter(reads)
        first_seen = {}
        for i, s in enumerate(reads):
            first_seen.setdefault(s, i)
        uniques = sorted(derep, key=lambda s: (-derep[s], first_seen[s]))

        parent_of: Dict[str, str] = {}
        centers: List[str] = []
        for s in uniques:
            home = next(
                (c for c in centers
                 if _hamming_one(s, c) and self._explained(derep[s], derep[c], len(s), model.error_rate)),
                None,
            )
            if home is None:
                centers.append(s)
                parent_of[s] = s
            else:
                parent_of[s] = home

        totals: Counter = Counter()
        for s, n in derep.items():
            totals[parent_of[s]] += n
        kept = {c: totals[c] for c in centers if totals[c] >= self.min_abundance}
        assignments = [parent_of[s] if parent_of[s] in kept else None for s in reads]
        return DenoisedSample(sample_id, abundances=kept, assignments=assignments)


@dataclass
class DenoiseResult:
    forward: Dict[str, DenoisedSample]
    reverse: Optional[Dict[str, DenoisedSample]] = None
    models: Dict[str, ErrorModel] = field(default_factory=dict)


class DenoiseStage:
    def __init__(self, params: Params, denoiser: Optional[Denoiser] = None) -> None:
        self.seed = params.seed
        self.denoiser = denoiser or DereplicatingDenoiser(
            n_bases_learn=params.n_bases_learn,
            min_abundance=params.min_abundance,
            omega_fold=params.omega_fold,
        )

    def _orientation(self, registry: SampleRegistry, attr: str, label: str, stage: str,
                     rng: random.Random, tracker: StageTracker):
        files = [getattr(s, attr) for s in registry]
        model = self.denoiser.learn_errors(files, label, rng)
        out: Dict[str, DenoisedSample] = {}
        for sample in registry:
            ds = self.denoiser.denoise(sample.sample_id, getattr(sample, attr), model)
            out[sample.sample_id] = ds
            tracker.record(sample.sample_id, stage, ds.count)
        return model, out

    def run(self, registry: SampleRegistry, tracker: StageTracker) -> DenoiseResult:
        rng = random.Random(self.seed)
        model_f, forward = self._orientation(registry, "filtered_forward", "forward", "denoised_f", rng, tracker)
        result = DenoiseResult(forward=forward, models={"forward": model_f})
        if registry.paired:
            model_r, reverse = self._orientation(registry, "filtered_reverse", "reverse", "denoised_r", rng, tracker)
            result.reverse = reverse
            result.models["reverse"] = model_r
        LOG.info("Denoising done: %d forward sequence variant(s) across %d sample(s)",
                 len({s for ds in forward.values() for s in ds.abundances}), len(forward))
        return result


# ---------------------------
# Merging
# ---------------------------

def merge_pair(forward: str, reverse: str, min_overlap: int = 12, max_mismatch: int = 0) -> Optional[str]:
    """Join forward with the reverse complement of reverse on their longest acceptable overlap."""
    rc = reverse_complement(reverse)
    for k in range(min(len(forward), len(rc)), min_overlap - 1, -1):
        left, right = forward[len(forward) - k:], rc[:k]
        mismatches = sum(1 for a, b in zip(left, right) if a != b)
        if mismatches <= max_mismatch:
            return forward + rc[k:]
    return None


class PairMerger(Protocol):
    def merge(self, forward: DenoisedSample, reverse: DenoisedSample,
              min_overlap: int, max_mismatch: int) -> Dict[str, int]: ...


class ExactOverlapMerger:
    def merge(self, forward, reverse, min_overlap, max_mismatch) -> Dict[str, int]:
        pairs = Counter(
            (f, r) for f, r in zip(forward.assignments, reverse.assignments)
            if f is not None and r is not None
        )
        merged: Counter = Counter()
        for (f, r), n in pairs.most_common():
            seq = merge_pair(f, r, min_overlap, max_mismatch)
            if seq is not None:
                merged[seq] += n
        return dict(merged.most_common())


@dataclass
class MergeResult:
    merged: Dict[str, Dict[str, int]]
    flagged: List[str] = field(default_factory=list)


class MergeStage:
    def __init__(self, params: Params, merger: Optional[PairMerger] = None) -> None:
        self.min_overlap = params.min_overlap
        self.max_mismatch = params.max_mismatch
        self.min_fraction = params.min_merge_fraction
        self.merger = merger or ExactOverlapMerger()

    def run(self, denoised: DenoiseResult, tracker: StageTracker) -> MergeResult:
        if denoised.reverse is None:
            LOG.info("Single-end run: skipping pair merging.")
            return MergeResult({sid: dict(ds.abundances) for sid, ds in denoised.forward.items()})

        result = MergeResult({})
        for sid, fwd in denoised.forward.items():
            merged = self.merger.merge(fwd, denoised.reverse[sid], self.min_overlap, self.max_mismatch)
            n = sum(merged.values())
            tracker.record(sid, "merged", n)
            result.merged[sid] = merged
            if fwd.count and n / fwd.count < self.min_fraction:
                result.flagged.append(sid)
                LOG.warning("Sample %s: only %.1f%% of denoised reads merged; flagged for review.",
                            sid, 100.0 * n / fwd.count)
        LOG.info("Merging done (minOverlap=%d, maxMismatch=%d); %d sample(s) flagged",
                 self.min_overlap, self.max_mismatch, len(result.flagged))
        return result
