# src/ampseq/pipeline/filtering.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol, Set, Tuple

from Bio import SeqIO
from Bio.Seq import reverse_complement

from ampseq.config.schema import DomainProfile, Params
from ampseq.errors import FilterIOError
from ampseq.pipeline.fastq import FastqRecord, iter_fastq, open_text, phred_scores, write_fastq
from ampseq.pipeline.tracker import StageTracker
from ampseq.utils.logger import get_logger
from ampseq.utils.samples import Sample, SampleRegistry

LOG = get_logger("filter")


@dataclass(frozen=True)
class FilterParams:
    trim_left: Tuple[int, int]
    trunc_len: Tuple[int, int]
    max_ee: Tuple[float, float]
    max_n: int = 0
    trunc_q: int = 2
    min_len: int = 20
    rm_phix: bool = True

    @classmethod
    def from_params(cls, profile: DomainProfile, params: Params) -> "FilterParams":
        return cls(
            trim_left=(profile.trim_left_f, profile.trim_left_r),
            trunc_len=(profile.trunc_len_f, profile.trunc_len_r),
            max_ee=(params.max_ee_f, params.max_ee_r),
            max_n=params.max_n,
            trunc_q=params.trunc_q,
            min_len=params.min_len,
            rm_phix=params.rm_phix,
        )


@dataclass(frozen=True)
class FilterCounts:
    reads_in: int
    reads_out: int


class ReadFilter(Protocol):
    def filter(
        self,
        sample: Sample,
        out_forward: Path,
        out_reverse: Optional[Path],
        params: FilterParams,
    ) -> FilterCounts: ...


class PhixScreen:
    """Flags reads sharing at least *min_matches* k-mers with the phiX genome (either strand)."""

    def __init__(self, reference: Path, word_size: int = 16, min_matches: int = 2) -> None:
        self.word_size = word_size
        self.min_matches = min_matches
        self._words: Set[str] = set()
        for rec in SeqIO.parse(str(reference), "fasta"):
            genome = str(rec.seq).upper()
            for strand in (genome, reverse_complement(genome)):
                self._words.update(strand[i:i + word_size] for i in range(len(strand) - word_size + 1))

    def __call__(self, seq: str) -> bool:
        hits = 0
        for i in range(len(seq) - self.word_size + 1):
            if seq[i:i + self.word_size] in self._words:
                hits += 1
                if hits >= self.min_matches:
                    return True
        return False


def _trim_read(record: FastqRecord, trim_left: int, trunc_len: int, params: FilterParams) -> Optional[FastqRecord]:
    """Apply truncQ → truncLen → trimLeft, then the length/N/expected-error checks."""
    title, seq, qual = record
    scores = phred_scores(qual)

    cut = next((i for i, q in enumerate(scores) if q <= params.trunc_q), len(seq))
    seq, qual, scores = seq[:cut], qual[:cut], scores[:cut]

    if trunc_len > 0:
        if len(seq) < trunc_len:
            return None
        seq, qual, scores = seq[:trunc_len], qual[:trunc_len], scores[:trunc_len]

    seq, qual, scores = seq[trim_left:], qual[trim_left:], scores[trim_left:]
    if len(seq) < max(params.min_len, 1):
        return None
    if seq.upper().count("N") > params.max_n:
        return None
    return title, seq, qual


def expected_errors(qual: str) -> float:
    return sum(10 ** (-q / 10) for q in phred_scores(qual))


class FastqFilter:
    """In-process filterAndTrim: quality truncation, fixed-length truncation, primer trim, maxN, maxEE."""

    def __init__(self, phix_reference: Optional[Path] = None) -> None:
        self._phix = PhixScreen(phix_reference) if phix_reference else None
        self._warned_phix = False

    def _is_phix(self, seq: str, params: FilterParams) -> bool:
        if not params.rm_phix:
            return False
        if self._phix is None:
            if not self._warned_phix:
                LOG.warning("phiX removal requested but no phiX reference configured; skipping the screen.")
                self._warned_phix = True
            return False
        return self._phix(seq)

    def _passes(self, record: FastqRecord, side: int, params: FilterParams) -> Optional[FastqRecord]:
        out = _trim_read(record, params.trim_left[side], params.trunc_len[side], params)
        if out is None or expected_errors(out[2]) > params.max_ee[side]:
            return None
        if self._is_phix(out[1], params):
            return None
        return out

    def filter(self, sample, out_forward, out_reverse, params) -> FilterCounts:
        out_forward.parent.mkdir(parents=True, exist_ok=True)
        reads_in = reads_out = 0
        if sample.reverse is None or out_reverse is None:
            with open_text(out_forward, "wt") as fo:
                for rec in iter_fastq(sample.forward):
                    reads_in += 1
                    kept = self._passes(rec, 0, params)
                    if kept is not None:
                        write_fastq(fo, kept)
                        reads_out += 1
            return FilterCounts(reads_in, reads_out)

        with open_text(out_forward, "wt") as fo, open_text(out_reverse, "wt") as ro:
            for rec_f, rec_r in _paired(iter_fastq(sample.forward), iter_fastq(sample.reverse), sample):
                reads_in += 1
                kept_f = self._passes(rec_f, 0, params)
                kept_r = self._passes(rec_r, 1, params) if kept_f is not None else None
                if kept_f is None or kept_r is None:
                    continue
                write_fastq(fo, kept_f)
                write_fastq(ro, kept_r)
                reads_out += 1
        return FilterCounts(reads_in, reads_out)


def _paired(fwd: Iterator[FastqRecord], rev: Iterator[FastqRecord], sample: Sample):
    sentinel = object()
    while True:
        f = next(fwd, sentinel)
        r = next(rev, sentinel)
        if f is sentinel and r is sentinel:
            return
        if f is sentinel or r is sentinel:
            raise ValueError(f"forward and reverse files of {sample.sample_id} hold different read counts")
        yield f, r


class FilterStage:
    """Quality filtering/trimming with the primer profile of the configured domain."""

    def __init__(self, params: Params, work_dir: Path, read_filter: Optional[ReadFilter] = None) -> None:
        self.profile = params.profile()
        self.params = FilterParams.from_params(self.profile, params)
        self.out_dir = work_dir / "filtered"
        self.read_filter = read_filter or FastqFilter(params.phix_fasta)
        LOG.info(
            "Filter profile %s: trimLeft=%s truncLen=%s maxEE=%s truncQ=%d",
            self.profile.domain, self.params.trim_left, self.params.trunc_len,
            self.params.max_ee, self.params.trunc_q,
        )

    def run(self, registry: SampleRegistry, tracker: StageTracker) -> Dict[str, int]:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        filtered: Dict[str, int] = {}
        for sample in registry:
            out_f = self.out_dir / f"{sample.sample_id}_F_filt.fastq.gz"
            out_r = self.out_dir / f"{sample.sample_id}_R_filt.fastq.gz" if sample.paired else None
            try:
                counts = self.read_filter.filter(sample, out_f, out_r, self.params)
            except (OSError, ValueError, EOFError) as e:
                raise FilterIOError(f"cannot read input for sample {sample.sample_id}: {e}",
                                    sample_id=sample.sample_id) from e
            sample.filtered_forward = out_f
            sample.filtered_reverse = out_r
            tracker.record(sample.sample_id, "input", counts.reads_in)
            tracker.record(sample.sample_id, "filtered", counts.reads_out)
            filtered[sample.sample_id] = counts.reads_out
            if counts.reads_out == 0:
                LOG.warning("Sample %s has no reads after filtering; kept with count 0.", sample.sample_id)
            else:
                LOG.debug("%s: %d → %d reads", sample.sample_id, counts.reads_in, counts.reads_out)
        LOG.info("Filtering done: %d/%d reads kept",
                 sum(filtered.values()), sum(tracker.count(s, "input") for s in filtered))
        return filtered
