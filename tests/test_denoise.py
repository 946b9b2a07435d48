"""Tests for denoising and pair merging."""

import random

import pytest
from Bio.Seq import reverse_complement

from ampseq.config.schema import Params
from ampseq.pipeline.denoise import (
    DenoisedSample,
    DenoiseResult,
    DereplicatingDenoiser,
    ErrorModel,
    ExactOverlapMerger,
    MergeStage,
    merge_pair,
)
from ampseq.pipeline.tracker import StageTracker, stages_for

from helpers import generate_dna_sequence, write_fastq

AMPLICON = generate_dna_sequence("amplicon", 120)


def _mutate(seq, pos):
    base = "A" if seq[pos] != "A" else "C"
    return seq[:pos] + base + seq[pos + 1:]


class TestDereplicatingDenoiser:

    def test_error_model_from_qualities(self, tmp_path):
        a = write_fastq(tmp_path / "a.fastq", [AMPLICON] * 2, "+")   # Q10
        b = write_fastq(tmp_path / "b.fastq", [AMPLICON] * 2, "+")
        model = DereplicatingDenoiser().learn_errors([a, b], "forward", random.Random(1))
        assert model.n_reads == 4
        assert model.error_rate == pytest.approx(0.1)

    def test_learning_order_does_not_change_the_model(self, tmp_path):
        files = [write_fastq(tmp_path / f"{i}.fastq", [AMPLICON] * (i + 1), "I") for i in range(4)]
        d = DereplicatingDenoiser()
        m1 = d.learn_errors(files, "forward", random.Random(1))
        m2 = d.learn_errors(files, "forward", random.Random(99))
        assert m1.error_rate == pytest.approx(m2.error_rate)
        assert m1.n_reads == m2.n_reads == 10

    def test_dereplication_and_min_abundance(self, tmp_path):
        other = generate_dna_sequence("other", 120)
        rare = generate_dna_sequence("rare", 120)
        path = write_fastq(tmp_path / "s.fastq", [AMPLICON] * 5 + [other] * 3 + [rare])
        model = ErrorModel("forward", 0, 0, 0.0)
        ds = DereplicatingDenoiser(min_abundance=2).denoise("S", path, model)
        assert ds.abundances == {AMPLICON: 5, other: 3}
        assert list(ds.abundances) == [AMPLICON, other]
        assert ds.count == 8
        assert ds.assignments[-1] is None
        assert len(ds.assignments) == 9

    def test_error_neighbours_are_absorbed(self, tmp_path):
        noisy = _mutate(AMPLICON, 10)
        path = write_fastq(tmp_path / "s.fastq", [AMPLICON] * 1000 + [noisy] * 2)
        # 1000 * (0.008 / 3) * 0.992**119 ≈ 1.03 expected copies; tolerated up to 3x
        model = ErrorModel("forward", 0, 0, 0.008)
        ds = DereplicatingDenoiser(min_abundance=1).denoise("S", path, model)
        assert ds.abundances == {AMPLICON: 1002}
        assert set(ds.assignments) == {AMPLICON}

    def test_well_supported_neighbours_survive(self, tmp_path):
        variant = _mutate(AMPLICON, 10)
        path = write_fastq(tmp_path / "s.fastq", [AMPLICON] * 200 + [variant] * 50)
        model = ErrorModel("forward", 0, 0, 0.001)
        ds = DereplicatingDenoiser().denoise("S", path, model)
        assert ds.abundances == {AMPLICON: 200, variant: 50}

    def test_missing_file_yields_empty_sample(self, tmp_path):
        ds = DereplicatingDenoiser().denoise("S", tmp_path / "none.fastq.gz", ErrorModel("forward", 0, 0, 0.0))
        assert ds.count == 0 and ds.assignments == []


class TestMergePair:

    def test_full_overlap(self):
        assert merge_pair(AMPLICON, reverse_complement(AMPLICON)) == AMPLICON

    def test_partial_overlap(self):
        fwd, rev = AMPLICON[:80], reverse_complement(AMPLICON[50:])
        assert merge_pair(fwd, rev) == AMPLICON

    def test_overlap_below_minimum(self):
        fwd, rev = AMPLICON[:60], reverse_complement(AMPLICON[50:])   # 10-base overlap
        assert merge_pair(fwd, rev, min_overlap=12) is None
        assert merge_pair(fwd, rev, min_overlap=10) == AMPLICON

    def test_mismatch_in_overlap(self):
        fwd = _mutate(AMPLICON[:80], 70)
        rev = reverse_complement(AMPLICON[50:])
        assert merge_pair(fwd, rev, max_mismatch=0) is None
        assert merge_pair(fwd, rev, max_mismatch=1) == fwd + AMPLICON[80:]


class TestMergeStage:

    def _denoised(self, n_good, n_bad):
        bad_rev = generate_dna_sequence("unrelated", 70)
        fwd_seq, rev_seq = AMPLICON[:80], reverse_complement(AMPLICON[50:])
        fwd = DenoisedSample("S", {fwd_seq: n_good + n_bad}, [fwd_seq] * (n_good + n_bad))
        rev = DenoisedSample("S", {rev_seq: n_good, bad_rev: n_bad}, [rev_seq] * n_good + [bad_rev] * n_bad)
        return DenoiseResult(forward={"S": fwd}, reverse={"S": rev})

    def test_merged_counts_and_flag(self):
        tracker = StageTracker(stages_for(True), ["S"])
        result = MergeStage(Params(min_merge_fraction=0.5), ExactOverlapMerger()).run(self._denoised(3, 7), tracker)
        assert result.merged == {"S": {AMPLICON: 3}}
        assert result.flagged == ["S"]
        assert tracker.count("S", "merged") == 3

    def test_good_merge_is_not_flagged(self):
        tracker = StageTracker(stages_for(True), ["S"])
        result = MergeStage(Params()).run(self._denoised(9, 1), tracker)
        assert result.flagged == []

    def test_single_end_passthrough(self):
        fwd = DenoisedSample("S", {AMPLICON: 4}, [AMPLICON] * 4)
        tracker = StageTracker(stages_for(False), ["S"])
        result = MergeStage(Params(paired=False)).run(DenoiseResult(forward={"S": fwd}), tracker)
        assert result.merged == {"S": {AMPLICON: 4}}
