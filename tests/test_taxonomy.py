"""Tests for the two-tier taxonomy cascade."""

import pytest

from ampseq.config.schema import Params
from ampseq.errors import ClassificationError, EmptyVariantTableError
from ampseq.pipeline.table import VariantTable
from ampseq.pipeline.taxonomy import (
    TaxonomyRecord,
    TaxonomyResolver,
    gap_fill,
    merge_tiers,
    tier2_candidates,
    write_taxonomy_tsv,
)
from ampseq.pipeline.tracker import StageTracker, stages_for
from ampseq.qiime.classify import parse_taxon, parse_taxonomy_tsv

from helpers import DictClassifier, FailingClassifier, generate_dna_sequence

N = 7
ARC = generate_dna_sequence("archaeon", 90)
ARC2 = generate_dna_sequence("archaeon2", 90)
BAC = generate_dna_sequence("bacterium", 90)
UNK = generate_dna_sequence("unknown", 90)


def rec(*labels):
    return TaxonomyRecord.of(list(labels), N)


def resolved_prefix_ok(record):
    """No unresolved rank coarser than a resolved one."""
    seen_unresolved = False
    for label in record.ranks:
        if label is None:
            seen_unresolved = True
        elif seen_unresolved:
            return False
    return True


class TestMergeTiers:

    def test_tier2_replaces_when_target_domain(self):
        t1 = {ARC: rec("Archaea"), BAC: rec("Bacteria", "Firmicutes")}
        t2 = {ARC: rec("Archaea", "Euryarchaeota")}
        merged = merge_tiers(t1, t2, "Archaea")
        assert merged[ARC] == rec("Archaea", "Euryarchaeota")
        assert merged[BAC] == t1[BAC]

    def test_tier1_kept_when_tier2_misses_the_domain(self):
        t1 = {ARC: rec("Archaea")}
        t2 = {ARC: rec("Bacteria", "Proteobacteria")}
        assert merge_tiers(t1, t2, "Archaea")[ARC] == rec("Archaea")
        assert merge_tiers(t1, {ARC: rec()}, "Archaea")[ARC] == rec("Archaea")

    def test_keys_are_exactly_tier1(self):
        t1 = {ARC: rec("Archaea")}
        t2 = {ARC: rec("Archaea", "Euryarchaeota"), ARC2: rec("Archaea", "Crenarchaeota")}
        merged = merge_tiers(t1, t2, "Archaea")
        assert list(merged) == [ARC]

    def test_inputs_untouched(self):
        t1 = {ARC: rec("Archaea")}
        t2 = {ARC: rec("Archaea", "Euryarchaeota")}
        merge_tiers(t1, t2, "Archaea")
        assert t1 == {ARC: rec("Archaea")}


class TestGapFill:

    def test_propagates_nearest_resolved_label(self):
        filled = gap_fill(rec("Archaea", "Euryarchaeota"))
        assert filled.ranks == ("Archaea", "Euryarchaeota") + ("Unclassified_Euryarchaeota",) * 5

    def test_holes_take_the_label_above(self):
        filled = gap_fill(rec("Bacteria", None, "Bacilli"))
        assert filled.ranks[:3] == ("Bacteria", "Unclassified_Bacteria", "Bacilli")
        assert filled.ranks[3] == "Unclassified_Bacilli"

    def test_fully_unresolved(self):
        assert gap_fill(rec()).ranks == ("Unclassified_Unclassified",) * N
        assert gap_fill(rec(), root_label="NA").ranks == ("Unclassified_NA",) * N

    def test_complete_record_unchanged(self):
        full = rec(*"abcdefg")
        assert gap_fill(full) == full

    @pytest.mark.parametrize("labels", [(), ("Archaea",), ("Archaea", None, "x"), ("Bacteria", "P", "C")])
    def test_monotonic(self, labels):
        filled = gap_fill(rec(*labels))
        assert None not in filled.ranks
        assert resolved_prefix_ok(filled)


class TestTaxonomyResolver:

    def _resolver(self, primary, secondary=None, **kw):
        return TaxonomyResolver(Params(domain="Archaea", **kw), primary, secondary)

    def test_archaeal_phylum_from_tier2(self):
        primary = DictClassifier({ARC: ["Archaea"], BAC: ["Bacteria", "Firmicutes"]})
        secondary = DictClassifier({ARC: ["Archaea", "Euryarchaeota", "Methanomicrobia"]})
        m = VariantTable.build({"S1": {ARC: 10, BAC: 5}})
        tracker = StageTracker(stages_for(False), ["S1"])
        matrix, tax = self._resolver(primary, secondary).run(m, tracker)
        assert tax[ARC].ranks[1] == "Euryarchaeota"
        assert tax[ARC].ranks[3] == "Unclassified_Methanomicrobia"
        assert secondary.queries == [[ARC]]
        # bacterial variant retired from both tables
        assert matrix.variants == (ARC,)
        assert set(tax) == {ARC}
        assert tracker.count("S1", "tax_filtered") == 10

    def test_only_domain_resolved_trigger_tier2(self):
        table = {ARC: rec("Archaea"), UNK: rec(), BAC: rec("Bacteria", "Firmicutes")}
        assert tier2_candidates(table, 1) == [ARC]

    def test_missing_secondary_keeps_tier1(self):
        primary = DictClassifier({ARC: ["Archaea"]})
        table = {ARC: rec("Archaea")}
        tax = self._resolver(primary).refine(table)
        assert tax[ARC].ranks[1] == "Unclassified_Archaea"
        assert table == {ARC: rec("Archaea")}

    def test_unclassified_by_primary(self):
        primary = DictClassifier({ARC: ["Archaea", "Euryarchaeota"]})
        table = self._resolver(primary).classify([ARC, UNK])
        assert table[UNK] == TaxonomyRecord.unresolved(N)

    def test_refine_is_idempotent(self):
        primary = DictClassifier({ARC: ["Archaea"], ARC2: ["Archaea", "Crenarchaeota"], UNK: []})
        secondary = DictClassifier({ARC: ["Archaea", "Euryarchaeota"]})
        resolver = self._resolver(primary, secondary)
        once = resolver.refine(resolver.classify([ARC, ARC2, UNK]))
        twice = resolver.refine(once)
        assert twice == once
        assert len(secondary.queries) == 1

    def test_primary_failure_is_stage_tagged(self):
        with pytest.raises(ClassificationError) as exc:
            self._resolver(FailingClassifier()).classify([ARC])
        assert exc.value.tier == 1

    def test_secondary_failure_is_stage_tagged(self):
        resolver = self._resolver(DictClassifier({ARC: ["Archaea"]}), FailingClassifier())
        with pytest.raises(ClassificationError) as exc:
            resolver.refine({ARC: rec("Archaea")})
        assert exc.value.tier == 2

    def test_no_target_domain_left(self):
        primary = DictClassifier({BAC: ["Bacteria"]})
        m = VariantTable.build({"S1": {BAC: 5}})
        with pytest.raises(EmptyVariantTableError):
            self._resolver(primary).run(m)

    def test_eukaryote_label(self):
        euk = generate_dna_sequence("euk", 90)
        primary = DictClassifier({euk: ["Eukaryota", "Chlorophyta"]})
        resolver = TaxonomyResolver(Params(domain="Eukaryote"), primary)
        matrix, tax = resolver.run(VariantTable.build({"S1": {euk: 3}}))
        assert matrix.variants == (euk,)


class TestTaxonomyIO:

    def test_parse_taxon(self):
        assert parse_taxon("d__Archaea; p__Euryarchaeota; c__") == ["Archaea", "Euryarchaeota"]
        assert parse_taxon("Unassigned") == []
        assert parse_taxon("k__Bacteria;p__;c__Bacilli") == ["Bacteria"]
        assert parse_taxon("Archaea;Halobacterota") == ["Archaea", "Halobacterota"]

    def test_parse_taxonomy_tsv(self):
        text = "Feature ID\tTaxon\tConfidence\nabc\td__Archaea; p__Thermoproteota\t0.93\n"
        assert parse_taxonomy_tsv(text) == {"abc": ["Archaea", "Thermoproteota"]}

    def test_write(self, tmp_path):
        path = write_taxonomy_tsv({"ASV1": gap_fill(rec("Archaea"))}, Params().ranks, tmp_path / "tax.tsv")
        lines = path.read_text().splitlines()
        assert lines[0] == "Feature ID\tDomain\tPhylum\tClass\tOrder\tFamily\tGenus\tSpecies"
        assert lines[1].startswith("ASV1\tArchaea\tUnclassified_Archaea")
