# src/ampseq/pipeline/output.py
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from Bio import Phylo

from ampseq.errors import ConsistencyError
from ampseq.metadata.read import SampleMetadata
from ampseq.pipeline.phylogeny import check_leaves
from ampseq.pipeline.table import AbundanceMatrix
from ampseq.pipeline.taxonomy import TaxonomyRecord, write_taxonomy_tsv
from ampseq.qiime.artifacts import write_fasta
from ampseq.utils.logger import get_logger

LOG = get_logger("output")

TAXONOMY_FILE = "taxonomy.tsv"
TABLE_FILE = "asv_table.tsv"
METADATA_FILE = "metadata.tsv"
SEQS_FILE = "rep_seqs.fasta"
TREE_FILE = "tree.nwk"


def assign_identifiers(matrix: AbundanceMatrix, prefix: str = "ASV") -> Dict[str, str]:
    """
    sequence → '<prefix><k>' following the matrix column order, which is descending
    total abundance with ties in order of first appearance.
    """
    return {seq: f"{prefix}{k}" for k, seq in enumerate(matrix.variants, start=1)}


@dataclass
class OutputBundle:
    matrix: AbundanceMatrix
    taxonomy: Dict[str, TaxonomyRecord]
    metadata: SampleMetadata
    sequences: Dict[str, str]
    tree: Optional[object] = None

    def check(self) -> None:
        ids = set(self.matrix.variants)
        if set(self.taxonomy) != ids or set(self.sequences) != ids:
            raise ConsistencyError("abundance, taxonomy and sequence identifiers disagree")
        if set(self.metadata.rows) != set(self.matrix.samples):
            raise ConsistencyError("abundance table and metadata hold different samples")
        if self.tree is not None:
            check_leaves(self.tree, ids)


class OutputAssembler:
    def __init__(self, out_dir: Path, ranks: Sequence[str]) -> None:
        self.out_dir = out_dir
        self.ranks = list(ranks)

    @staticmethod
    def rename(
        matrix: AbundanceMatrix,
        taxonomy: Mapping[str, TaxonomyRecord],
        metadata: SampleMetadata,
        ids: Mapping[str, str],
        tree=None,
    ) -> OutputBundle:
        """Apply one identifier map to every artifact; sequences are only kept as FASTA bodies."""
        bundle = OutputBundle(
            matrix=matrix.rename_variants(ids),
            taxonomy={ids[v]: rec for v, rec in taxonomy.items()},
            metadata=metadata,
            sequences={ids[v]: v for v in matrix.variants},
            tree=tree,
        )
        bundle.check()
        return bundle

    def write(self, bundle: OutputBundle) -> Dict[str, Path]:
        """Write every artifact to a staging directory, then move them into place together."""
        bundle.check()
        staging = self.out_dir / ".staging"
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        order: List[str] = list(bundle.matrix.variants)
        staged = {
            "taxonomy": write_taxonomy_tsv(bundle.taxonomy, self.ranks, staging / TAXONOMY_FILE, order=order),
            "table": bundle.matrix.write_tsv(staging / TABLE_FILE),
            "metadata": bundle.metadata.write_tsv(staging / METADATA_FILE),
            "sequences": write_fasta(bundle.sequences, staging / SEQS_FILE),
        }
        if bundle.tree is not None:
            Phylo.write(bundle.tree, str(staging / TREE_FILE), "newick")
            staged["tree"] = staging / TREE_FILE

        final: Dict[str, Path] = {}
        for key, path in staged.items():
            dest = self.out_dir / path.name
            os.replace(path, dest)
            final[key] = dest
        stale_tree = self.out_dir / TREE_FILE
        if bundle.tree is None and stale_tree.exists():
            stale_tree.unlink()
        staging.rmdir()
        LOG.info("Wrote %d artifact(s) for %d variant(s) → %s", len(final), len(order), self.out_dir)
        return final
