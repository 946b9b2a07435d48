# src/ampseq/qiime/phylogeny.py
from __future__ import annotations

import io
from pathlib import Path
from typing import Mapping

from Bio import Phylo

from ampseq.qiime import commands as qiime
from ampseq.qiime.artifacts import read_artifact_member, write_fasta
from ampseq.utils.runner import require_executable


class MafftFastTreeBuilder:
    """MAFFT alignment + FastTree inference; returns the unrooted tree."""

    def __init__(self, work_dir: Path, *, n_threads: int = 1, show_stdout: bool = False) -> None:
        self.work_dir = work_dir
        self.n_threads = n_threads
        self.show_stdout = show_stdout

    def build(self, sequences: Mapping[str, str]):
        require_executable("qiime")
        self.work_dir.mkdir(parents=True, exist_ok=True)
        fasta = write_fasta(sequences, self.work_dir / "rep_seqs.fasta")
        seqs_qza = self.work_dir / "rep_seqs.qza"
        qiime.import_data(fasta, seqs_qza, "FeatureData[Sequence]", show_stdout=self.show_stdout)
        tree_qza = self.work_dir / "unrooted_tree.qza"
        qiime.phylogeny_align_to_tree_mafft_fasttree(
            input_sequences=seqs_qza,
            output_alignment=self.work_dir / "aligned_rep_seqs.qza",
            output_masked_alignment=self.work_dir / "masked_aligned_rep_seqs.qza",
            output_tree=tree_qza,
            output_rooted_tree=self.work_dir / "rooted_tree.qza",
            n_threads=self.n_threads,
            show_stdout=self.show_stdout,
        )
        newick = read_artifact_member(tree_qza, "tree.nwk")
        return Phylo.read(io.StringIO(newick), "newick")
