# src/ampseq/qiime/classify.py
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ampseq.errors import ClassificationError
from ampseq.qiime import commands as qiime
from ampseq.qiime.artifacts import import_sequences, read_artifact_member
from ampseq.utils.logger import get_logger
from ampseq.utils.runner import require_executable

LOG = get_logger("classify")

_UNASSIGNED = {"unassigned", "unclassified", "unknown", ""}


def parse_taxon(taxon: str) -> List[Optional[str]]:
    """'d__Bacteria; p__Firmicutes; c__' -> ['Bacteria', 'Firmicutes']"""
    labels: List[Optional[str]] = []
    for part in taxon.split(";"):
        part = part.strip()
        if len(part) > 3 and part[1:3] == "__":
            part = part[3:]
        elif len(part) == 3 and part[1:3] == "__":
            part = ""
        labels.append(None if part.lower() in _UNASSIGNED else part)
    # ranks below an unresolved one are not trusted
    if None in labels:
        labels = labels[: labels.index(None)]
    return labels


def parse_taxonomy_tsv(text: str) -> Dict[str, List[Optional[str]]]:
    calls: Dict[str, List[Optional[str]]] = {}
    for line in text.splitlines()[1:]:
        parts = line.rstrip("\n").split("\t")
        if len(parts) < 2 or parts[0].startswith("#"):
            continue
        calls[parts[0]] = parse_taxon(parts[1])
    return calls


class SklearnClassifier:
    """Primary classifier: naive Bayes (q2-feature-classifier) with bootstrap confidence."""

    def __init__(self, classifier: Path, work_dir: Path, *, confidence: float = 0.5,
                 read_orientation: str = "auto", n_jobs: int = 1, show_stdout: bool = False) -> None:
        self.classifier = classifier
        self.work_dir = work_dir
        self.confidence = confidence
        self.read_orientation = read_orientation
        self.n_jobs = n_jobs
        self.show_stdout = show_stdout

    def classify(self, sequences: Sequence[str]) -> Dict[str, List[Optional[str]]]:
        if not self.classifier.exists():
            raise ClassificationError(f"Classifier not found: {self.classifier}", tier=1)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        try:
            require_executable("qiime")
            by_id = import_sequences(sequences, self.work_dir, "tier1_query", show_stdout=self.show_stdout)
            out = self.work_dir / "tier1_taxonomy.qza"
            qiime.classify_sklearn(
                input_reads=self.work_dir / "tier1_query.qza",
                input_classifier=self.classifier,
                output_classification=out,
                confidence=self.confidence,
                read_orientation=self.read_orientation,
                n_jobs=self.n_jobs,
                show_stdout=self.show_stdout,
            )
            calls = parse_taxonomy_tsv(read_artifact_member(out, "taxonomy.tsv"))
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise ClassificationError(str(e), tier=1) from e
        return {seq: calls[fid] for fid, seq in by_id.items() if fid in calls}


class VsearchConsensusClassifier:
    """Secondary classifier: consensus of vsearch global-alignment hits against a narrow reference."""

    def __init__(self, reference_reads: Path, reference_taxonomy: Path, work_dir: Path, *,
                 min_consensus: float = 0.6, perc_identity: float = 0.8, strand: str = "both",
                 threads: int = 1, show_stdout: bool = False) -> None:
        self.reference_reads = reference_reads
        self.reference_taxonomy = reference_taxonomy
        self.work_dir = work_dir
        self.min_consensus = min_consensus
        self.perc_identity = perc_identity
        self.strand = strand
        self.threads = threads
        self.show_stdout = show_stdout

    def classify(self, sequences: Sequence[str]) -> Dict[str, List[Optional[str]]]:
        for ref in (self.reference_reads, self.reference_taxonomy):
            if not ref.exists():
                raise ClassificationError(f"Secondary reference not found: {ref}", tier=2)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        out_dir = self.work_dir / "tier2_vsearch"
        try:
            require_executable("qiime")
            by_id = import_sequences(sequences, self.work_dir, "tier2_query", show_stdout=self.show_stdout)
            qiime.classify_consensus_vsearch(
                input_query=self.work_dir / "tier2_query.qza",
                reference_reads=self.reference_reads,
                reference_taxonomy=self.reference_taxonomy,
                output_dir=out_dir,
                strand=self.strand,
                perc_identity=self.perc_identity,
                min_consensus=self.min_consensus,
                threads=self.threads,
                show_stdout=self.show_stdout,
            )
            calls = parse_taxonomy_tsv(read_artifact_member(out_dir / "classification.qza", "taxonomy.tsv"))
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise ClassificationError(str(e), tier=2) from e
        return {seq: calls[fid] for fid, seq in by_id.items() if fid in calls}
