"""Shared builders for synthetic reads and stand-in collaborators."""

import hashlib
from io import StringIO
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from Bio import Phylo
from Bio.Seq import reverse_complement


def generate_dna_sequence(seed: str, length: int) -> str:
    """Generate a reproducible pseudo-random DNA sequence."""
    bases = "ACGT"
    return "".join(
        bases[int(hashlib.md5(f"{seed}_{i}".encode()).hexdigest()[0], 16) % 4]
        for i in range(length)
    )


def write_fastq(path: Path, sequences: Iterable[str], quality: str = "I") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as fh:
        for i, seq in enumerate(sequences):
            qual = quality * len(seq) if len(quality) == 1 else quality
            fh.write(f"@read{i}\n{seq}\n+\n{qual}\n")
    return path


def expand(abundances: Mapping[str, int]) -> List[str]:
    reads: List[str] = []
    for seq, n in abundances.items():
        reads.extend([seq] * n)
    return reads


def write_sample(fastq_dir: Path, sample_id: str, abundances: Mapping[str, int],
                 domain: str = "Archaea", paired: bool = True) -> None:
    reads = expand(abundances)
    write_fastq(fastq_dir / f"{sample_id}_{domain}_L001_R1_001.fastq", reads)
    if paired:
        write_fastq(fastq_dir / f"{sample_id}_{domain}_L001_R2_001.fastq",
                    [reverse_complement(r) for r in reads])


def write_metadata(path: Path, negatives: Mapping[str, bool]) -> Path:
    lines = ["sample-id\tnegative\tsite"]
    for sid, neg in negatives.items():
        lines.append(f"{sid}\t{'TRUE' if neg else 'FALSE'}\tsite_{sid.lower()}")
    path.write_text("\n".join(lines) + "\n")
    return path


class DictClassifier:
    """Classifier returning canned rank tuples; remembers what it was asked."""

    def __init__(self, calls: Mapping[str, Sequence[Optional[str]]]) -> None:
        self.calls = dict(calls)
        self.queries: List[List[str]] = []

    def classify(self, sequences):
        self.queries.append(list(sequences))
        return {s: list(self.calls[s]) for s in sequences if s in self.calls}


class FailingClassifier:
    def classify(self, sequences):
        raise RuntimeError("reference database unreadable")


class StarTreeBuilder:
    """Tree over the given identifiers with distinct branch lengths."""

    def __init__(self, drop: Optional[str] = None, extra: Optional[str] = None) -> None:
        self.drop = drop
        self.extra = extra
        self.calls: List[Dict[str, str]] = []

    def build(self, sequences):
        self.calls.append(dict(sequences))
        names = [n for n in sequences if n != self.drop]
        if self.extra:
            names.append(self.extra)
        leaves = ",".join(f"{n}:{0.1 * (k + 1):.2f}" for k, n in enumerate(names))
        return Phylo.read(StringIO(f"({leaves});"), "newick")


class FlagEverything:
    def detect(self, matrix):
        return set(matrix.variants)
