# src/ampseq/pipeline/fastq.py
from __future__ import annotations

import gzip
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, List, Tuple

from Bio.SeqIO.QualityIO import FastqGeneralIterator

FastqRecord = Tuple[str, str, str]  # (title, sequence, quality string)


@contextmanager
def open_text(path: Path, mode: str = "rt") -> Iterator[IO[str]]:
    if path.suffix == ".gz":
        fh = gzip.open(path, mode, encoding="utf-8")
    else:
        fh = path.open(mode.replace("t", ""), encoding="utf-8")
    try:
        yield fh
    finally:
        fh.close()


def iter_fastq(path: Path) -> Iterator[FastqRecord]:
    with open_text(path, "rt") as fh:
        yield from FastqGeneralIterator(fh)


def write_fastq(fh: IO[str], record: FastqRecord) -> None:
    title, seq, qual = record
    fh.write(f"@{title}\n{seq}\n+\n{qual}\n")


def phred_scores(qual: str, offset: int = 33) -> List[int]:
    return [ord(c) - offset for c in qual]


def read_sequences(path: Path) -> List[str]:
    return [seq for _, seq, _ in iter_fastq(path)]
