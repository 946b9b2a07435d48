# src/ampseq/qiime/artifacts.py
from __future__ import annotations

import hashlib
import zipfile
from pathlib import Path
from typing import Dict, Iterable, Mapping

from Bio import SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from ampseq.qiime import commands as qiime


def feature_id(sequence: str) -> str:
    """QIIME-style feature identifier: MD5 of the sequence."""
    return hashlib.md5(sequence.encode("ascii")).hexdigest()


def write_fasta(sequences: Mapping[str, str], path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    records = (SeqRecord(Seq(seq), id=ident, description="") for ident, seq in sequences.items())
    SeqIO.write(records, str(path), "fasta")
    return path


def read_artifact_member(artifact: Path, suffix: str) -> str:
    """Text of the first file inside a .qza whose name ends with *suffix*."""
    with zipfile.ZipFile(artifact) as z:
        try:
            member = next(p for p in z.namelist() if p.endswith(suffix))
        except StopIteration:
            raise FileNotFoundError(f"{suffix} not found inside {artifact}") from None
        return z.read(member).decode("utf-8")


def import_sequences(sequences: Iterable[str], work_dir: Path, name: str, *,
                     show_stdout: bool = False) -> Dict[str, str]:
    """Write and import *sequences* as FeatureData[Sequence]; returns feature-id → sequence."""
    by_id = {feature_id(s): s for s in sequences}
    fasta = write_fasta(by_id, work_dir / f"{name}.fasta")
    qiime.import_data(fasta, work_dir / f"{name}.qza", "FeatureData[Sequence]", show_stdout=show_stdout)
    return by_id
