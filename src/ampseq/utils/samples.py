# src/ampseq/utils/samples.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from ampseq.errors import InputError, MetadataError, SampleMismatchError
from ampseq.metadata.read import SampleMetadata
from ampseq.utils.logger import get_logger

LOG = get_logger("samples")


@dataclass
class Sample:
    sample_id: str
    forward: Path
    reverse: Optional[Path] = None
    is_negative_control: bool = False
    filtered_forward: Optional[Path] = None
    filtered_reverse: Optional[Path] = None

    @property
    def paired(self) -> bool:
        return self.reverse is not None


def _matches(name: str, pattern: str) -> bool:
    # accept both plain and gzipped reads
    return name.endswith(pattern) or name.endswith(pattern + ".gz")


def list_reads(fastq_dir: Path, pattern: str, *, delimiter: str = "_",
               domain_token: Optional[str] = None) -> List[Path]:
    """Matching files sorted lexicographically by full path."""
    if not fastq_dir.is_dir():
        raise InputError(f"FASTQ directory not found: {fastq_dir}")
    paths = [p for p in fastq_dir.iterdir() if p.is_file() and _matches(p.name, pattern)]
    if domain_token:
        paths = [p for p in paths if _token(p.name, delimiter, 1) == domain_token]
    return sorted(paths, key=lambda p: str(p.resolve()))


def _token(name: str, delimiter: str, index: int) -> str:
    tokens = name.split(delimiter)
    return tokens[index] if index < len(tokens) else ""


def sample_id_from_path(path: Path, delimiter: str = "_") -> str:
    """<sample>_<domain>_..._R1_001.fastq -> <sample>"""
    return path.name.split(delimiter, 1)[0]


class SampleRegistry:
    """Samples in deterministic order, each bound to its read files."""

    def __init__(self, samples: List[Sample]) -> None:
        self._samples: Dict[str, Sample] = {}
        for s in samples:
            if s.sample_id in self._samples:
                raise SampleMismatchError(f"Duplicate sample identifier derived from file names: {s.sample_id}")
            self._samples[s.sample_id] = s

    @classmethod
    def from_directory(
        cls,
        fastq_dir: Path,
        *,
        fwd_pattern: str = "_R1_001.fastq",
        rev_pattern: Optional[str] = "_R2_001.fastq",
        delimiter: str = "_",
        domain_token: Optional[str] = None,
    ) -> "SampleRegistry":
        fwd = list_reads(fastq_dir, fwd_pattern, delimiter=delimiter, domain_token=domain_token)
        if not fwd:
            raise InputError(f"No files matching '*{fwd_pattern}' under {fastq_dir}")
        rev: List[Optional[Path]] = [None] * len(fwd)
        if rev_pattern:
            rev_paths = list_reads(fastq_dir, rev_pattern, delimiter=delimiter, domain_token=domain_token)
            if len(rev_paths) != len(fwd):
                raise SampleMismatchError(
                    f"{len(fwd)} forward vs {len(rev_paths)} reverse read files under {fastq_dir}"
                )
            rev = list(rev_paths)

        samples: List[Sample] = []
        for f, r in zip(fwd, rev):
            sid = sample_id_from_path(f, delimiter)
            if r is not None and sample_id_from_path(r, delimiter) != sid:
                raise SampleMismatchError(f"Forward/reverse files are not aligned: {f.name} vs {r.name}")
            samples.append(Sample(sample_id=sid, forward=f, reverse=r))
        LOG.info("Registered %d sample(s) (%s) from %s",
                 len(samples), "paired-end" if rev_pattern else "single-end", fastq_dir)
        return cls(samples)

    def bind_metadata(self, metadata: SampleMetadata) -> None:
        missing = [sid for sid in self._samples if sid not in metadata.rows]
        if missing:
            raise MetadataError(
                f"Samples missing from metadata: {missing[:5]}{'...' if len(missing) > 5 else ''}"
            )
        extra = [sid for sid in metadata.rows if sid not in self._samples]
        if extra:
            LOG.warning("Ignoring %d metadata row(s) without read files: %s", len(extra), extra[:5])
        for sid, sample in self._samples.items():
            sample.is_negative_control = metadata.is_negative(sid)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples.values())

    def __len__(self) -> int:
        return len(self._samples)

    def __getitem__(self, sample_id: str) -> Sample:
        return self._samples[sample_id]

    @property
    def sample_ids(self) -> List[str]:
        return list(self._samples)

    @property
    def paired(self) -> bool:
        return all(s.paired for s in self._samples.values())

    @property
    def negative_controls(self) -> List[str]:
        return [sid for sid, s in self._samples.items() if s.is_negative_control]
