# src/ampseq/metadata/read.py
from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List

from ampseq.errors import MetadataError
from ampseq.metadata import FALSE_VALUES, SAMPLE_ID_COLUMN, TRUE_VALUES


def _unquote(s: str) -> str:
    """
    Strip BOM, surrounding quotes, and outer whitespace from a single cell.
    """
    s = s.replace("\ufeff", "")
    s = s.strip()
    if len(s) >= 2 and ((s[0] == s[-1] == '"') or (s[0] == s[-1] == "'")):
        s = s[1:-1].strip()
    return s


# Header aliases that should normalize to '#SampleID'
_SAMPLE_ID_ALIASES = {
    "#sampleid", "#sample id", "sample id", "sample-id", "sampleid", "sample_name", "sample",
}


def _normalize_header(raw: List[str]) -> List[str]:
    out: List[str] = []
    for i, cell in enumerate(raw):
        c = _unquote(cell)
        if i == 0 and c.lower() in _SAMPLE_ID_ALIASES:
            c = SAMPLE_ID_COLUMN
        out.append(c)
    return out


def parse_bool(value: str) -> bool:
    v = _unquote(value).lower()
    if v in TRUE_VALUES:
        return True
    if v in FALSE_VALUES:
        return False
    raise MetadataError(f"Not a boolean value: {value!r}")


@dataclass
class SampleMetadata:
    """Sample metadata keyed by SampleID, preserving column and row order."""
    header: List[str]
    rows: Dict[str, Dict[str, str]] = field(default_factory=dict)
    negative_column: str = "negative"

    @property
    def sample_ids(self) -> List[str]:
        return list(self.rows)

    def is_negative(self, sample_id: str) -> bool:
        row = self.rows[sample_id]
        try:
            return parse_bool(row.get(self.negative_column, ""))
        except MetadataError as e:
            raise MetadataError(f"Sample {sample_id}: {e}") from e

    def negative_controls(self) -> List[str]:
        return [sid for sid in self.rows if self.is_negative(sid)]

    def subset(self, keep: Iterable[str]) -> "SampleMetadata":
        """New table holding only *keep* (in this table's row order)."""
        wanted = set(keep)
        rows = {sid: dict(r) for sid, r in self.rows.items() if sid in wanted}
        return SampleMetadata(header=list(self.header), rows=rows, negative_column=self.negative_column)

    def write_tsv(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh, delimiter="\t", lineterminator="\n")
            writer.writerow(self.header)
            for sid, row in self.rows.items():
                writer.writerow([sid] + [row.get(h, "") for h in self.header[1:]])
        return path


def load_metadata_table(path: Path, *, negative_column: str = "negative") -> SampleMetadata:
    """
    Load a sample metadata table (tab, or comma for *.csv).

    The first column is the SampleID; an optional '#q2:types' second row is skipped.
    Raises MetadataError for empty files, duplicate IDs, or a missing negative column.
    """
    if not path.exists():
        raise MetadataError(f"Metadata file not found: {path}")
    text = path.read_text(encoding="utf-8", errors="replace")
    delim = "," if path.suffix.lower() == ".csv" else "\t"
    lines = [ln for ln in text.splitlines() if ln.strip()]
    if not lines:
        raise MetadataError(f"Empty metadata file: {path}")

    records = list(csv.reader(lines, delimiter=delim))
    header = _normalize_header(records[0])
    if negative_column not in header:
        raise MetadataError(f"Metadata is missing the '{negative_column}' column: {path}")

    start = 1
    if len(records) > 1 and records[1] and _unquote(records[1][0]).lower() == "#q2:types":
        start = 2

    rows: Dict[str, Dict[str, str]] = {}
    for cols in records[start:]:
        cells = [_unquote(c) for c in cols]
        sid = cells[0] if cells else ""
        if not sid:
            continue
        if sid in rows:
            raise MetadataError(f"Duplicate SampleID in metadata: {sid}")
        rows[sid] = {header[i]: (cells[i] if i < len(cells) else "") for i in range(1, len(header))}

    meta = SampleMetadata(header=header, rows=rows, negative_column=negative_column)
    # surface malformed booleans now, before any stage runs
    for sid in rows:
        meta.is_negative(sid)
    return meta
