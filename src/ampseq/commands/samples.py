# src/ampseq/commands/samples.py
from __future__ import annotations

from pathlib import Path

from ampseq.commands.common import add_param_args, resolve_params
from ampseq.metadata.read import load_metadata_table
from ampseq.utils.logger import get_logger
from ampseq.utils.samples import SampleRegistry

LOG = get_logger("samples")

_DEFAULTS = {}


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "samples", parents=[parent],
        help="List the samples derived from FASTQ names (and control flags if metadata is given).",
    )
    p.add_argument("--fastq-dir", type=Path, required=True)
    p.add_argument("--metadata-file", type=Path, default=None)
    _DEFAULTS.update(add_param_args(p))
    p.set_defaults(func=run)


def run(args) -> None:
    params = resolve_params(args, _DEFAULTS)
    registry = SampleRegistry.from_directory(
        args.fastq_dir,
        fwd_pattern=params.fwd_pattern,
        rev_pattern=params.rev_pattern if params.paired else None,
        delimiter=params.delimiter,
        domain_token=params.domain if params.match_domain_token else None,
    )
    if args.metadata_file:
        registry.bind_metadata(load_metadata_table(args.metadata_file, negative_column=params.negative_column))
    print("sample_id\tnegative_control\tforward\treverse")
    for s in registry:
        print(f"{s.sample_id}\t{str(s.is_negative_control).upper()}\t{s.forward.name}\t"
              f"{s.reverse.name if s.reverse else ''}")
