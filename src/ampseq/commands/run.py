# src/ampseq/commands/run.py
from __future__ import annotations

from pathlib import Path

from ampseq.commands.common import add_param_args, resolve_params
from ampseq.pipeline.runner import PipelineRunner
from ampseq.utils.logger import get_logger

LOG = get_logger("run")

_DEFAULTS = {}


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "run", parents=[parent],
        help="filter → denoise → merge → chimeras → taxonomy → contaminants → tree → outputs.",
    )
    p.add_argument("--fastq-dir", type=Path, required=True, help="Directory holding the raw FASTQs.")
    p.add_argument("--metadata-file", type=Path, required=True, help="Sample metadata (TSV, or CSV).")
    p.add_argument("--project-dir", type=Path, required=True, help="Output directory (work/ and output/).")
    p.add_argument("--primary-classifier", type=Path, default=None, help="Pre-fitted classifier .qza.")
    p.add_argument("--secondary-reference-reads", type=Path, default=None,
                   help="FeatureData[Sequence] .qza for the tier-2 classifier.")
    p.add_argument("--secondary-reference-taxonomy", type=Path, default=None,
                   help="FeatureData[Taxonomy] .qza for the tier-2 classifier.")
    p.add_argument("--contaminant-threshold", type=float, default=0.5)
    p.add_argument("--no-tree", dest="build_tree", action="store_false", help="Skip phylogeny.")
    p.set_defaults(build_tree=True, func=run)
    _DEFAULTS.update(add_param_args(p))
    _DEFAULTS.update({
        "primary_classifier": None,
        "secondary_reference_reads": None,
        "secondary_reference_taxonomy": None,
        "contaminant_threshold": 0.5,
        "build_tree": True,
        "show_qiime": False,
    })


def run(args) -> None:
    params = resolve_params(args, _DEFAULTS)
    runner = PipelineRunner(
        params,
        fastq_dir=args.fastq_dir,
        metadata_file=args.metadata_file,
        project_dir=args.project_dir,
    )
    result = runner.run()
    for key, path in result.outputs.items():
        LOG.info("%-10s %s", key, path)
