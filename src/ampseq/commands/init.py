# src/ampseq/commands/init.py
from __future__ import annotations

from pathlib import Path

from ampseq.config.load import write_params_template
from ampseq.config.schema import DOMAIN_PROFILES, Params
from ampseq.utils.logger import get_logger

LOG = get_logger("init")


def setup_parser(subparsers, parent) -> None:
    p = subparsers.add_parser(
        "init", parents=[parent],
        help="Write a params.yaml holding every setting at its default.",
    )
    p.add_argument("--output", type=Path, default=Path("params.yaml"))
    p.add_argument("--domain", type=str, default="Bacteria", choices=list(DOMAIN_PROFILES))
    p.add_argument("--force", action="store_true", help="Overwrite an existing file.")
    p.set_defaults(func=run)


def run(args) -> None:
    if args.output.exists() and not args.force:
        LOG.error("%s already exists (use --force to overwrite)", args.output)
        raise SystemExit(2)
    write_params_template(args.output, Params(domain=args.domain))
    LOG.info("Params template written → %s", args.output)
