# src/ampseq/cli.py
from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from ampseq import __version__
from ampseq.errors import AmpseqError
from ampseq.utils.logger import setup_logger

from ampseq.commands import init as cmd_init
from ampseq.commands import samples as cmd_samples
from ampseq.commands import run as cmd_run


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="ampseq",
        description="Amplicon sequence variant pipeline (init, samples, run).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--show-qiime", dest="show_qiime", action="store_true",
                        help="Stream QIIME output live to console.")
    parent.add_argument("-v", "--verbose", action="store_true", help="DEBUG messages on the console too.")
    parent.set_defaults(show_qiime=False, verbose=False)

    subparsers = parser.add_subparsers(dest="command", required=True)

    cmd_init.setup_parser(subparsers, parent)
    cmd_samples.setup_parser(subparsers, parent)
    cmd_run.setup_parser(subparsers, parent)

    args = parser.parse_args(argv)
    logger = setup_logger(verbose=args.verbose)
    logger.debug("Parsed args: %r", args)
    try:
        args.func(args)
    except AmpseqError as e:
        logger.error("%s", e)
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
