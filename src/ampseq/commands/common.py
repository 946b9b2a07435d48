# src/ampseq/commands/common.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from ampseq.config.load import apply_cli_overrides, load_params
from ampseq.config.schema import DOMAIN_PROFILES, Params
from ampseq.errors import InputError


def add_param_args(p) -> Dict[str, Any]:
    """Flags shared by commands that resolve samples; returns their defaults for override merging."""
    p.add_argument("--params", type=Path, default=None, help="YAML/JSON params file (see 'ampseq init').")
    p.add_argument("--domain", type=str, default="Bacteria",
                   choices=list(DOMAIN_PROFILES), help="Target domain (selects the primer profile).")
    p.add_argument("--single-end", dest="paired", action="store_false", help="Only use forward reads.")
    p.add_argument("--fwd-pattern", type=str, default="_R1_001.fastq", help="Suffix of forward read files.")
    p.add_argument("--rev-pattern", type=str, default="_R2_001.fastq", help="Suffix of reverse read files.")
    p.add_argument("--negative-column", type=str, default="negative",
                   help="Metadata column flagging negative controls.")
    p.set_defaults(paired=True)
    return {
        "domain": "Bacteria",
        "paired": True,
        "fwd_pattern": "_R1_001.fastq",
        "rev_pattern": "_R2_001.fastq",
        "negative_column": "negative",
    }


def resolve_params(args, defaults: Dict[str, Any]) -> Params:
    """Params file + CLI overrides; any invalid value is an input error."""
    if args.params is not None and not args.params.exists():
        raise InputError(f"Params file not found: {args.params}")
    try:
        return apply_cli_overrides(load_params(args.params), args, defaults)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        raise InputError(f"Invalid params: {e}") from e
