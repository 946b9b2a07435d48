# src/ampseq/config/load.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ampseq.config.schema import Params


def _read_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Params file must contain a mapping at the top level.")
    return data


def load_params(path: Optional[Path]) -> Params:
    """Load a params file (YAML or JSON, optionally nested under 'params')."""
    if not path:
        return Params()
    data = _read_mapping(path)
    return Params(**data.get("params", data))


def write_params_template(path: Path, params: Optional[Params] = None) -> Path:
    payload = {"params": (params or Params()).model_dump(mode="json")}
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def apply_cli_overrides(params: Params, args, defaults: Dict[str, Any]) -> Params:
    """
    Merge CLI values into params **only where the user moved the CLI off its default**.
    Params just save typing; an explicit flag always wins.
    """
    updates: Dict[str, Any] = {}
    for k, default in defaults.items():
        if not hasattr(args, k):
            continue
        cur = getattr(args, k)
        if cur != default:
            updates[k] = cur
    if not updates:
        return params
    return Params(**{**params.model_dump(), **updates})
