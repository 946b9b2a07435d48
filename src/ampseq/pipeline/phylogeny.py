# src/ampseq/pipeline/phylogeny.py
from __future__ import annotations

import subprocess
from typing import Callable, Mapping, Optional, Protocol, Set

from ampseq.errors import StageError, TreeLeafMismatchError
from ampseq.utils.logger import get_logger

LOG = get_logger("phylogeny")


class TreeBuilder(Protocol):
    def build(self, sequences: Mapping[str, str]): ...


def midpoint_root(tree):
    tree.root_at_midpoint()
    tree.rooted = True
    return tree


def leaf_names(tree) -> Set[str]:
    return {t.name for t in tree.get_terminals()}


class PhylogenyBinder:
    """Alignment + tree inference + rooting over the final variants, keyed by their identifiers."""

    def __init__(self, builder: TreeBuilder, rooter: Optional[Callable] = None) -> None:
        self.builder = builder
        self.rooter = rooter or midpoint_root

    def bind(self, sequences: Mapping[str, str]):
        if len(sequences) < 3:
            # FastTree needs three taxa; nothing phylogenetic to say about fewer
            LOG.warning("Only %d variant(s); skipping tree inference.", len(sequences))
            return None
        try:
            tree = self.builder.build(dict(sequences))
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise StageError("phylogeny", f"tree inference failed: {e}") from e
        tree = self.rooter(tree)
        check_leaves(tree, set(sequences))
        LOG.info("Rooted tree with %d leaves attached", len(sequences))
        return tree


def check_leaves(tree, identifiers: Set[str]) -> None:
    leaves = leaf_names(tree)
    if leaves != identifiers:
        raise TreeLeafMismatchError(missing=identifiers - leaves, extra=leaves - identifiers)
