# src/ampseq/qiime/commands.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from ampseq.utils.runner import run_command

Value = Union[str, int, float, bool, Path]


def _flag(name: str) -> str:
    return name.replace("_", "-")


def build_action(
    plugin: str,
    action: str,
    *,
    inputs: Optional[Mapping[str, Path]] = None,
    parameters: Optional[Mapping[str, Value]] = None,
    outputs: Optional[Mapping[str, Path]] = None,
    output_dir: Optional[Path] = None,
) -> List[str]:
    """
    Argument vector for `qiime <plugin> <action>`.

    Keys use the plugin's snake_case names; inputs/parameters/outputs become
    --i-*/--p-*/--o-* flags. Booleans become --p-<name> / --p-no-<name>.
    """
    cmd = ["qiime", plugin, action]
    for name, path in (inputs or {}).items():
        cmd += [f"--i-{_flag(name)}", str(path)]
    for name, value in (parameters or {}).items():
        if isinstance(value, bool):
            cmd.append(f"--p-{_flag(name)}" if value else f"--p-no-{_flag(name)}")
        else:
            cmd += [f"--p-{_flag(name)}", str(value)]
    for name, path in (outputs or {}).items():
        cmd += [f"--o-{_flag(name)}", str(path)]
    if output_dir is not None:
        cmd += ["--output-dir", str(output_dir)]
    return cmd


def _run(cmd: List[str], *, show_stdout: bool) -> None:
    run_command(cmd, capture=not show_stdout)


# ---------------------------
# Imports
# ---------------------------

def import_data(
    input_path: Path,
    output_path: Path,
    import_type: str = "FeatureData[Sequence]",
    *,
    show_stdout: bool = False,
) -> None:
    cmd = [
        "qiime", "tools", "import",
        "--type", import_type,
        "--input-path", str(input_path),
        "--output-path", str(output_path),
    ]
    _run(cmd, show_stdout=show_stdout)


# ---------------------------
# Classification
# ---------------------------

def classify_sklearn(
    *,
    input_reads: Path,
    input_classifier: Path,
    output_classification: Path,
    reads_per_batch: Union[str, int] = "auto",
    n_jobs: int = 1,
    confidence: float = 0.7,
    read_orientation: str = "auto",
    show_stdout: bool = False,
) -> None:
    params: Dict[str, Value] = {
        "reads_per_batch": reads_per_batch,
        "n_jobs": n_jobs,
        "confidence": confidence,
        "read_orientation": read_orientation,
    }
    cmd = build_action(
        "feature-classifier", "classify-sklearn",
        inputs={"reads": input_reads, "classifier": input_classifier},
        parameters=params,
        outputs={"classification": output_classification},
    )
    _run(cmd, show_stdout=show_stdout)


def classify_consensus_vsearch(
    *,
    input_query: Path,
    reference_reads: Path,
    reference_taxonomy: Path,
    output_dir: Path,
    strand: str = "both",
    perc_identity: float = 0.8,
    min_consensus: float = 0.51,
    threads: int = 1,
    show_stdout: bool = False,
) -> None:
    # --output-dir: newer plugin versions also emit search_results.qza
    cmd = build_action(
        "feature-classifier", "classify-consensus-vsearch",
        inputs={"query": input_query, "reference_reads": reference_reads,
                "reference_taxonomy": reference_taxonomy},
        parameters={"strand": strand, "perc_identity": perc_identity,
                    "min_consensus": min_consensus, "threads": threads},
        output_dir=output_dir,
    )
    _run(cmd, show_stdout=show_stdout)


# ---------------------------
# Phylogeny
# ---------------------------

def phylogeny_align_to_tree_mafft_fasttree(
    *,
    input_sequences: Path,
    output_alignment: Path,
    output_masked_alignment: Path,
    output_tree: Path,
    output_rooted_tree: Path,
    n_threads: Union[str, int] = 1,
    show_stdout: bool = False,
) -> None:
    cmd = build_action(
        "phylogeny", "align-to-tree-mafft-fasttree",
        inputs={"sequences": input_sequences},
        parameters={"n_threads": n_threads},
        outputs={
            "alignment": output_alignment,
            "masked_alignment": output_masked_alignment,
            "tree": output_tree,
            "rooted_tree": output_rooted_tree,
        },
    )
    _run(cmd, show_stdout=show_stdout)
