"""QIIME command construction and artifact helpers (no QIIME install needed)."""

import subprocess
import zipfile
from pathlib import Path

import pytest

from ampseq.errors import ClassificationError
from ampseq.qiime import commands as qiime
from ampseq.qiime.artifacts import feature_id, read_artifact_member
from ampseq.qiime.classify import SklearnClassifier, VsearchConsensusClassifier
from ampseq.utils.runner import run_command


@pytest.fixture
def issued(monkeypatch):
    calls = []
    monkeypatch.setattr(qiime, "run_command", lambda cmd, **kw: calls.append((cmd, kw)))
    return calls


def test_build_action_flags():
    cmd = qiime.build_action(
        "feature-classifier", "classify-consensus-vsearch",
        inputs={"reference_reads": Path("refs.qza")},
        parameters={"perc_identity": 0.8, "search_exact": False, "top_hits_only": True},
        output_dir=Path("out"),
    )
    assert cmd == [
        "qiime", "feature-classifier", "classify-consensus-vsearch",
        "--i-reference-reads", "refs.qza",
        "--p-perc-identity", "0.8",
        "--p-no-search-exact",
        "--p-top-hits-only",
        "--output-dir", "out",
    ]


def test_classify_sklearn_command(issued):
    qiime.classify_sklearn(
        input_reads=Path("q.qza"), input_classifier=Path("c.qza"),
        output_classification=Path("t.qza"), confidence=0.5, read_orientation="auto",
    )
    cmd, kw = issued[0]
    assert cmd[:3] == ["qiime", "feature-classifier", "classify-sklearn"]
    assert cmd[cmd.index("--p-confidence") + 1] == "0.5"
    assert cmd[cmd.index("--o-classification") + 1] == "t.qza"
    assert kw == {"capture": True}


def test_tree_command_threads(issued):
    qiime.phylogeny_align_to_tree_mafft_fasttree(
        input_sequences=Path("s.qza"), output_alignment=Path("a.qza"),
        output_masked_alignment=Path("m.qza"), output_tree=Path("t.qza"),
        output_rooted_tree=Path("r.qza"), n_threads=4, show_stdout=True,
    )
    cmd, kw = issued[0]
    assert cmd[cmd.index("--p-n-threads") + 1] == "4"
    assert "--o-rooted-tree" in cmd
    assert kw["capture"] is False


def test_read_artifact_member(tmp_path):
    qza = tmp_path / "taxonomy.qza"
    with zipfile.ZipFile(qza, "w") as z:
        z.writestr("0f1e/metadata.yaml", "uuid: 0f1e\n")
        z.writestr("0f1e/data/taxonomy.tsv", "Feature ID\tTaxon\n")
    assert read_artifact_member(qza, "taxonomy.tsv") == "Feature ID\tTaxon\n"
    with pytest.raises(FileNotFoundError):
        read_artifact_member(qza, "tree.nwk")


def test_feature_id_is_md5():
    assert feature_id("ACGT") == "f1f8f4bf413b16ad135722aa4591043e"


def test_missing_references_are_classification_errors(tmp_path):
    with pytest.raises(ClassificationError) as exc:
        SklearnClassifier(tmp_path / "missing.qza", tmp_path).classify(["ACGT"])
    assert exc.value.stage == "taxonomy/tier1"
    with pytest.raises(ClassificationError) as exc:
        VsearchConsensusClassifier(tmp_path / "r.qza", tmp_path / "t.qza", tmp_path).classify(["ACGT"])
    assert exc.value.tier == 2


def test_run_command_reraises_tool_failure():
    with pytest.raises(subprocess.CalledProcessError) as exc:
        run_command(["sh", "-c", "echo boom >&2; exit 3"], capture=True)
    assert exc.value.returncode == 3
    assert "boom" in exc.value.stderr


def test_run_command_captures_output():
    assert run_command(["sh", "-c", "echo ok"], capture=True).stdout == "ok\n"
