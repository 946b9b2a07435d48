# src/ampseq/pipeline/runner.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from ampseq.config.schema import Params
from ampseq.errors import InputError, StageError
from ampseq.metadata.read import SampleMetadata, load_metadata_table
from ampseq.pipeline.contam import ContaminantFilter, ContaminantScorer
from ampseq.pipeline.denoise import DenoiseStage, Denoiser, MergeStage, PairMerger
from ampseq.pipeline.filtering import FilterStage, ReadFilter
from ampseq.pipeline.output import OutputAssembler, assign_identifiers
from ampseq.pipeline.phylogeny import PhylogenyBinder, TreeBuilder
from ampseq.pipeline.table import AbundanceMatrix, ChimeraDetector, VariantTable, sequence_lengths_summary
from ampseq.pipeline.taxonomy import Classifier, TaxonomyResolver
from ampseq.pipeline.tracker import StageTracker, stages_for
from ampseq.qiime.classify import SklearnClassifier, VsearchConsensusClassifier
from ampseq.qiime.phylogeny import MafftFastTreeBuilder
from ampseq.utils.logger import get_logger, log_success
from ampseq.utils.samples import SampleRegistry

LOG = get_logger("pipeline")


@dataclass
class Collaborators:
    """External tools the stages wrap; None selects the built-in default."""
    read_filter: Optional[ReadFilter] = None
    denoiser: Optional[Denoiser] = None
    merger: Optional[PairMerger] = None
    chimera_detector: Optional[ChimeraDetector] = None
    primary: Optional[Classifier] = None
    secondary: Optional[Classifier] = None
    contaminant_scorer: Optional[ContaminantScorer] = None
    tree_builder: Optional[TreeBuilder] = None


@dataclass
class RunResult:
    outputs: Dict[str, Path]
    track: List[Dict[str, object]]
    identifiers: Dict[str, str]
    merge_flagged: List[str] = field(default_factory=list)
    chimera_retained: float = 1.0
    contaminants: Set[str] = field(default_factory=set)
    controls_removed: Set[str] = field(default_factory=set)


class PipelineRunner:
    """Coordinates the end-to-end run: every stage consumes the previous stage's complete output."""

    def __init__(
        self,
        params: Params,
        *,
        fastq_dir: Path,
        metadata_file: Path,
        project_dir: Path,
        collaborators: Optional[Collaborators] = None,
    ) -> None:
        self.params = params
        self.fastq_dir = Path(fastq_dir)
        self.metadata_file = Path(metadata_file)
        self.project_dir = Path(project_dir)
        self.work_dir = self.project_dir / "work"
        self.out_dir = self.project_dir / "output"
        self.collab = collaborators or Collaborators()
        self.registry: Optional[SampleRegistry] = None
        self.metadata: Optional[SampleMetadata] = None
        self.tracker: Optional[StageTracker] = None
        self._partial: Optional[AbundanceMatrix] = None

    # -------- setup ----------------------------------------------------------

    def _classifiers(self):
        p = self.params
        primary = self.collab.primary
        if primary is None:
            if p.primary_classifier is None:
                raise InputError("A primary classifier is required (params.primary_classifier).")
            primary = SklearnClassifier(
                p.primary_classifier, self.work_dir / "taxonomy",
                confidence=p.primary_confidence, read_orientation=p.read_orientation,
                n_jobs=p.n_jobs, show_stdout=p.show_qiime,
            )
        secondary = self.collab.secondary
        if secondary is None and p.secondary_reference_reads and p.secondary_reference_taxonomy:
            secondary = VsearchConsensusClassifier(
                p.secondary_reference_reads, p.secondary_reference_taxonomy, self.work_dir / "taxonomy",
                min_consensus=p.secondary_confidence, perc_identity=p.secondary_perc_identity,
                strand=p.secondary_strand, threads=p.n_jobs, show_stdout=p.show_qiime,
            )
        return primary, secondary

    def _tree_builder(self) -> Optional[TreeBuilder]:
        if not self.params.build_tree:
            return None
        if self.collab.tree_builder is not None:
            return self.collab.tree_builder
        return MafftFastTreeBuilder(self.work_dir / "phylogeny", n_threads=self.params.n_jobs,
                                    show_stdout=self.params.show_qiime)

    def prepare(self) -> SampleRegistry:
        """Resolve samples and metadata; every input error surfaces here, before any stage runs."""
        p = self.params
        registry = SampleRegistry.from_directory(
            self.fastq_dir,
            fwd_pattern=p.fwd_pattern,
            rev_pattern=p.rev_pattern if p.paired else None,
            delimiter=p.delimiter,
            domain_token=p.domain if p.match_domain_token else None,
        )
        metadata = load_metadata_table(self.metadata_file, negative_column=p.negative_column)
        registry.bind_metadata(metadata)
        if registry.negative_controls:
            LOG.info("Negative controls: %s", ", ".join(registry.negative_controls))
        self.registry = registry
        self.metadata = metadata.subset(registry.sample_ids)
        self.tracker = StageTracker(stages_for(p.paired), registry.sample_ids)
        return registry

    # -------- run ------------------------------------------------------------

    def run(self) -> RunResult:
        registry = self.prepare()
        primary, secondary = self._classifiers()
        tree_builder = self._tree_builder()
        self.project_dir.mkdir(parents=True, exist_ok=True)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        try:
            return self._run_stages(registry, self.tracker, self.metadata, primary, secondary, tree_builder)
        except StageError as e:
            LOG.error("Run aborted at stage '%s': %s", e.stage, e)
            self._persist_partial()
            raise

    def _run_stages(self, registry: SampleRegistry, tracker: StageTracker, metadata: SampleMetadata,
                    primary, secondary, tree_builder) -> RunResult:
        p, c = self.params, self.collab

        FilterStage(p, self.work_dir, c.read_filter).run(registry, tracker)
        denoised = DenoiseStage(p, c.denoiser).run(registry, tracker)
        merged = MergeStage(p, c.merger).run(denoised, tracker)

        variant_table = VariantTable(p, c.chimera_detector)
        matrix = variant_table.build(merged.merged)
        self._partial = matrix
        matrix, retained = variant_table.remove_chimeras(matrix, tracker)
        self._partial = matrix
        LOG.info("Variant lengths: %s", ", ".join(sequence_lengths_summary(matrix)))

        resolver = TaxonomyResolver(p, primary, secondary)
        matrix, taxonomy = resolver.run(matrix, tracker)
        self._partial = matrix

        decontam = ContaminantFilter(p, c.contaminant_scorer).run(matrix, taxonomy, metadata, tracker)
        matrix, taxonomy, metadata = decontam.matrix, decontam.taxonomy, decontam.metadata
        self._partial = matrix

        ids = assign_identifiers(matrix, p.id_prefix)
        tree = None
        if tree_builder is not None:
            tree = PhylogenyBinder(tree_builder).bind({ids[v]: v for v in matrix.variants})

        assembler = OutputAssembler(self.out_dir, p.ranks)
        bundle = assembler.rename(matrix, taxonomy, metadata, ids, tree)
        outputs = assembler.write(bundle)
        outputs["track"] = tracker.write_tsv(self.out_dir / "track.tsv")

        log_success(f"Pipeline complete: {len(ids)} ASV(s) across {len(matrix.samples)} sample(s).", LOG)
        return RunResult(
            outputs=outputs,
            track=tracker.finalize(),
            identifiers=ids,
            merge_flagged=merged.flagged,
            chimera_retained=retained,
            contaminants=decontam.contaminants,
            controls_removed=decontam.controls_removed,
        )

    def _persist_partial(self) -> None:
        partial_dir = self.work_dir / "partial"
        if self.tracker is not None:
            self.tracker.write_tsv(partial_dir / "track.tsv")
        if self._partial is not None:
            self._partial.write_tsv(partial_dir / "seqtab.tsv", id_header="sequence")
        LOG.info("Partial tables kept for debugging under %s (not a valid result).", partial_dir)
