# src/ampseq/config/schema.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_RANKS: Tuple[str, ...] = ("domain", "phylum", "class", "order", "family", "genus", "species")


class DomainProfile(BaseModel):
    """Primer/trim profile for one target domain. Immutable."""
    model_config = ConfigDict(frozen=True)

    domain: str
    kingdom_label: str          # label the reference databases use at the coarsest rank
    trim_left_f: int
    trim_left_r: int
    trunc_len_f: int
    trunc_len_r: int


# One lookup at FilterStage construction; nothing else branches on the domain.
DOMAIN_PROFILES: Dict[str, DomainProfile] = {
    # 515F-Y / 806RB (V4)
    "Bacteria": DomainProfile(
        domain="Bacteria", kingdom_label="Bacteria",
        trim_left_f=19, trim_left_r=20, trunc_len_f=240, trunc_len_r=160,
    ),
    # Arch519F / Arch915R
    "Archaea": DomainProfile(
        domain="Archaea", kingdom_label="Archaea",
        trim_left_f=17, trim_left_r=20, trunc_len_f=250, trunc_len_r=220,
    ),
    # TAReuk454FWD1 / TAReukREV3 (18S V4)
    "Eukaryote": DomainProfile(
        domain="Eukaryote", kingdom_label="Eukaryota",
        trim_left_f=20, trim_left_r=21, trunc_len_f=250, trunc_len_r=200,
    ),
}


def get_domain_profile(domain: str) -> DomainProfile:
    try:
        return DOMAIN_PROFILES[domain]
    except KeyError:
        raise ValueError(
            f"Unknown domain {domain!r}; expected one of: {', '.join(DOMAIN_PROFILES)}"
        ) from None


class Params(BaseModel):
    # samples
    domain: str = "Bacteria"
    paired: bool = True
    fwd_pattern: str = "_R1_001.fastq"
    rev_pattern: str = "_R2_001.fastq"
    delimiter: str = "_"
    match_domain_token: bool = False

    # metadata
    negative_column: str = "negative"

    # filter (None = take from the domain profile)
    trim_left_f: Optional[int] = None
    trim_left_r: Optional[int] = None
    trunc_len_f: Optional[int] = None
    trunc_len_r: Optional[int] = None
    max_n: int = 0
    max_ee_f: float = 2.0
    max_ee_r: float = 2.0
    trunc_q: int = 2
    min_len: int = 20
    rm_phix: bool = True
    phix_fasta: Optional[Path] = None

    # error learning / denoising
    seed: int = 100
    n_bases_learn: int = 100_000_000
    min_abundance: int = 2
    omega_fold: float = 3.0

    # merging
    min_overlap: int = 12
    max_mismatch: int = 0
    min_merge_fraction: float = 0.5

    # chimeras
    chimera_method: str = "consensus"
    min_fold_parent: float = 1.0
    min_sample_fraction: float = 0.9
    chimera_warn_fraction: float = 0.25

    # taxonomy
    ranks: List[str] = Field(default_factory=lambda: list(DEFAULT_RANKS))
    primary_classifier: Optional[Path] = None
    primary_confidence: float = 0.5
    read_orientation: str = "auto"
    secondary_reference_reads: Optional[Path] = None
    secondary_reference_taxonomy: Optional[Path] = None
    secondary_confidence: float = 0.6
    secondary_perc_identity: float = 0.8
    secondary_strand: str = "both"
    tier2_trigger_rank: str = "phylum"
    unresolved_root_label: str = "Unclassified"
    n_jobs: int = 1

    # contaminants
    contaminant_method: str = "prevalence"
    contaminant_threshold: float = 0.5

    # phylogeny / output
    build_tree: bool = True
    id_prefix: str = "ASV"

    # display
    show_qiime: bool = False

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, v: str) -> str:
        get_domain_profile(v)
        return v

    @field_validator("chimera_method")
    @classmethod
    def _check_chimera(cls, v: str) -> str:
        if v != "consensus":
            raise ValueError("chimera_method must be 'consensus'")
        return v

    @field_validator("contaminant_method")
    @classmethod
    def _check_contam(cls, v: str) -> str:
        if v != "prevalence":
            raise ValueError("contaminant_method must be 'prevalence'")
        return v

    @field_validator("min_fold_parent")
    @classmethod
    def _check_fold(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("min_fold_parent must be >= 1.0 (parents are never less abundant)")
        return v

    @field_validator("secondary_strand")
    @classmethod
    def _check_strand(cls, v: str) -> str:
        if v not in ("both", "plus"):
            raise ValueError("secondary_strand must be one of: both, plus")
        return v

    @field_validator("contaminant_threshold", "primary_confidence", "secondary_confidence",
                     "min_sample_fraction", "min_merge_fraction", "chimera_warn_fraction")
    @classmethod
    def _check_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be within [0, 1]")
        return v

    @model_validator(mode="after")
    def _check_trigger_rank(self) -> "Params":
        if len(self.ranks) < 2:
            raise ValueError("ranks must name at least two levels")
        if self.tier2_trigger_rank not in self.ranks[1:]:
            raise ValueError("tier2_trigger_rank must be one of the ranks below the coarsest")
        return self

    def profile(self) -> DomainProfile:
        """Domain profile with any explicit trim/trunc overrides applied."""
        base = get_domain_profile(self.domain)
        overrides = {
            k: getattr(self, k)
            for k in ("trim_left_f", "trim_left_r", "trunc_len_f", "trunc_len_r")
            if getattr(self, k) is not None
        }
        return base.model_copy(update=overrides) if overrides else base
