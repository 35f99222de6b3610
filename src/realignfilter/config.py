"""Run configuration.

All knobs that change externally visible behaviour live here. In particular the
decision policy has no implicit default threshold: a run must state how many
(or what fraction of) supporting reads have to realign away from the called
locus before a variant is filtered.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from .models import RealignmentOutcome
from .support import DEFAULT_INDEL_START_TOLERANCE

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for invalid or incomplete configuration."""


DEFAULT_DISCORDANT_OUTCOMES: FrozenSet[RealignmentOutcome] = frozenset(
    {
        RealignmentOutcome.DISCORDANT,
        RealignmentOutcome.AMBIGUOUS,
        RealignmentOutcome.FAILED,
    }
)


@dataclass(frozen=True)
class DecisionPolicy:
    """When to flag a variant as an alignment artifact.

    min_discordant_reads:
        Filter if at least this many supporting reads realign with an outcome in
        ``discordant_outcomes``.
    min_discordant_fraction:
        Filter if at least this fraction of supporting reads do.
    discordant_outcomes:
        Realignment outcomes counted against the variant.

    When both thresholds are set, meeting either one filters the variant. A
    variant with no supporting reads always passes.
    """

    min_discordant_reads: Optional[int] = None
    min_discordant_fraction: Optional[float] = None
    discordant_outcomes: FrozenSet[RealignmentOutcome] = DEFAULT_DISCORDANT_OUTCOMES

    def validate(self) -> None:
        if self.min_discordant_reads is None and self.min_discordant_fraction is None:
            raise ConfigError(
                "No filter threshold configured. Set min_discordant_reads "
                "(--min-discordant-reads) and/or min_discordant_fraction (--min-discordant-fraction)."
            )
        if self.min_discordant_reads is not None and self.min_discordant_reads < 1:
            raise ConfigError(f"min_discordant_reads must be >= 1 (got {self.min_discordant_reads})")
        if self.min_discordant_fraction is not None and not (0.0 < self.min_discordant_fraction <= 1.0):
            raise ConfigError(
                f"min_discordant_fraction must be in (0, 1] (got {self.min_discordant_fraction})"
            )
        if not self.discordant_outcomes:
            raise ConfigError("discordant_outcomes must name at least one realignment outcome")
        if RealignmentOutcome.CONFIDENT_AT_ORIGINAL_LOCUS in self.discordant_outcomes:
            raise ConfigError("CONFIDENT_AT_ORIGINAL_LOCUS cannot be counted as discordant")

    def discordant_count(self, outcome_counts: Mapping[RealignmentOutcome, int]) -> int:
        return sum(int(outcome_counts.get(o, 0)) for o in self.discordant_outcomes)

    def should_filter(self, outcome_counts: Mapping[RealignmentOutcome, int]) -> bool:
        supporting = sum(int(v) for v in outcome_counts.values())
        if supporting == 0:
            return False
        discordant = self.discordant_count(outcome_counts)
        if self.min_discordant_reads is not None and discordant >= self.min_discordant_reads:
            return True
        if (
            self.min_discordant_fraction is not None
            and discordant / float(supporting) >= self.min_discordant_fraction
        ):
            return True
        return False


@dataclass(frozen=True)
class RealignerConfig:
    """Settings for the minimap2-backed realigner.

    min_mapping_quality:
        Realignments with a lower MAPQ are considered ambiguous.
    preset:
        minimap2 ``-x`` preset (``sr`` for short reads, ``map-ont``/``lr:hq`` for long reads).
    threads:
        minimap2 ``-t`` per invocation.
    max_locus_distance:
        If set, a confident realignment on the read's contig further than this many
        bases from the original alignment start counts as discordant. If None, only
        the contig is compared (useful across reference builds).
    contig_style:
        ``auto``, ``ucsc`` or ``ensembl``; how contig names are reconciled between
        the input BAM and the secondary reference.
    """

    min_mapping_quality: int = 20
    preset: str = "sr"
    threads: int = 1
    max_locus_distance: Optional[int] = None
    contig_style: str = "auto"
    extra_args: List[str] = field(default_factory=list)

    def validate(self) -> None:
        if self.min_mapping_quality < 0:
            raise ConfigError(f"min_mapping_quality must be >= 0 (got {self.min_mapping_quality})")
        if self.threads < 1:
            raise ConfigError(f"threads must be >= 1 (got {self.threads})")
        if self.max_locus_distance is not None and self.max_locus_distance < 0:
            raise ConfigError(f"max_locus_distance must be >= 0 (got {self.max_locus_distance})")
        if self.contig_style not in {"auto", "ucsc", "ensembl"}:
            raise ConfigError(f"contig_style must be auto, ucsc or ensembl (got {self.contig_style!r})")


@dataclass(frozen=True)
class FilterConfig:
    indel_start_tolerance: int = DEFAULT_INDEL_START_TOLERANCE
    policy: DecisionPolicy = field(default_factory=DecisionPolicy)
    realigner: RealignerConfig = field(default_factory=RealignerConfig)
    realignment_workers: int = 1
    realignment_batch_size: int = 64
    skip_filtered_variants: bool = False
    # Read filters applied by the read source
    skip_duplicates: bool = True
    include_secondary: bool = False
    include_supplementary: bool = False
    min_read_mapping_quality: int = 0

    def validate(self) -> None:
        if self.indel_start_tolerance < 0:
            raise ConfigError(f"indel_start_tolerance must be >= 0 (got {self.indel_start_tolerance})")
        if self.realignment_workers < 1:
            raise ConfigError(f"realignment_workers must be >= 1 (got {self.realignment_workers})")
        if self.realignment_batch_size < 1:
            raise ConfigError(
                f"realignment_batch_size must be >= 1 (got {self.realignment_batch_size})"
            )
        if self.min_read_mapping_quality < 0:
            raise ConfigError(
                f"min_read_mapping_quality must be >= 0 (got {self.min_read_mapping_quality})"
            )
        self.policy.validate()
        self.realigner.validate()

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "indel_start_tolerance": self.indel_start_tolerance,
            "policy": {
                "min_discordant_reads": self.policy.min_discordant_reads,
                "min_discordant_fraction": self.policy.min_discordant_fraction,
                "discordant_outcomes": sorted(o.value for o in self.policy.discordant_outcomes),
            },
            "realigner": {
                "min_mapping_quality": self.realigner.min_mapping_quality,
                "preset": self.realigner.preset,
                "threads": self.realigner.threads,
                "max_locus_distance": self.realigner.max_locus_distance,
                "contig_style": self.realigner.contig_style,
                "extra_args": list(self.realigner.extra_args),
            },
            "realignment_workers": self.realignment_workers,
            "realignment_batch_size": self.realignment_batch_size,
            "skip_filtered_variants": self.skip_filtered_variants,
            "skip_duplicates": self.skip_duplicates,
            "include_secondary": self.include_secondary,
            "include_supplementary": self.include_supplementary,
            "min_read_mapping_quality": self.min_read_mapping_quality,
        }


def parse_outcomes(values: Any) -> FrozenSet[RealignmentOutcome]:
    out = set()
    for v in values:
        try:
            out.add(RealignmentOutcome(str(v).lower()))
        except ValueError:
            choices = [o.value for o in RealignmentOutcome]
            raise ConfigError(f"Unknown realignment outcome {v!r}; expected one of {choices}") from None
    return frozenset(out)


def config_from_mapping(data: Mapping[str, Any], base: Optional[FilterConfig] = None) -> FilterConfig:
    """Build a FilterConfig from a (JSON-decoded) mapping, layered over ``base``."""
    cfg = base if base is not None else FilterConfig()

    known = set(cfg.to_jsonable().keys())
    unknown = set(data.keys()) - known
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")

    policy = cfg.policy
    if "policy" in data:
        p = dict(data["policy"])
        if "discordant_outcomes" in p:
            p["discordant_outcomes"] = parse_outcomes(p["discordant_outcomes"])
        try:
            policy = replace(policy, **p)
        except TypeError as e:
            raise ConfigError(f"Invalid policy section: {e}") from None

    realigner = cfg.realigner
    if "realigner" in data:
        try:
            realigner = replace(realigner, **dict(data["realigner"]))
        except TypeError as e:
            raise ConfigError(f"Invalid realigner section: {e}") from None

    flat = {k: v for k, v in data.items() if k not in {"policy", "realigner"}}
    return replace(cfg, policy=policy, realigner=realigner, **flat)


def load_config(path: str | Path, base: Optional[FilterConfig] = None) -> FilterConfig:
    """Load a JSON configuration file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    logger.info("Loaded configuration from %s", path)
    return config_from_mapping(data, base=base)
