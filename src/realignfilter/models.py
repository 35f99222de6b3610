from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Tuple


class CigarOp(IntEnum):
    """CIGAR operators. Values are the BAM operator codes used by pysam."""

    MATCH = 0
    INSERTION = 1
    DELETION = 2
    SKIP = 3
    SOFT_CLIP = 4
    HARD_CLIP = 5
    PADDING = 6
    SEQ_MATCH = 7
    SEQ_MISMATCH = 8

    @property
    def consumes_read(self) -> bool:
        return self in _READ_CONSUMING

    @property
    def consumes_reference(self) -> bool:
        return self in _REF_CONSUMING

    @property
    def is_aligned(self) -> bool:
        # M, = and X: one read base against one reference base
        return self in _ALIGNED

    @property
    def symbol(self) -> str:
        return "MIDNSHP=X"[int(self)]


_READ_CONSUMING = frozenset(
    {CigarOp.MATCH, CigarOp.INSERTION, CigarOp.SOFT_CLIP, CigarOp.SEQ_MATCH, CigarOp.SEQ_MISMATCH}
)
_REF_CONSUMING = frozenset(
    {CigarOp.MATCH, CigarOp.DELETION, CigarOp.SKIP, CigarOp.SEQ_MATCH, CigarOp.SEQ_MISMATCH}
)
_ALIGNED = frozenset({CigarOp.MATCH, CigarOp.SEQ_MATCH, CigarOp.SEQ_MISMATCH})


@dataclass(frozen=True)
class CigarElement:
    op: CigarOp
    length: int

    def __str__(self) -> str:
        return f"{self.length}{self.op.symbol}"


@dataclass(frozen=True)
class SampleCall:
    """Genotype call of one sample at one variant.

    ``alleles`` holds GT allele indices; ``None`` marks a no-call.
    """

    sample: str
    alleles: Tuple[Optional[int], ...]

    @property
    def is_hom_ref(self) -> bool:
        return len(self.alleles) > 0 and all(a == 0 for a in self.alleles)


@dataclass(frozen=True)
class Variant:
    """A called variant record.

    Attributes
    ----------
    contig:
        Contig name as present in the VCF.
    pos:
        1-based position of the first reference base.
    ref:
        Reference allele, uppercase.
    alts:
        Alternate alleles in declaration order.
    samples:
        Per-sample genotype calls.
    id:
        VCF ID, or ``CHROM:POS:REF:ALT`` when absent.
    filters:
        FILTER names already present on the input record.
    source:
        Originating pysam record (if any); used by the VCF sink and excluded
        from equality.
    """

    contig: str
    pos: int
    ref: str
    alts: Tuple[str, ...]
    samples: Tuple[SampleCall, ...] = ()
    id: Optional[str] = None
    filters: Tuple[str, ...] = ()
    source: Any = field(default=None, compare=False, repr=False)

    @property
    def locus(self) -> str:
        return f"{self.contig}:{self.pos}"

    @property
    def is_filtered(self) -> bool:
        return any(f != "PASS" for f in self.filters)

    def variant_samples(self) -> frozenset:
        """Samples whose genotype is not homozygous-reference."""
        return frozenset(s.sample for s in self.samples if not s.is_hom_ref)


@dataclass(frozen=True)
class Read:
    """An aligned read, reduced to what the support classifier needs."""

    name: str
    contig: str
    reference_start: int  # 1-based first aligned base
    cigar: Tuple[CigarElement, ...]
    bases: str
    sample: Optional[str]
    mapping_quality: int
    qualities: Optional[Tuple[int, ...]] = None

    @property
    def soft_start(self) -> int:
        """Reference coordinate the first read base would occupy if soft clips were aligned."""
        clipped = 0
        for el in self.cigar:
            if el.op is CigarOp.HARD_CLIP:
                continue
            if el.op is CigarOp.SOFT_CLIP:
                clipped += el.length
                continue
            break
        return self.reference_start - clipped

    @property
    def cigar_string(self) -> str:
        return "".join(str(el) for el in self.cigar) or "*"


def is_symbolic_allele(allele: str) -> bool:
    """``<ID>`` alleles, breakends and the ``*`` spanning deletion carry no literal bases."""
    if allele == "*":
        return True
    if allele.startswith("<") and allele.endswith(">"):
        return True
    if "[" in allele or "]" in allele:
        return True
    # single breakends: G. / .G
    return len(allele) > 1 and (allele.startswith(".") or allele.endswith("."))


def allele_length(allele: str) -> int:
    """Bases spelled out by an allele; symbolic alleles have length 0."""
    return 0 if is_symbolic_allele(allele) else len(allele)


class RealignmentOutcome(Enum):
    CONFIDENT_AT_ORIGINAL_LOCUS = "confident"
    DISCORDANT = "discordant"
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"


class FilterStatus(Enum):
    PASS = "PASS"
    FILTER = "FILTER"


ALIGNMENT_ARTIFACT_FILTER = "alignment_artifact"


def empty_outcome_counts() -> Dict[RealignmentOutcome, int]:
    return {o: 0 for o in RealignmentOutcome}


@dataclass(frozen=True)
class FilterVerdict:
    """Per-variant decision plus the counts it was derived from."""

    status: FilterStatus
    outcome_counts: Dict[RealignmentOutcome, int] = field(default_factory=empty_outcome_counts)
    reads_evaluated: int = 0
    supporting_reads: int = 0
    # supporting reads whose outcome the decision policy counts as discordant
    discordant_reads: int = 0
    evaluated: bool = True
    filter_name: str = ALIGNMENT_ARTIFACT_FILTER

    @property
    def is_filtered(self) -> bool:
        return self.status is FilterStatus.FILTER
