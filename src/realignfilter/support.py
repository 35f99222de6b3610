from __future__ import annotations

import logging
from typing import Optional

from .cigar import ClippingTail, map_reference_to_read
from .models import CigarElement, CigarOp, Read, Variant, allele_length

logger = logging.getLogger(__name__)

DEFAULT_INDEL_START_TOLERANCE = 5


def _might_support_deletion(el: CigarElement) -> bool:
    return el.op is CigarOp.DELETION or el.op is CigarOp.SOFT_CLIP


def _might_support_insertion(el: CigarElement) -> bool:
    return el.op is CigarOp.INSERTION or el.op is CigarOp.SOFT_CLIP


def _indel_operator_near(read: Read, variant_offset: int, is_deletion: bool, tolerance: int) -> bool:
    """True if an indel-like CIGAR element starts within ``tolerance`` read bases of the variant.

    The read-position cursor only moves past elements that start outside the
    window, and then by the full element length whatever the operator. Once the
    walk enters the window the cursor stays put, so every later element is
    checked against the same position.

    Indel breakpoints are not uniquely representable (left- and right-aligned
    CIGARs describe the same event), so we look for the right operator type near
    the variant rather than at an exact offset. Soft clips can mask either
    representation and count for both directions.
    """
    check = _might_support_deletion if is_deletion else _might_support_insertion
    read_pos = 0
    for el in read.cigar:
        if abs(read_pos - variant_offset) <= tolerance:
            if check(el):
                return True
        else:
            read_pos += el.length
    return False


def matching_allele(
    read: Read,
    variant: Variant,
    *,
    indel_start_tolerance: int = DEFAULT_INDEL_START_TOLERANCE,
) -> Optional[int]:
    """Index of the first alternate allele the read plausibly supports, or None.

    A return value means "plausible support", not proof: indels are matched by
    operator type within a tolerance window.
    """
    hit = map_reference_to_read(
        read.soft_start,
        read.cigar,
        variant.pos,
        tail=ClippingTail.RIGHT_TAIL,
        require_aligned_base=True,
    )
    if hit is None or hit.inside_deletion:
        return None
    offset = hit.offset

    ref_len = len(variant.ref)
    bases = read.bases
    for i, allele in enumerate(variant.alts):
        alt_len = allele_length(allele)
        if alt_len == ref_len:
            # SNV / MNP: exact base match at the mapped offset
            window = bases[offset : min(offset + len(allele), len(bases))]
            if window == allele:
                return i
        else:
            is_deletion = alt_len < ref_len
            if _indel_operator_near(read, offset, is_deletion, indel_start_tolerance):
                return i
    return None


def supports_variant(
    read: Read,
    variant: Variant,
    *,
    indel_start_tolerance: int = DEFAULT_INDEL_START_TOLERANCE,
) -> bool:
    """Whether the read's bases/CIGAR are consistent with any alternate allele."""
    return matching_allele(read, variant, indel_start_tolerance=indel_start_tolerance) is not None


class VariantSupportClassifier:
    """Per-read support check with a fixed indel start tolerance."""

    def __init__(self, indel_start_tolerance: int = DEFAULT_INDEL_START_TOLERANCE) -> None:
        if indel_start_tolerance < 0:
            raise ValueError(f"indel_start_tolerance must be >= 0 (got {indel_start_tolerance})")
        self.indel_start_tolerance = int(indel_start_tolerance)

    def supports(self, read: Read, variant: Variant) -> bool:
        return supports_variant(read, variant, indel_start_tolerance=self.indel_start_tolerance)

    def matching_allele(self, read: Read, variant: Variant) -> Optional[int]:
        return matching_allele(read, variant, indel_start_tolerance=self.indel_start_tolerance)
