"""CIGAR parsing and reference-to-read coordinate translation.

Coordinates are 1-based on the reference and 0-based on the read. The walk
starts at the read's *soft start*: soft-clipped bases are laid out on virtual
reference positions so that the first read base sits at ``soft_start``. Clipped
bases advance the read cursor but never count as aligned.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from .models import CigarElement, CigarOp


_CIGAR_TOKEN = re.compile(r"(\d+)([MIDNSHP=X])")
_SYMBOL_TO_OP = {op.symbol: op for op in CigarOp}


class CigarParseError(ValueError):
    """Raised when a CIGAR cannot be turned into a list of operations."""


class ClippingTail(Enum):
    """Which side of a deletion a deletion-interior coordinate resolves to."""

    LEFT_TAIL = "left"
    RIGHT_TAIL = "right"


@dataclass(frozen=True)
class ReadOffset:
    offset: int
    inside_deletion: bool = False


def parse_cigar(cigar: str) -> Tuple[CigarElement, ...]:
    """Parse a SAM CIGAR string such as ``10S40M2I48M``.

    ``*`` (unavailable) parses to an empty tuple.
    """
    if cigar == "*":
        return ()
    out = []
    pos = 0
    for m in _CIGAR_TOKEN.finditer(cigar):
        if m.start() != pos:
            raise CigarParseError(f"Bad CIGAR: {cigar!r} (unexpected text at offset {pos})")
        length = int(m.group(1))
        if length <= 0:
            raise CigarParseError(f"Bad CIGAR: {cigar!r} (non-positive length)")
        out.append(CigarElement(_SYMBOL_TO_OP[m.group(2)], length))
        pos = m.end()
    if pos != len(cigar) or not out:
        raise CigarParseError(f"Bad CIGAR: {cigar!r}")
    return tuple(out)


def cigar_from_tuples(cigartuples: Optional[Iterable[Tuple[int, int]]]) -> Tuple[CigarElement, ...]:
    """Convert pysam ``cigartuples`` into CigarElements."""
    if cigartuples is None:
        return ()
    out = []
    for op, length in cigartuples:
        try:
            cop = CigarOp(op)
        except ValueError:
            raise CigarParseError(f"Unknown CIGAR operator code: {op}") from None
        if length <= 0:
            raise CigarParseError(f"Non-positive CIGAR length {length} for operator {cop.symbol}")
        out.append(CigarElement(cop, int(length)))
    return tuple(out)


def read_length(cigar: Sequence[CigarElement]) -> int:
    """Number of read bases (including soft clips) described by the CIGAR."""
    return sum(el.length for el in cigar if el.op.consumes_read)


def map_reference_to_read(
    soft_start: int,
    cigar: Sequence[CigarElement],
    target: int,
    tail: ClippingTail = ClippingTail.RIGHT_TAIL,
    require_aligned_base: bool = True,
) -> Optional[ReadOffset]:
    """Translate a reference coordinate into a read offset.

    Returns ``None`` when the coordinate is not reached: before the read, past
    its last base, or (with ``require_aligned_base``) inside a soft clip.

    A coordinate inside a deletion or skip resolves to the adjacent read base on
    the requested ``tail`` and is flagged ``inside_deletion``.
    """
    if target < soft_start:
        return None

    ref_pos = soft_start
    read_pos = 0
    for el in cigar:
        op, n = el.op, el.length
        if op is CigarOp.HARD_CLIP or op is CigarOp.PADDING:
            continue

        if op is CigarOp.SOFT_CLIP:
            if target < ref_pos + n:
                if require_aligned_base:
                    return None
                return ReadOffset(read_pos + (target - ref_pos))
            ref_pos += n
            read_pos += n
        elif op.is_aligned:
            if target < ref_pos + n:
                return ReadOffset(read_pos + (target - ref_pos))
            ref_pos += n
            read_pos += n
        elif op is CigarOp.INSERTION:
            read_pos += n
        else:  # DELETION, SKIP
            if target < ref_pos + n:
                offset = read_pos if tail is ClippingTail.RIGHT_TAIL else read_pos - 1
                if offset < 0 or offset >= read_length(cigar):
                    return None
                return ReadOffset(offset, inside_deletion=True)
            ref_pos += n

    return None
