"""Read source over one or more indexed BAM/CRAM files (pysam)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pysam

from .cigar import cigar_from_tuples
from .models import Read

logger = logging.getLogger(__name__)


def read_groups_to_samples(header: pysam.AlignmentHeader) -> Dict[str, str]:
    """Map read-group ID -> SM sample name from a BAM header."""
    out: Dict[str, str] = {}
    for rg in header.to_dict().get("RG", []):
        if "ID" in rg and "SM" in rg:
            out[str(rg["ID"])] = str(rg["SM"])
    return out


def read_from_segment(segment: pysam.AlignedSegment, sample: Optional[str]) -> Read:
    """Convert a mapped pysam segment. Raises CigarParseError on a corrupt CIGAR."""
    quals = segment.query_qualities
    return Read(
        name=str(segment.query_name),
        contig=str(segment.reference_name),
        reference_start=int(segment.reference_start) + 1,
        cigar=cigar_from_tuples(segment.cigartuples),
        bases=segment.query_sequence or "",
        sample=sample,
        mapping_quality=int(segment.mapping_quality),
        qualities=tuple(int(q) for q in quals) if quals is not None else None,
    )


class ReadSource:
    """Fetches reads overlapping a variant from one or more BAMs.

    Parameters
    ----------
    bam_paths:
        Coordinate-sorted, indexed BAM/CRAM files.
    default_sample:
        Sample used for reads without a resolvable read group. If None and the
        file declares exactly one sample, that sample is used.
    reference_fasta:
        Needed for CRAM input.
    """

    def __init__(
        self,
        bam_paths: Sequence[str | Path],
        *,
        default_sample: Optional[str] = None,
        skip_duplicates: bool = True,
        include_secondary: bool = False,
        include_supplementary: bool = False,
        min_mapping_quality: int = 0,
        reference_fasta: Optional[str | Path] = None,
    ) -> None:
        if len(bam_paths) == 0:
            raise ValueError("At least one BAM is required")
        self.skip_duplicates = skip_duplicates
        self.include_secondary = include_secondary
        self.include_supplementary = include_supplementary
        self.min_mapping_quality = int(min_mapping_quality)

        self._files: List[pysam.AlignmentFile] = []
        self._rg_samples: List[Dict[str, str]] = []
        self._defaults: List[Optional[str]] = []
        for p in bam_paths:
            kwargs = {"reference_filename": str(reference_fasta)} if reference_fasta else {}
            af = pysam.AlignmentFile(str(p), **kwargs)
            rg = read_groups_to_samples(af.header)
            samples = sorted(set(rg.values()))
            fallback = default_sample
            if fallback is None and len(samples) == 1:
                fallback = samples[0]
            self._files.append(af)
            self._rg_samples.append(rg)
            self._defaults.append(fallback)

        self.counts = {
            "reads_fetched": 0,
            "reads_unmapped": 0,
            "reads_skipped_secondary": 0,
            "reads_skipped_supplementary": 0,
            "reads_skipped_duplicates": 0,
            "reads_skipped_qcfail": 0,
            "reads_skipped_mapq": 0,
            "reads_returned": 0,
        }

    @property
    def contigs(self) -> List[str]:
        seen: List[str] = []
        for af in self._files:
            for c in af.references:
                if c not in seen:
                    seen.append(c)
        return seen

    def _keep(self, seg: pysam.AlignedSegment) -> bool:
        if seg.is_unmapped:
            self.counts["reads_unmapped"] += 1
            return False
        if seg.is_secondary and not self.include_secondary:
            self.counts["reads_skipped_secondary"] += 1
            return False
        if seg.is_supplementary and not self.include_supplementary:
            self.counts["reads_skipped_supplementary"] += 1
            return False
        if self.skip_duplicates and seg.is_duplicate:
            self.counts["reads_skipped_duplicates"] += 1
            return False
        if seg.is_qcfail:
            self.counts["reads_skipped_qcfail"] += 1
            return False
        if seg.mapping_quality < self.min_mapping_quality:
            self.counts["reads_skipped_mapq"] += 1
            return False
        return True

    def fetch(self, contig: str, start: int, end: int) -> List[Read]:
        """Reads overlapping the 1-based inclusive interval ``[start, end]``."""
        out: List[Read] = []
        for af, rg, fallback in zip(self._files, self._rg_samples, self._defaults):
            if contig not in af.references:
                continue
            for seg in af.fetch(contig, start - 1, end):
                self.counts["reads_fetched"] += 1
                if not self._keep(seg):
                    continue
                sample = fallback
                if seg.has_tag("RG"):
                    sample = rg.get(str(seg.get_tag("RG")), fallback)
                out.append(read_from_segment(seg, sample))
        self.counts["reads_returned"] += len(out)
        return out

    def close(self) -> None:
        for af in self._files:
            af.close()
        self._files = []

    def __enter__(self) -> "ReadSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
