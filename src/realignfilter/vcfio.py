"""VCF input and output (pysam)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Set

import pysam

from . import __version__
from .models import ALIGNMENT_ARTIFACT_FILTER, FilterVerdict, RealignmentOutcome, SampleCall, Variant

logger = logging.getLogger(__name__)


class MalformedVariantError(ValueError):
    """Raised for VCF records the filter refuses to guess about."""


class OutputSinkError(RuntimeError):
    """Raised when the output VCF cannot be written."""


# INFO key -> (outcome or None for the supporting-read total, description)
_COUNT_FIELDS = [
    ("RA_SUPPORT", None, "Reads from variant-carrying samples that plausibly support an ALT allele"),
    (
        "RA_CONFIDENT",
        RealignmentOutcome.CONFIDENT_AT_ORIGINAL_LOCUS,
        "Supporting reads that realigned confidently to the called locus",
    ),
    ("RA_DISCORDANT", RealignmentOutcome.DISCORDANT, "Supporting reads that realigned confidently elsewhere"),
    ("RA_AMBIGUOUS", RealignmentOutcome.AMBIGUOUS, "Supporting reads whose realignment was ambiguous"),
    ("RA_FAILED", RealignmentOutcome.FAILED, "Supporting reads that failed to realign"),
]


def variant_from_record(rec: pysam.VariantRecord) -> Variant:
    """Convert a pysam record; the record is kept as ``Variant.source`` for output."""
    if rec.ref is None or rec.ref == "":
        raise MalformedVariantError(f"Record at {rec.contig}:{rec.pos} has no REF allele")

    ref = rec.ref.upper()
    alts = tuple(a.upper() for a in (rec.alts or ()))

    samples = []
    for name in rec.samples:
        alleles = rec.samples[name].allele_indices
        samples.append(SampleCall(sample=str(name), alleles=tuple(alleles or ())))

    rid = rec.id if rec.id is not None else f"{rec.contig}:{rec.pos}:{ref}:{','.join(alts) or '.'}"
    return Variant(
        contig=str(rec.contig),
        pos=int(rec.pos),
        ref=ref,
        alts=alts,
        samples=tuple(samples),
        id=rid,
        filters=tuple(rec.filter.keys()),
        source=rec,
    )


class VariantReader:
    """Sequential reader over a coordinate-sorted VCF/BCF.

    Raises MalformedVariantError as soon as the input is found to be unsorted.
    """

    def __init__(self, vcf_path: str | Path) -> None:
        self.path = Path(vcf_path)
        if not self.path.exists():
            raise FileNotFoundError(f"VCF not found: {self.path}")
        self._vcf = pysam.VariantFile(str(self.path))

    @property
    def header(self) -> pysam.VariantHeader:
        return self._vcf.header

    @property
    def samples(self) -> List[str]:
        return list(self._vcf.header.samples)

    @property
    def contigs(self) -> List[str]:
        return list(self._vcf.header.contigs)

    def __iter__(self) -> Iterator[Variant]:
        finished_contigs: Set[str] = set()
        current: Optional[str] = None
        last_pos = 0
        for rec in self._vcf:
            contig = str(rec.contig)
            if contig != current:
                if contig in finished_contigs:
                    raise MalformedVariantError(
                        f"VCF is not sorted: contig {contig} reappears at {contig}:{rec.pos}"
                    )
                if current is not None:
                    finished_contigs.add(current)
                current = contig
                last_pos = 0
            if rec.pos < last_pos:
                raise MalformedVariantError(
                    f"VCF is not sorted: {contig}:{rec.pos} follows {contig}:{last_pos}"
                )
            last_pos = rec.pos
            yield variant_from_record(rec)

    def close(self) -> None:
        self._vcf.close()

    def __enter__(self) -> "VariantReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _output_mode(path: Path) -> str:
    if path.suffix == ".bcf":
        return "wb"
    if path.suffix == ".gz":
        return "wz"
    return "w"


class VcfVariantSink:
    """Writes one annotated record per input variant.

    The output header is the input header plus the ``alignment_artifact`` FILTER
    line and the ``RA_*`` INFO count fields. Records that were not evaluated (no
    ALT allele, or skipped as already filtered) are written with FILTER and INFO
    exactly as read.
    """

    def __init__(self, out_path: str | Path, template: pysam.VariantHeader, *, index: bool = True) -> None:
        self.path = Path(out_path)
        self.index = index
        header = template.copy()
        if ALIGNMENT_ARTIFACT_FILTER not in header.filters:
            header.add_line(
                f"##FILTER=<ID={ALIGNMENT_ARTIFACT_FILTER},"
                'Description="Supporting reads realign away from the called locus on the secondary reference">'
            )
        for key, _, desc in _COUNT_FIELDS:
            if key not in header.info:
                header.info.add(key, number=1, type="Integer", description=desc)
        header.add_meta("realignfilterVersion", __version__)

        try:
            self._vcf: Optional[pysam.VariantFile] = pysam.VariantFile(
                str(self.path), _output_mode(self.path), header=header
            )
        except (OSError, ValueError) as e:
            raise OutputSinkError(f"Cannot open output VCF {self.path}: {e}") from e
        self.records_written = 0

    def write(self, variant: Variant, verdict: FilterVerdict) -> None:
        if self._vcf is None:
            raise OutputSinkError(f"Output VCF {self.path} is already closed")

        if variant.source is not None:
            rec = variant.source.copy()
            rec.translate(self._vcf.header)
        else:
            rec = self._vcf.new_record(
                contig=variant.contig,
                start=variant.pos - 1,
                alleles=(variant.ref,) + tuple(variant.alts),
                id=variant.id,
            )

        if verdict.evaluated:
            rec.filter.clear()
            for f in variant.filters:
                rec.filter.add(f)
            if not variant.filters:
                rec.filter.add("PASS")
            for key, outcome, _ in _COUNT_FIELDS:
                if outcome is None:
                    rec.info[key] = int(verdict.supporting_reads)
                else:
                    rec.info[key] = int(verdict.outcome_counts.get(outcome, 0))
        elif variant.source is None:
            for f in variant.filters:
                rec.filter.add(f)

        try:
            self._vcf.write(rec)
        except (OSError, ValueError) as e:
            raise OutputSinkError(f"Failed writing {variant.locus} to {self.path}: {e}") from e
        self.records_written += 1

    def close(self) -> None:
        if self._vcf is None:
            return
        vcf, self._vcf = self._vcf, None
        try:
            vcf.close()
        except OSError as e:
            raise OutputSinkError(f"Failed closing output VCF {self.path}: {e}") from e
        if self.index and self.path.suffix == ".gz":
            pysam.tabix_index(str(self.path), preset="vcf", force=True)
        logger.info("Wrote %d records to %s", self.records_written, self.path)
