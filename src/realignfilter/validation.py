from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"
_INDEX_SUFFIXES = (".mmi", ".fa", ".fasta", ".fna", ".fa.gz", ".fasta.gz", ".fna.gz")


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM has an index; raise ValueError with fix instructions."""
    bam = Path(bam_path)
    candidates = [
        bam.with_suffix(bam.suffix + ".bai"),
        bam.with_suffix(".bai"),
        bam.with_suffix(bam.suffix + ".csi"),
    ]
    if any(c.exists() for c in candidates):
        return
    raise ValueError("BAM is not indexed. Run: samtools index " + str(bam))


def check_vcf_index(vcf_path: str | Path) -> None:
    """Warn about unindexed VCFs; they are read sequentially so an index is optional."""
    vcf = Path(vcf_path)
    if vcf.suffixes[-2:] == [".vcf", ".gz"]:
        tbi = vcf.with_suffix(vcf.suffix + ".tbi")
        csi = vcf.with_suffix(vcf.suffix + ".csi")
        if not (tbi.exists() or csi.exists()):
            logger.info("VCF has no tabix index; reading sequentially: %s", vcf)
    elif vcf.suffix not in {".vcf", ".bcf"}:
        raise ValueError(f"Unrecognised variant file extension (expected .vcf, .vcf.gz or .bcf): {vcf}")


def check_secondary_index(index_path: str | Path) -> Path:
    """Validate the realignment reference (minimap2 .mmi index or FASTA)."""
    p = Path(index_path).expanduser()
    if not p.exists():
        raise FileNotFoundError(f"Realignment index not found: {p}")
    if not p.is_file():
        raise ValueError(f"Realignment index is not a file: {p}")
    if not any(p.name.endswith(s) for s in _INDEX_SUFFIXES):
        logger.warning(
            "Realignment index %s has an unexpected extension; expected one of %s",
            p,
            ", ".join(_INDEX_SUFFIXES),
        )
    return p


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig


def same_contig(a: str, b: str) -> bool:
    """Compare contig names irrespective of chr-prefix style."""
    return remap_contig(a, "ensembl") == remap_contig(b, "ensembl")


def check_contig_overlap(vcf_contigs: Iterable[str], bam_contigs: Iterable[str]) -> List[str]:
    """Return the VCF contigs present in the BAM; raise ValueError if there are none."""
    vcf_list = list(vcf_contigs)
    bam_set = set(bam_contigs)
    shared = [c for c in vcf_list if c in bam_set]
    if vcf_list and bam_set and not shared:
        raise ValueError(
            "Contig mismatch between BAM and VCF (e.g., chr1 vs 1). "
            "Both inputs must use the same contig naming."
        )
    return shared


def resolve_contig_style(requested: str, bam_style: str) -> str:
    """Turn ``auto`` into the BAM's detected style; stays ``auto`` if that is unknown."""
    if requested != "auto":
        return requested
    if bam_style in {"ucsc", "ensembl"}:
        return bam_style
    return "auto"
