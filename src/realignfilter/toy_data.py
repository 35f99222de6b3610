from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pysam

from .utils import ensure_outdir, write_json

_CONTIG = "chr1"
_REF_LEN = 600
_READ_LEN = 60


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str) -> str:
    for alt in ["A", "C", "G", "T"]:
        if alt != base:
            return alt
    return "A"


def _make_read(
    name: str,
    start0: int,
    seq: str,
    cigartuples: List[Tuple[int, int]],
    read_group: str,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = cigartuples
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    a.set_tag("RG", read_group)
    return a


def make_toy_data(*, outdir: str | Path, seed: Optional[int] = 7) -> Dict[str, str]:
    """Create a tiny reference, BAM, and VCF suitable for quick demos/tests.

    Variants (1-based):
    - chr1:101 SNV carried by half of the TUMOR reads
    - chr1:301 one-base insertion carried by half of the TUMOR reads
    - chr1:451 record without ALT allele

    The reference FASTA doubles as the realignment reference for minimap2.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    ref_seq = "".join(rng.choice("ACGT") for _ in range(_REF_LEN))
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, _CONTIG, ref_seq)
    pysam.faidx(str(ref_fa))

    snv_pos0 = 100
    snv_ref = ref_seq[snv_pos0]
    snv_alt = _mutate_base(snv_ref)

    ins_pos0 = 300
    ins_ref = ref_seq[ins_pos0]
    ins_alt = ins_ref + "A"

    noalt_pos0 = 450

    reads: List[pysam.AlignedSegment] = []
    for rg in ("tumor", "normal"):
        for i in range(10):
            start0 = snv_pos0 - 20 - i
            seq = list(ref_seq[start0 : start0 + _READ_LEN])
            if rg == "tumor" and i % 2 == 0:
                seq[snv_pos0 - start0] = snv_alt
            reads.append(_make_read(f"{rg}_snv_{i}", start0, "".join(seq), [(0, _READ_LEN)], rg))

        for i in range(10):
            start0 = ins_pos0 - 20 - i
            left = ins_pos0 - start0 + 1
            if rg == "tumor" and i % 2 == 0:
                seq = ref_seq[start0 : ins_pos0 + 1] + "A" + ref_seq[ins_pos0 + 1 : start0 + _READ_LEN - 1]
                cig = [(0, left), (1, 1), (0, _READ_LEN - left - 1)]
            else:
                seq = ref_seq[start0 : start0 + _READ_LEN]
                cig = [(0, _READ_LEN)]
            reads.append(_make_read(f"{rg}_ins_{i}", start0, seq, cig, rg))

    reads.sort(key=lambda r: r.reference_start)

    bam_path = outdir_p / "sample.bam"
    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": _CONTIG, "LN": len(ref_seq)}],
        "RG": [{"ID": "tumor", "SM": "TUMOR"}, {"ID": "normal", "SM": "NORMAL"}],
    }
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    vcf_path = outdir_p / "calls.vcf"
    vheader = pysam.VariantHeader()
    vheader.add_meta("fileformat", "VCFv4.2")
    vheader.add_sample("TUMOR")
    vheader.add_sample("NORMAL")
    vheader.contigs.add(_CONTIG, length=len(ref_seq))
    vheader.formats.add("GT", number=1, type="String", description="Genotype")

    records = [
        (snv_pos0, (snv_ref, snv_alt)),
        (ins_pos0, (ins_ref, ins_alt)),
        (noalt_pos0, (ref_seq[noalt_pos0],)),
    ]
    with pysam.VariantFile(str(vcf_path), "w", header=vheader) as vcf:
        for pos0, alleles in records:
            rec = vcf.new_record(
                contig=_CONTIG,
                start=pos0,
                stop=pos0 + len(alleles[0]),
                alleles=alleles,
                qual=60,
            )
            has_alt = len(alleles) > 1
            rec.samples["TUMOR"]["GT"] = (0, 1) if has_alt else (0, 0)
            rec.samples["NORMAL"]["GT"] = (0, 0)
            vcf.write(rec)

    vcf_gz = outdir_p / "calls.vcf.gz"
    pysam.tabix_compress(str(vcf_path), str(vcf_gz), force=True)
    pysam.tabix_index(str(vcf_gz), preset="vcf", force=True)

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "vcf": str(vcf_gz),
        "outdir": str(outdir_p),
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
