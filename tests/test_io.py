from __future__ import annotations

import json
from pathlib import Path
from typing import List, Sequence

import pysam
import pytest

from realignfilter.artifact_filter import AlignmentArtifactFilter
from realignfilter.bamio import ReadSource, read_from_segment, read_groups_to_samples
from realignfilter.config import DecisionPolicy, FilterConfig
from realignfilter.models import FilterStatus, FilterVerdict, Read, RealignmentOutcome, SampleCall, Variant
from realignfilter.realigner import Realigner, RealignmentError
from realignfilter.runner import run_filter
from realignfilter.toy_data import make_toy_data
from realignfilter.vcfio import MalformedVariantError, OutputSinkError, VariantReader, VcfVariantSink


class AlwaysDiscordant(Realigner):
    def realign(self, read: Read) -> RealignmentOutcome:
        return RealignmentOutcome.DISCORDANT


class BrokenRealigner(Realigner):
    def realign_batch(self, reads: Sequence[Read]) -> List[RealignmentOutcome]:
        raise RealignmentError("index went away")

    def realign(self, read: Read) -> RealignmentOutcome:
        raise AssertionError("not reached")


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


def _config(**kwargs) -> FilterConfig:
    return FilterConfig(policy=DecisionPolicy(min_discordant_reads=1), **kwargs)


def test_variant_reader_on_toy_vcf(toy):
    with VariantReader(toy["vcf"]) as reader:
        assert reader.samples == ["TUMOR", "NORMAL"]
        assert reader.contigs == ["chr1"]
        variants = list(reader)

    assert [v.pos for v in variants] == [101, 301, 451]
    snv, ins, noalt = variants
    assert len(snv.ref) == 1 and len(snv.alts) == 1
    assert ins.alts[0] == ins.ref + "A"
    assert noalt.alts == ()
    assert snv.variant_samples() == frozenset({"TUMOR"})
    assert noalt.variant_samples() == frozenset()
    assert snv.source is not None


def test_variant_reader_rejects_unsorted_input(tmp_path: Path):
    vcf = tmp_path / "unsorted.vcf"
    vcf.write_text(
        "##fileformat=VCFv4.2\n"
        "##contig=<ID=chr1,length=1000>\n"
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n"
        "chr1\t200\t.\tA\tG\t.\tPASS\t.\n"
        "chr1\t100\t.\tC\tT\t.\tPASS\t.\n",
        encoding="utf-8",
    )
    with VariantReader(vcf) as reader:
        with pytest.raises(MalformedVariantError, match="not sorted"):
            list(reader)


def test_variant_reader_missing_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        VariantReader(tmp_path / "nope.vcf.gz")


def test_read_source_resolves_samples(toy):
    with pysam.AlignmentFile(toy["bam"]) as bam:
        assert read_groups_to_samples(bam.header) == {"tumor": "TUMOR", "normal": "NORMAL"}

    with ReadSource([toy["bam"]]) as source:
        assert source.contigs == ["chr1"]
        reads = source.fetch("chr1", 101, 101)
        assert source.counts["reads_returned"] == len(reads)

    assert len(reads) == 20
    assert {r.sample for r in reads} == {"TUMOR", "NORMAL"}
    starts = sorted(r.reference_start for r in reads if r.sample == "TUMOR")
    # 0-based starts 71..80 become 1-based 72..81
    assert starts == list(range(72, 82))
    assert all(r.cigar_string == "60M" for r in reads)
    assert all(r.qualities is not None and len(r.qualities) == 60 for r in reads)


def test_read_source_requires_a_bam():
    with pytest.raises(ValueError):
        ReadSource([])


def test_run_filter_end_to_end(toy, tmp_path: Path):
    out_vcf = tmp_path / "out" / "filtered.vcf.gz"
    summary_json = tmp_path / "out" / "summary.json"
    summary = run_filter(
        vcf_path=toy["vcf"],
        bam_paths=[toy["bam"]],
        out_vcf=out_vcf,
        realigner=AlwaysDiscordant(),
        config=_config(),
        summary_json=summary_json,
        progress=False,
    )

    assert summary["records_written"] == 3
    assert summary["counts"]["variants_filtered"] == 2
    assert summary["counts"]["variants_no_alt"] == 1
    assert summary["outcomes"]["discordant"] == 10
    assert Path(str(out_vcf) + ".tbi").exists()
    assert json.loads(summary_json.read_text(encoding="utf-8"))["records_written"] == 3

    with pysam.VariantFile(str(out_vcf)) as vcf:
        assert "alignment_artifact" in vcf.header.filters
        assert "RA_SUPPORT" in vcf.header.info
        records = list(vcf)

    assert [r.pos for r in records] == [101, 301, 451]
    snv, ins, noalt = records
    for rec in (snv, ins):
        assert list(rec.filter.keys()) == ["alignment_artifact"]
        assert rec.info["RA_SUPPORT"] == 5
        assert rec.info["RA_DISCORDANT"] == 5
        assert rec.info["RA_CONFIDENT"] == 0
    assert list(noalt.filter.keys()) == []
    assert "RA_SUPPORT" not in noalt.info
    # genotypes are carried over untouched
    assert snv.samples["TUMOR"]["GT"] == (0, 1)


def test_run_filter_passes_when_realignment_is_confident(toy, tmp_path: Path):
    class AlwaysHome(Realigner):
        def realign(self, read: Read) -> RealignmentOutcome:
            return RealignmentOutcome.CONFIDENT_AT_ORIGINAL_LOCUS

    out_vcf = tmp_path / "pass.vcf"
    summary = run_filter(
        vcf_path=toy["vcf"],
        bam_paths=[toy["bam"]],
        out_vcf=out_vcf,
        realigner=AlwaysHome(),
        config=_config(realignment_workers=2, realignment_batch_size=2),
        progress=False,
    )
    assert summary["counts"]["variants_filtered"] == 0
    with pysam.VariantFile(str(out_vcf)) as vcf:
        records = list(vcf)
    assert all(list(r.filter.keys()) == ["PASS"] for r in records[:2])
    # the no-ALT record was never evaluated and keeps its empty FILTER
    assert list(records[2].filter.keys()) == []
    assert "RA_CONFIDENT" not in records[2].info
    assert records[0].info["RA_CONFIDENT"] == 5


def test_output_is_closed_when_run_aborts(toy, tmp_path: Path):
    out_vcf = tmp_path / "aborted.vcf"
    with pytest.raises(RealignmentError, match="chr1:101"):
        run_filter(
            vcf_path=toy["vcf"],
            bam_paths=[toy["bam"]],
            out_vcf=out_vcf,
            realigner=BrokenRealigner(),
            config=_config(),
            progress=False,
        )
    with pysam.VariantFile(str(out_vcf)) as vcf:
        assert list(vcf) == []


def test_unevaluated_records_keep_filter_and_info(tmp_path: Path):
    vcf_in = tmp_path / "mixed.vcf"
    vcf_in.write_text(
        "##fileformat=VCFv4.2\n"
        "##contig=<ID=chr1,length=1000>\n"
        "##FILTER=<ID=LowQual,Description=\"Low quality\">\n"
        "##INFO=<ID=DP,Number=1,Type=Integer,Description=\"Depth\">\n"
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n"
        "chr1\t100\t.\tA\t.\t.\t.\tDP=7\n"
        "chr1\t200\t.\tC\tT\t.\tLowQual\tDP=8\n"
        "chr1\t300\t.\tG\tA\t.\t.\tDP=9\n",
        encoding="utf-8",
    )
    out_vcf = tmp_path / "mixed.out.vcf"
    with VariantReader(vcf_in) as reader:
        sink = VcfVariantSink(out_vcf, reader.header)
        with AlignmentArtifactFilter(AlwaysDiscordant(), _config(skip_filtered_variants=True), sink) as f:
            verdicts = [f.process_variant(v, [])[1] for v in reader]
    assert [v.evaluated for v in verdicts] == [False, False, True]

    with pysam.VariantFile(str(out_vcf)) as vcf:
        noalt, lowqual, snv = list(vcf)
    assert list(noalt.filter.keys()) == []
    assert list(lowqual.filter.keys()) == ["LowQual"]
    assert list(snv.filter.keys()) == ["PASS"]
    for rec in (noalt, lowqual):
        assert "RA_SUPPORT" not in rec.info
    assert [r.info["DP"] for r in (noalt, lowqual, snv)] == [7, 8, 9]
    assert snv.info["RA_SUPPORT"] == 0


class FailingCloseSink(VcfVariantSink):
    def close(self) -> None:
        super().close()
        raise OutputSinkError("disk full")


def test_close_failure_does_not_hide_run_error(toy, tmp_path: Path, monkeypatch):
    monkeypatch.setattr("realignfilter.runner.VcfVariantSink", FailingCloseSink)
    with pytest.raises(RealignmentError, match="index went away"):
        run_filter(
            vcf_path=toy["vcf"],
            bam_paths=[toy["bam"]],
            out_vcf=tmp_path / "aborted.vcf",
            realigner=BrokenRealigner(),
            config=_config(),
            progress=False,
        )

    # without an earlier error the close failure itself is reported
    with pytest.raises(OutputSinkError, match="disk full"):
        run_filter(
            vcf_path=toy["vcf"],
            bam_paths=[toy["bam"]],
            out_vcf=tmp_path / "completed.vcf",
            realigner=AlwaysDiscordant(),
            config=_config(),
            progress=False,
        )


def test_sink_writes_records_without_source(toy, tmp_path: Path):
    with VariantReader(toy["vcf"]) as reader:
        header = reader.header
        sink = VcfVariantSink(tmp_path / "plain.vcf", header)
    var = Variant(
        contig="chr1",
        pos=10,
        ref="A",
        alts=("C",),
        samples=(SampleCall("TUMOR", (0, 1)),),
        id="manual",
        filters=("alignment_artifact",),
    )
    sink.write(var, FilterVerdict(FilterStatus.FILTER, supporting_reads=2))
    sink.close()
    sink.close()

    with pysam.VariantFile(str(tmp_path / "plain.vcf")) as vcf:
        (rec,) = list(vcf)
    assert rec.pos == 10
    assert rec.id == "manual"
    assert rec.info["RA_SUPPORT"] == 2
    assert sink.records_written == 1


def test_read_from_segment_is_one_based():
    header = pysam.AlignmentHeader.from_dict({"SQ": [{"SN": "chr1", "LN": 1000}]})
    a = pysam.AlignedSegment(header)
    a.query_name = "r1"
    a.query_sequence = "ACGTACGTAA"
    a.flag = 0
    a.reference_id = 0
    a.reference_start = 99
    a.mapping_quality = 60
    a.cigartuples = [(4, 2), (0, 6), (2, 1), (0, 2)]  # 2S6M1D2M
    a.query_qualities = pysam.qualitystring_to_array("I" * 10)

    read = read_from_segment(a, "TUMOR")
    assert read.contig == "chr1"
    assert read.reference_start == 100
    assert read.soft_start == 98
    assert read.cigar_string == "2S6M1D2M"
    assert read.qualities == (40,) * 10
    assert read.sample == "TUMOR"
