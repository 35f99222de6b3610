from pathlib import Path

from realignfilter.plotting import (
    plot_discordant_fraction_hist,
    plot_outcome_counts,
    plot_support_hist,
    plot_verdict_counts,
)
from realignfilter.report import render_report

RUN = {
    "vcf_path": "calls.vcf.gz",
    "bam_paths": ["a.bam", "b.bam"],
    "out_vcf": "out/filtered.vcf.gz",
    "config": {
        "indel_start_tolerance": 5,
        "policy": {
            "min_discordant_reads": 2,
            "min_discordant_fraction": None,
            "discordant_outcomes": ["ambiguous", "discordant", "failed"],
        },
        "realigner": {"min_mapping_quality": 20},
    },
    "counts": {
        "variants_total": 4,
        "variants_no_alt": 1,
        "variants_skipped_filtered": 0,
        "variants_evaluated": 3,
        "variants_with_support": 2,
        "variants_pass": 3,
        "variants_filtered": 1,
    },
    "read_counts": {"reads_fetched": 40},
    "outcomes": {"confident": 3, "discordant": 2, "ambiguous": 0, "failed": 0},
    "supporting_reads_hist": {0: 1, 2: 1, 40: 1},
    "discordant_fraction_hist": {"bin_edges": [0.0, 0.5, 1.0], "counts": [1, 1]},
}


def test_plots_and_report(tmp_path: Path):
    plots = tmp_path / "plots"
    plot_verdict_counts(counts=RUN["counts"], out_png=plots / "verdicts.png")
    plot_outcome_counts(outcomes=RUN["outcomes"], out_png=plots / "outcomes.png")
    plot_support_hist(support_hist=RUN["supporting_reads_hist"], out_png=plots / "support.png")
    plot_discordant_fraction_hist(
        bin_edges=RUN["discordant_fraction_hist"]["bin_edges"],
        counts=RUN["discordant_fraction_hist"]["counts"],
        out_png=plots / "fraction.png",
    )
    for name in ("verdicts", "outcomes", "support", "fraction"):
        assert (plots / f"{name}.png").stat().st_size > 0

    out = render_report(
        outdir=tmp_path,
        version="0.0.0",
        run=RUN,
        index_path="ref.mmi",
        plots={
            "verdict_counts": "plots/verdicts.png",
            "outcome_counts": "plots/outcomes.png",
            "support_hist": "plots/support.png",
            "discordant_fraction_hist": "plots/fraction.png",
        },
    )
    html = out.read_text(encoding="utf-8")
    assert out.name == "report.html"
    assert "ambiguous, discordant, failed" in html
    assert "<code>b.bam</code>" in html
    assert "ref.mmi" in html
