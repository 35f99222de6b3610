from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>realignfilter Report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>Alignment artifact filter report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>VCF</th><td><code>{{ vcf_path }}</code></td></tr>
      <tr><th>BAM(s)</th><td>{% for b in bam_paths %}<code>{{ b }}</code><br>{% endfor %}</td></tr>
      <tr><th>Realignment index</th><td><code>{{ index_path }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Decision policy</h3>
    <table>
      <tr><th>Min discordant reads</th><td>{{ config.policy.min_discordant_reads }}</td></tr>
      <tr><th>Min discordant fraction</th><td>{{ config.policy.min_discordant_fraction }}</td></tr>
      <tr><th>Counted as discordant</th><td>{{ config.policy.discordant_outcomes | join(", ") }}</td></tr>
      <tr><th>Indel start tolerance</th><td>{{ config.indel_start_tolerance }}</td></tr>
      <tr><th>Min realignment MAPQ</th><td>{{ config.realigner.min_mapping_quality }}</td></tr>
    </table>
  </div>
</div>

<h2>Variants</h2>
<table>
  <tr><th>Total</th><td>{{ counts.variants_total }}</td></tr>
  <tr><th>No ALT allele (passed through)</th><td>{{ counts.variants_no_alt }}</td></tr>
  <tr><th>Already filtered (passed through)</th><td>{{ counts.variants_skipped_filtered }}</td></tr>
  <tr><th>Evaluated</th><td>{{ counts.variants_evaluated }}</td></tr>
  <tr><th>With supporting reads</th><td>{{ counts.variants_with_support }}</td></tr>
  <tr><th>Filtered (alignment_artifact)</th><td>{{ counts.variants_filtered }}</td></tr>
</table>

<h2>Reads</h2>
<table>
  <tr><th>Fetched</th><td>{{ read_counts.reads_fetched }}</td></tr>
  <tr><th>Duplicates skipped</th><td>{{ read_counts.reads_skipped_duplicates }}</td></tr>
  <tr><th>Secondary skipped</th><td>{{ read_counts.reads_skipped_secondary }}</td></tr>
  <tr><th>Supplementary skipped</th><td>{{ read_counts.reads_skipped_supplementary }}</td></tr>
  <tr><th>From variant-carrying samples</th><td>{{ counts.reads_from_variant_samples }}</td></tr>
  <tr><th>Supporting an ALT allele</th><td>{{ counts.reads_supporting }}</td></tr>
  {% for name, n in outcomes.items() %}
  <tr><th>Realigned: {{ name }}</th><td>{{ n }}</td></tr>
  {% endfor %}
</table>

<h2>Plots</h2>

<div class="grid">
  <div class="card">
    <h3>Verdicts</h3>
    <img src="{{ plots.verdict_counts }}" alt="verdict counts">
  </div>
  <div class="card">
    <h3>Realignment outcomes</h3>
    <img src="{{ plots.outcome_counts }}" alt="outcome counts">
  </div>
</div>

<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Supporting reads per variant</h3>
    <img src="{{ plots.support_hist }}" alt="supporting reads histogram">
  </div>
  <div class="card">
    <h3>Discordant fraction</h3>
    <img src="{{ plots.discordant_fraction_hist }}" alt="discordant fraction histogram">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ out_vcf }}</code> (filtered VCF; FILTER <code>alignment_artifact</code>, INFO <code>RA_*</code> counts)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li>Indel support is matched by CIGAR operator type near the variant, so "supporting" means plausible, not proven.</li>
  <li>Variants without supporting reads always pass: there is no evidence to challenge.</li>
  <li>Use a realignment index built from the best available reference, even if the BAM was aligned to another build.</li>
</ul>

<hr>
<p class="small">realignfilter {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    index_path: str,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        vcf_path=run.get("vcf_path"),
        bam_paths=run.get("bam_paths", []),
        out_vcf=run.get("out_vcf"),
        index_path=index_path,
        config=run.get("config", {}),
        counts=run.get("counts", {}),
        read_counts=run.get("read_counts", {}),
        outcomes=run.get("outcomes", {}),
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
