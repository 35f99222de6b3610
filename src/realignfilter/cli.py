from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

import pysam

from . import __version__
from .config import FilterConfig, load_config, parse_outcomes
from .doctor import collect_checks
from .external import ExternalCommandError, cmd_to_str
from .models import RealignmentOutcome
from .plotting import (
    plot_discordant_fraction_hist,
    plot_outcome_counts,
    plot_support_hist,
    plot_verdict_counts,
)
from .realigner import Minimap2Realigner, initialize_realigner
from .report import render_report
from .runner import run_filter
from .toy_data import make_toy_data
from .utils import ensure_outdir, write_json
from .validation import (
    check_bam_index,
    check_contig_overlap,
    check_secondary_index,
    check_vcf_index,
    detect_contig_style,
    resolve_contig_style,
)


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _vcf_contigs(vcf_path: str) -> list[str]:
    with pysam.VariantFile(vcf_path) as vcf:
        return list(vcf.header.contigs)


def _bam_contigs(bam_path: str) -> list[str]:
    with pysam.AlignmentFile(bam_path, "rb") as bam:
        return list(bam.header.references)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="realignfilter",
        description=(
            "realignfilter: flag variants whose supporting reads are likely alignment artifacts, "
            "by realigning those reads against a secondary reference with minimap2."
        ),
    )
    p.add_argument("--version", action="version", version=f"realignfilter {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # filter
    # -----------------
    f = sub.add_parser(
        "filter",
        help="Filter alignment artifacts from a VCF callset.",
    )
    f.add_argument("--vcf", required=True, type=_path_exists, help="Input VCF (.vcf/.vcf.gz/.bcf), sorted.")
    f.add_argument(
        "--bam",
        required=True,
        nargs="+",
        type=_path_exists,
        help="BAM(s) the calls were made from (sorted, indexed). A reassembly bamout works best.",
    )
    f.add_argument(
        "--index",
        required=True,
        type=_path_exists,
        help="Realignment reference: minimap2 .mmi index or FASTA of the best available reference.",
    )
    f.add_argument("--outdir", required=True, help="Output directory.")
    f.add_argument(
        "--out-vcf",
        default="filtered.vcf.gz",
        help="Output VCF file name, relative to --outdir (default: filtered.vcf.gz).",
    )
    f.add_argument("--config", type=_path_exists, default=None, help="JSON configuration file.")

    # Decision policy
    f.add_argument(
        "--min-discordant-reads",
        type=int,
        default=None,
        help="Filter when at least this many supporting reads realign discordantly.",
    )
    f.add_argument(
        "--min-discordant-fraction",
        type=float,
        default=None,
        help="Filter when at least this fraction of supporting reads realign discordantly.",
    )
    f.add_argument(
        "--discordant-outcomes",
        nargs="+",
        choices=[o.value for o in RealignmentOutcome if o is not RealignmentOutcome.CONFIDENT_AT_ORIGINAL_LOCUS],
        default=None,
        help="Realignment outcomes counted as discordant (default: discordant ambiguous failed).",
    )

    # Support classification
    f.add_argument(
        "--indel-start-tolerance",
        type=int,
        default=None,
        help="Max read-offset distance between an indel CIGAR element and the variant (default: 5).",
    )
    f.add_argument("--sample", default=None, help="Sample for reads without a read group.")

    # Realigner
    f.add_argument(
        "--min-realignment-mapq",
        type=int,
        default=None,
        help="Realignments below this MAPQ are ambiguous (default: 20).",
    )
    f.add_argument("--preset", default=None, help="minimap2 -x preset (default: sr).")
    f.add_argument("--threads", type=int, default=None, help="minimap2 threads per call.")
    f.add_argument(
        "--max-locus-distance",
        type=int,
        default=None,
        help="Realignments further than this from the original start count as discordant.",
    )
    f.add_argument(
        "--contig-style",
        choices=["ucsc", "ensembl", "auto"],
        default=None,
        help="Contig naming style used to compare BAM and realignment contigs.",
    )
    f.add_argument("--workers", type=int, default=None, help="Concurrent realignment calls (default: 1).")
    f.add_argument("--batch-size", type=int, default=None, help="Reads per realignment call (default: 64).")

    # Variant / read filters
    f.add_argument(
        "--skip-filtered",
        action="store_true",
        help="Pass already-filtered records through without evaluating them.",
    )
    f.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")
    f.add_argument("--include-secondary", action="store_true", help="Include secondary alignments.")
    f.add_argument(
        "--include-supplementary", action="store_true", help="Include supplementary alignments."
    )
    f.add_argument("--min-read-mapq", type=int, default=None, help="Ignore reads below this MAPQ.")
    f.add_argument("--reference", type=_path_exists, default=None, help="Reference FASTA (CRAM input).")

    # Run control
    f.add_argument("--dry-run", action="store_true", help="Validate inputs and print the plan.")
    f.add_argument("--resume", action="store_true", help="Skip if summary.json already exists.")
    f.add_argument("--no-report", action="store_true", help="Skip plots and report.html.")
    f.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    f.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference, BAM, and VCF for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser("doctor", help="Check that required tools are installed.")
    d.add_argument("--dry-run", action="store_true", help="Always exit 0 (report only).")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


def config_from_args(args: argparse.Namespace) -> FilterConfig:
    """Defaults < --config file < explicit flags."""
    cfg = FilterConfig()
    if args.config is not None:
        cfg = load_config(args.config, base=cfg)

    policy_kw: Dict[str, Any] = {}
    if args.min_discordant_reads is not None:
        policy_kw["min_discordant_reads"] = args.min_discordant_reads
    if args.min_discordant_fraction is not None:
        policy_kw["min_discordant_fraction"] = args.min_discordant_fraction
    if args.discordant_outcomes is not None:
        policy_kw["discordant_outcomes"] = parse_outcomes(args.discordant_outcomes)

    realigner_kw: Dict[str, Any] = {}
    if args.min_realignment_mapq is not None:
        realigner_kw["min_mapping_quality"] = args.min_realignment_mapq
    if args.preset is not None:
        realigner_kw["preset"] = args.preset
    if args.threads is not None:
        realigner_kw["threads"] = args.threads
    if args.max_locus_distance is not None:
        realigner_kw["max_locus_distance"] = args.max_locus_distance
    if args.contig_style is not None:
        realigner_kw["contig_style"] = args.contig_style

    top_kw: Dict[str, Any] = {}
    if args.indel_start_tolerance is not None:
        top_kw["indel_start_tolerance"] = args.indel_start_tolerance
    if args.workers is not None:
        top_kw["realignment_workers"] = args.workers
    if args.batch_size is not None:
        top_kw["realignment_batch_size"] = args.batch_size
    if args.min_read_mapq is not None:
        top_kw["min_read_mapping_quality"] = args.min_read_mapq
    if args.skip_filtered:
        top_kw["skip_filtered_variants"] = True
    if args.keep_duplicates:
        top_kw["skip_duplicates"] = False
    if args.include_secondary:
        top_kw["include_secondary"] = True
    if args.include_supplementary:
        top_kw["include_supplementary"] = True

    cfg = replace(
        cfg,
        policy=replace(cfg.policy, **policy_kw),
        realigner=replace(cfg.realigner, **realigner_kw),
        **top_kw,
    )
    cfg.validate()
    return cfg


# -----------------
# Command handlers
# -----------------

def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_filter(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "filter.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("realignfilter")
    logger.info("realignfilter %s", __version__)

    try:
        config = config_from_args(args)

        for bam in args.bam:
            check_bam_index(bam)
        check_vcf_index(args.vcf)
        check_secondary_index(args.index)

        vcf_contigs = _vcf_contigs(args.vcf)
        bam_contigs = [c for bam in args.bam for c in _bam_contigs(bam)]
        vcf_style = detect_contig_style(vcf_contigs)
        bam_style = detect_contig_style(bam_contigs)
        if vcf_style != bam_style:
            logger.warning("Contig style mismatch detected (VCF=%s, BAM=%s).", vcf_style, bam_style)
        check_contig_overlap(vcf_contigs, bam_contigs)

        contig_style = resolve_contig_style(config.realigner.contig_style, bam_style)
        config = replace(config, realigner=replace(config.realigner, contig_style=contig_style))

        out_vcf = outdir / args.out_vcf

        if args.dry_run:
            realigner = Minimap2Realigner(args.index, config.realigner)
            print("Dry-run: inputs look OK.")
            print(f"BAM contig style: {bam_style}")
            print(f"VCF contig style: {vcf_style}")
            print("Realignment command (per batch of reads, FASTQ on stdin):")
            print("  " + cmd_to_str(realigner.command()))
            print("Configuration:")
            print(json.dumps(config.to_jsonable(), indent=2, sort_keys=True))
            print("Planned outputs:")
            print(f"  filtered VCF -> {out_vcf}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            if not args.no_report:
                print(f"  report.html -> {outdir / 'report.html'}")
            return 0

        outdir = ensure_outdir(outdir)

        if args.resume and (outdir / "summary.json").exists():
            logger.info("Resume enabled: summary.json already exists in %s", outdir)
            print(str(out_vcf))
            return 0

        realigner = initialize_realigner(args.index, config.realigner)
        run = run_filter(
            vcf_path=args.vcf,
            bam_paths=args.bam,
            out_vcf=out_vcf,
            realigner=realigner,
            config=config,
            default_sample=args.sample,
            reference_fasta=args.reference,
            progress=not args.no_progress,
        )
        run["index_path"] = str(args.index)
        write_json(outdir / "summary.json", run)

        if args.no_report:
            print(str(out_vcf))
            return 0

        plots_dir = outdir / "plots"
        plots_dir.mkdir(parents=True, exist_ok=True)

        verdict_png = plots_dir / "verdict_counts.png"
        outcome_png = plots_dir / "outcome_counts.png"
        support_png = plots_dir / "support_hist.png"
        fraction_png = plots_dir / "discordant_fraction_hist.png"

        plot_verdict_counts(counts=run["counts"], out_png=verdict_png)
        plot_outcome_counts(outcomes=run["outcomes"], out_png=outcome_png)
        plot_support_hist(support_hist=run["supporting_reads_hist"], out_png=support_png)
        plot_discordant_fraction_hist(
            bin_edges=run["discordant_fraction_hist"]["bin_edges"],
            counts=run["discordant_fraction_hist"]["counts"],
            out_png=fraction_png,
        )

        plots_rel = {
            "verdict_counts": str(Path("plots") / verdict_png.name),
            "outcome_counts": str(Path("plots") / outcome_png.name),
            "support_hist": str(Path("plots") / support_png.name),
            "discordant_fraction_hist": str(Path("plots") / fraction_png.name),
        }

        report_path = render_report(
            outdir=outdir,
            version=__version__,
            run=run,
            index_path=str(args.index),
            plots=plots_rel,
        )
        logger.info("Report written: %s", report_path)
        print(str(out_vcf))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    lines = []
    ok_all = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:9s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    for name, r in checks.items():
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "filter":
        return cmd_filter(args)
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
