from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_verdict_counts(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Variant verdicts",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["PASS (evaluated)", "alignment_artifact", "No ALT / skipped"]
    passed_unevaluated = int(counts.get("variants_no_alt", 0)) + int(counts.get("variants_skipped_filtered", 0))
    values = [
        int(counts.get("variants_pass", 0)) - passed_unevaluated,
        int(counts.get("variants_filtered", 0)),
        passed_unevaluated,
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Variant count")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_outcome_counts(
    *,
    outcomes: Dict[str, int],
    out_png: str | Path,
    title: str = "Realignment outcomes of supporting reads",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["confident", "discordant", "ambiguous", "failed"]
    values = [int(outcomes.get(k, 0)) for k in labels]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Read count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_support_hist(
    *,
    support_hist: Dict[int, int],
    out_png: str | Path,
    title: str = "Supporting reads per variant",
    max_bin: int = 30,
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    # Collapse tail into max_bin+
    xs = list(range(0, max_bin + 1))
    ys = [0] * len(xs)
    tail = 0
    for k, v in support_hist.items():
        k = int(k)
        if k <= max_bin:
            ys[k] += int(v)
        else:
            tail += int(v)

    xticklabels = [str(x) if x % 5 == 0 else "" for x in range(0, max_bin + 1)]
    if tail > 0:
        xs.append(max_bin + 1)
        ys.append(tail)
        xticklabels.append(f"{max_bin + 1}+")

    plt.figure()
    plt.bar(range(len(xs)), ys)
    plt.xlabel("Supporting reads")
    plt.ylabel("Variant count")
    plt.title(title)
    plt.xticks(range(len(xs)), xticklabels, rotation=0)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_discordant_fraction_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    title: str = "Discordant fraction of supporting reads",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    if len(bin_edges) != len(counts) + 1:
        raise ValueError("bin_edges must have length len(counts)+1")

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    plt.xlabel("Discordant / supporting reads")
    plt.ylabel("Variant count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
