"""Per-variant alignment-artifact decision.

For each variant: collect reads from samples that carry it, keep those that
plausibly support an alternate allele, realign the supporters against the
secondary reference and filter the variant if enough of them do not come back
confidently to the called locus.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .config import FilterConfig
from .models import (
    FilterStatus,
    FilterVerdict,
    Read,
    RealignmentOutcome,
    Variant,
    empty_outcome_counts,
)
from .realigner import Realigner, RealignmentError
from .support import VariantSupportClassifier
from .utils import chunked

logger = logging.getLogger(__name__)

_FRACTION_BINS = np.linspace(0.0, 1.0, 21)


class VariantSink(Protocol):
    def write(self, variant: Variant, verdict: FilterVerdict) -> None:
        ...

    def close(self) -> None:
        ...


class AlignmentArtifactFilter:
    """Explicit pipeline object: ``start()``, ``process_variant()`` per variant, ``finish()``.

    Variants must be fed in input order; each call emits exactly one record to
    the sink (if one is attached) before returning. Usable as a context manager,
    in which case the worker pool and sink are closed even if processing aborts.
    """

    def __init__(
        self,
        realigner: Realigner,
        config: FilterConfig,
        sink: Optional[VariantSink] = None,
    ) -> None:
        config.validate()
        self.realigner = realigner
        self.config = config
        self.sink = sink
        self.classifier = VariantSupportClassifier(config.indel_start_tolerance)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._started = False
        self._finished = False
        self.counts: Dict[str, int] = {
            "variants_total": 0,
            "variants_no_alt": 0,
            "variants_skipped_filtered": 0,
            "variants_evaluated": 0,
            "variants_with_support": 0,
            "variants_pass": 0,
            "variants_filtered": 0,
            "reads_seen": 0,
            "reads_from_variant_samples": 0,
            "reads_supporting": 0,
        }
        self.outcome_totals: Dict[RealignmentOutcome, int] = empty_outcome_counts()
        self.support_hist: Dict[int, int] = {}
        self.fraction_counts = np.zeros(len(_FRACTION_BINS) - 1, dtype=np.int64)

    # -----------------
    # lifecycle
    # -----------------

    def start(self) -> None:
        if self._started:
            return
        self.realigner.initialize()
        if self.config.realignment_workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.realignment_workers,
                thread_name_prefix="realign",
            )
        self._started = True
        logger.info(
            "Artifact filter started (indel tolerance=%d, workers=%d)",
            self.config.indel_start_tolerance,
            self.config.realignment_workers,
        )

    def finish(self) -> Dict[str, Any]:
        """Release resources and return run statistics. Safe to call more than once."""
        if not self._finished:
            self._finished = True
            try:
                if self._executor is not None:
                    self._executor.shutdown(wait=True)
                    self._executor = None
                self.realigner.close()
            finally:
                if self.sink is not None:
                    self.sink.close()
        return self.summary()

    def __enter__(self) -> "AlignmentArtifactFilter":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finish()

    # -----------------
    # per variant
    # -----------------

    def process_variant(self, variant: Variant, reads: Iterable[Read]) -> Tuple[Variant, FilterVerdict]:
        if not self._started:
            raise RuntimeError("process_variant() called before start()")
        if self._finished:
            raise RuntimeError("process_variant() called after finish()")

        self.counts["variants_total"] += 1

        if len(variant.alts) == 0:
            self.counts["variants_no_alt"] += 1
            return self._emit(variant, FilterVerdict(FilterStatus.PASS, evaluated=False))

        if self.config.skip_filtered_variants and variant.is_filtered:
            self.counts["variants_skipped_filtered"] += 1
            return self._emit(variant, FilterVerdict(FilterStatus.PASS, evaluated=False))

        self.counts["variants_evaluated"] += 1
        supporters, n_evaluated = self._collect_supporters(variant, reads)

        outcome_counts = empty_outcome_counts()
        for outcome in self._realign(variant, supporters):
            outcome_counts[outcome] += 1

        filtered = self.config.policy.should_filter(outcome_counts)
        verdict = FilterVerdict(
            status=FilterStatus.FILTER if filtered else FilterStatus.PASS,
            outcome_counts=outcome_counts,
            reads_evaluated=n_evaluated,
            supporting_reads=len(supporters),
            discordant_reads=self.config.policy.discordant_count(outcome_counts),
        )
        self._tally(verdict)

        out = variant
        if filtered:
            kept = tuple(f for f in variant.filters if f != "PASS")
            out = replace(variant, filters=kept + (verdict.filter_name,))
            logger.debug(
                "%s filtered: %d/%d supporting reads discordant",
                variant.locus,
                verdict.discordant_reads,
                len(supporters),
            )
        return self._emit(out, verdict)

    def _collect_supporters(self, variant: Variant, reads: Iterable[Read]) -> Tuple[List[Read], int]:
        carriers = variant.variant_samples()
        supporters: List[Read] = []
        n_evaluated = 0
        for read in reads:
            self.counts["reads_seen"] += 1
            if read.sample not in carriers:
                continue
            n_evaluated += 1
            if self.classifier.supports(read, variant):
                supporters.append(read)
        self.counts["reads_from_variant_samples"] += n_evaluated
        self.counts["reads_supporting"] += len(supporters)
        return supporters, n_evaluated

    def _realign(self, variant: Variant, reads: Sequence[Read]) -> List[RealignmentOutcome]:
        if not reads:
            return []
        batches = list(chunked(reads, self.config.realignment_batch_size))
        try:
            if self._executor is None:
                results = [self.realigner.realign_batch(b) for b in batches]
            else:
                futures = [self._executor.submit(self.realigner.realign_batch, b) for b in batches]
                results = [f.result() for f in futures]
        except RealignmentError as e:
            raise RealignmentError(f"Realignment failed for variant {variant.locus}: {e}") from e
        except Exception as e:
            raise RealignmentError(
                f"Realignment failed for variant {variant.locus}: {e.__class__.__name__}: {e}"
            ) from e

        outcomes: List[RealignmentOutcome] = []
        for batch, res in zip(batches, results):
            if len(res) != len(batch):
                raise RealignmentError(
                    f"Realigner returned {len(res)} outcomes for {len(batch)} reads at {variant.locus}"
                )
            outcomes.extend(res)
        return outcomes

    def _tally(self, verdict: FilterVerdict) -> None:
        if verdict.is_filtered:
            self.counts["variants_filtered"] += 1
        if verdict.supporting_reads > 0:
            self.counts["variants_with_support"] += 1
            frac = verdict.discordant_reads / float(verdict.supporting_reads)
            self.fraction_counts += np.histogram([frac], bins=_FRACTION_BINS)[0]
        for o, n in verdict.outcome_counts.items():
            self.outcome_totals[o] += n
        self.support_hist[verdict.supporting_reads] = self.support_hist.get(verdict.supporting_reads, 0) + 1

    def _emit(self, variant: Variant, verdict: FilterVerdict) -> Tuple[Variant, FilterVerdict]:
        if not verdict.is_filtered:
            self.counts["variants_pass"] += 1
        if self.sink is not None:
            self.sink.write(variant, verdict)
        return variant, verdict

    def summary(self) -> Dict[str, Any]:
        return {
            "counts": dict(self.counts),
            "outcomes": {o.value: int(n) for o, n in self.outcome_totals.items()},
            "supporting_reads_hist": {int(k): int(v) for k, v in sorted(self.support_hist.items())},
            "discordant_fraction_hist": {
                "bin_edges": _FRACTION_BINS.tolist(),
                "counts": self.fraction_counts.tolist(),
            },
        }
