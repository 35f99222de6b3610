"""Realignment collaborator.

A supporting read is realigned against a secondary (ideally better) reference.
If it realigns confidently to where it was originally placed, it is evidence for
the variant; if it lands elsewhere, ambiguously, or not at all, the variant may be
an alignment artifact.

The ``Realigner`` interface is deliberately small. ``Minimap2Realigner`` is the
bundled implementation; it shells out to minimap2 once per batch of reads.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .config import RealignerConfig
from .external import ExternalCommandError, ensure_executable_in_path, run_command
from .models import Read, RealignmentOutcome
from .validation import check_secondary_index, remap_contig, same_contig

logger = logging.getLogger(__name__)

_FLAG_UNMAPPED = 0x4
_FLAG_SECONDARY = 0x100
_FLAG_SUPPLEMENTARY = 0x800


class RealignerInitError(RuntimeError):
    """Raised when the realigner cannot be set up (bad index, missing executable)."""


class RealignmentError(RuntimeError):
    """Raised when a realignment call itself fails (as opposed to a FAILED outcome)."""


class Realigner(abc.ABC):
    """Pluggable realignment capability.

    Implementations must be safe to call repeatedly and, if the filter is
    configured with more than one worker, concurrently.
    """

    def initialize(self) -> None:
        """Load resources; raise RealignerInitError on failure."""

    @abc.abstractmethod
    def realign(self, read: Read) -> RealignmentOutcome:
        ...

    def realign_batch(self, reads: Sequence[Read]) -> List[RealignmentOutcome]:
        return [self.realign(r) for r in reads]

    def close(self) -> None:
        pass


@dataclass(frozen=True)
class SamHit:
    """The fields of a SAM record the outcome classification needs."""

    qname: str
    flag: int
    contig: str
    pos: int
    mapq: int

    @property
    def is_primary(self) -> bool:
        return not (self.flag & (_FLAG_SECONDARY | _FLAG_SUPPLEMENTARY))

    @property
    def is_unmapped(self) -> bool:
        return bool(self.flag & _FLAG_UNMAPPED) or self.contig == "*"


def parse_sam_hits(sam_text: str) -> Dict[str, SamHit]:
    """Primary SAM records keyed by query name. Header lines are ignored."""
    hits: Dict[str, SamHit] = {}
    for line in sam_text.splitlines():
        if not line or line.startswith("@"):
            continue
        fields = line.split("\t")
        if len(fields) < 5:
            raise RealignmentError(f"Truncated SAM record from aligner: {line[:200]!r}")
        try:
            hit = SamHit(
                qname=fields[0],
                flag=int(fields[1]),
                contig=fields[2],
                pos=int(fields[3]),
                mapq=int(fields[4]),
            )
        except ValueError:
            raise RealignmentError(f"Malformed SAM record from aligner: {line[:200]!r}") from None
        if hit.is_primary:
            hits[hit.qname] = hit
    return hits


def classify_primary_alignment(
    hit: Optional[SamHit],
    read: Read,
    *,
    min_mapping_quality: int,
    max_locus_distance: Optional[int] = None,
    contig_style: str = "auto",
) -> RealignmentOutcome:
    """Turn the primary realignment of ``read`` into an outcome category."""
    if hit is None or hit.is_unmapped:
        return RealignmentOutcome.FAILED
    if hit.mapq < min_mapping_quality:
        return RealignmentOutcome.AMBIGUOUS

    if contig_style in {"ucsc", "ensembl"}:
        on_contig = remap_contig(hit.contig, contig_style) == remap_contig(read.contig, contig_style)
    else:
        on_contig = same_contig(hit.contig, read.contig)
    if not on_contig:
        return RealignmentOutcome.DISCORDANT
    if max_locus_distance is not None and abs(hit.pos - read.reference_start) > max_locus_distance:
        return RealignmentOutcome.DISCORDANT
    return RealignmentOutcome.CONFIDENT_AT_ORIGINAL_LOCUS


def _to_fastq(reads: Sequence[Read]) -> str:
    lines = []
    for i, r in enumerate(reads):
        if r.qualities is not None and len(r.qualities) == len(r.bases):
            qual = "".join(chr(min(q, 93) + 33) for q in r.qualities)
        else:
            qual = "I" * len(r.bases)
        # positional names keep mates / duplicate names apart within a batch
        lines.extend([f"@q{i}", r.bases, "+", qual])
    return "\n".join(lines) + "\n"


class Minimap2Realigner(Realigner):
    """Realign reads with minimap2 against a secondary reference.

    Parameters
    ----------
    index_path:
        minimap2 ``.mmi`` index (preferred) or FASTA of the secondary reference.
    config:
        Realigner settings (MAPQ threshold, preset, threads, locus distance).
    executable:
        Name or path of the minimap2 binary.
    """

    def __init__(
        self,
        index_path: str | Path,
        config: Optional[RealignerConfig] = None,
        *,
        executable: str = "minimap2",
    ) -> None:
        self.index_path = Path(index_path).expanduser()
        self.config = config if config is not None else RealignerConfig()
        self.executable = executable
        self._initialized = False

    def initialize(self) -> None:
        if self._initialized:
            return
        try:
            self.config.validate()
            self.index_path = check_secondary_index(self.index_path).resolve()
            ensure_executable_in_path(
                self.executable,
                hint=(
                    "Install minimap2. Ubuntu: sudo apt-get install -y minimap2\n"
                    "Conda/mamba: mamba install -c bioconda minimap2"
                ),
            )
        except (OSError, ValueError) as e:
            raise RealignerInitError(f"Cannot initialise realigner: {e}") from e
        logger.info(
            "Realigner ready: %s (preset=%s, min MAPQ=%d)",
            self.index_path,
            self.config.preset,
            self.config.min_mapping_quality,
        )
        self._initialized = True

    def command(self) -> List[str]:
        return [
            self.executable,
            "-a",
            "-x",
            self.config.preset,
            "-t",
            str(int(self.config.threads)),
            "--secondary=no",
            str(self.index_path),
            "-",
        ] + list(map(str, self.config.extra_args))

    def realign(self, read: Read) -> RealignmentOutcome:
        return self.realign_batch([read])[0]

    def realign_batch(self, reads: Sequence[Read]) -> List[RealignmentOutcome]:
        if not reads:
            return []
        if not self._initialized:
            raise RealignmentError("Realigner used before initialize()")

        try:
            cp = run_command(self.command(), input_text=_to_fastq(reads), check=True)
        except (ExternalCommandError, OSError) as e:
            raise RealignmentError(f"minimap2 realignment failed: {e}") from e

        hits = parse_sam_hits(cp.stdout)
        outcomes = []
        for i, r in enumerate(reads):
            outcomes.append(
                classify_primary_alignment(
                    hits.get(f"q{i}"),
                    r,
                    min_mapping_quality=self.config.min_mapping_quality,
                    max_locus_distance=self.config.max_locus_distance,
                    contig_style=self.config.contig_style,
                )
            )
        logger.debug("Realigned %d reads with minimap2", len(reads))
        return outcomes


def initialize_realigner(index_path: str | Path, config: Optional[RealignerConfig] = None) -> Minimap2Realigner:
    """Create and initialise the default realigner; fails fatally if the index cannot be used."""
    realigner = Minimap2Realigner(index_path, config)
    realigner.initialize()
    return realigner
