"""realignfilter: flag variants whose supporting reads are likely misalignment artifacts.

Most users should use the CLI:

    realignfilter filter --vcf calls.vcf.gz --bam sample.bam --index best_ref.mmi \
        --min-discordant-reads 2 --outdir out/

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
