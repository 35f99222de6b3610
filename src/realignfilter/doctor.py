"""Environment self-checks for ``realignfilter doctor``."""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

import pysam

from .external import run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_pysam() -> CheckResult:
    return CheckResult(name="pysam", ok=True, detail=f"pysam {pysam.__version__}")


def check_minimap2() -> CheckResult:
    howto = (
        "Ubuntu: sudo apt-get install -y minimap2\n"
        "Conda/mamba: mamba install -c bioconda minimap2"
    )
    p = shutil.which("minimap2")
    if p is None:
        return CheckResult(name="minimap2", ok=False, detail="not found in PATH", howto=howto)
    try:
        cp = run_command(["minimap2", "--version"], check=True)
    except Exception as e:
        return CheckResult(name="minimap2", ok=False, detail=f"present but not usable: {e}", howto=howto)
    return CheckResult(name="minimap2", ok=True, detail=f"{p} ({cp.stdout.strip() or 'unknown version'})")


def collect_checks() -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    return {
        "python": check_python(),
        "pysam": check_pysam(),
        "minimap2": check_minimap2(),
    }
