"""Helpers for running external commands (minimap2).

- Fail fast with actionable error messages.
- Capture stderr/stdout for debugging.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import textwrap
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


class ExternalCommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stdout = stdout
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def ensure_executable_in_path(exe: str, *, hint: Optional[str] = None) -> None:
    """Ensure an executable exists in PATH; raise FileNotFoundError with ``hint`` otherwise."""
    from shutil import which

    if which(exe) is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)


def run_command(
    cmd: Sequence[str],
    *,
    input_text: Optional[str] = None,
    cwd: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """Run a command, optionally feeding ``input_text`` on stdin, and capture its output.

    If ``check`` is True, raise ``ExternalCommandError`` on non-zero exit.
    """
    if cwd is not None:
        cwd = str(Path(cwd))

    env_merged: Optional[Dict[str, str]]
    if env is None:
        env_merged = None
    else:
        env_merged = dict(os.environ)
        env_merged.update({str(k): str(v) for k, v in env.items()})

    logger.debug("Running command: %s", cmd_to_str(cmd))

    cp = subprocess.run(
        list(map(str, cmd)),
        input=input_text,
        cwd=cwd,
        env=env_merged,
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )

    if check and cp.returncode != 0:
        raise ExternalCommandError(
            message=textwrap.dedent(
                f"""
                External command failed (exit code {cp.returncode}).

                Command:
                  {cmd_to_str(cmd)}

                STDERR (tail):
                  {_tail(cp.stderr)}
                """
            ).strip(),
            cmd=cmd,
            returncode=cp.returncode,
            stdout=cp.stdout,
            stderr=cp.stderr,
        )

    return cp


def _tail(s: Optional[str], n: int = 3000) -> str:
    if not s:
        return "(empty)"
    s = str(s)
    if len(s) <= n:
        return s
    return "..." + s[-n:]
