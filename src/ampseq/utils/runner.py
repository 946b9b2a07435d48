# src/ampseq/utils/runner.py
from __future__ import annotations

import shutil
import subprocess
import time
from typing import Sequence

from ampseq.utils.logger import get_logger

LOG = get_logger("runner")

# lines of a failed tool's stderr repeated at ERROR level; the full text goes to DEBUG
_STDERR_TAIL = 20


def require_executable(name: str) -> str:
    """Absolute path of *name* on PATH, or FileNotFoundError."""
    found = shutil.which(name)
    if found is None:
        raise FileNotFoundError(f"'{name}' is not on PATH (is the QIIME 2 environment active?)")
    return found


def _tail(text: str, n: int = _STDERR_TAIL) -> str:
    lines = text.strip().splitlines()
    if len(lines) <= n:
        return "\n".join(lines)
    return "\n".join([f"... ({len(lines) - n} earlier line(s) in the log file)", *lines[-n:]])


def run_command(
    cmd: Sequence[object],
    *,
    capture: bool = False,
) -> subprocess.CompletedProcess:
    """
    Run one blocking external tool call (QIIME, MAFFT, FastTree...).

    The exact command line is logged before running. With capture=True the output is
    buffered and kept in the DEBUG log; otherwise it streams to the console.
    Failures re-raise CalledProcessError / FileNotFoundError after logging; the
    calling stage decides how to tag them.
    """
    argv = [str(c) for c in cmd]
    LOG.info("Running: %s", " ".join(argv))
    started = time.monotonic()
    try:
        result = subprocess.run(
            argv,
            check=True,
            text=True,
            capture_output=capture,
        )
    except FileNotFoundError:
        LOG.error("Executable not found: %s", argv[0])
        raise
    except subprocess.CalledProcessError as e:
        if e.stdout:
            LOG.debug("STDOUT:\n%s", e.stdout.strip())
        if e.stderr:
            LOG.debug("STDERR:\n%s", e.stderr.strip())
            LOG.error("STDERR (tail):\n%s", _tail(e.stderr))
        LOG.error("%s exited with code %s after %.1fs", argv[0], e.returncode, time.monotonic() - started)
        raise

    LOG.info("Finished %s in %.1fs", " ".join(argv[:3]), time.monotonic() - started)
    if capture and result.stdout:
        LOG.debug("Captured STDOUT:\n%s", result.stdout.strip())
    return result
