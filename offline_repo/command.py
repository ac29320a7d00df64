import logging
import shlex
import subprocess
from typing import List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)


class CmdResult(NamedTuple):
    argv: List[str]
    returncode: int
    stdout: str
    stderr: str


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(a) for a in argv)


def run_cmd(
    argv: Sequence[str],
    *,
    check: bool = True,
    cwd: Optional[str] = None,
    timeout: Optional[float] = None,
) -> CmdResult:
    """Run a host tool, capturing its output.

    Raises RuntimeError if the tool is missing, times out, or (with check=True)
    exits non-zero. Callers that treat tool failure as a per-item problem
    catch RuntimeError at their own boundary.
    """
    argv_list = list(argv)
    logger.debug("CMD %s", format_argv(argv_list))

    try:
        p = subprocess.run(
            argv_list,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise RuntimeError(f"Command not found: {argv_list[0]}")
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"Command timed out after {timeout}s: {format_argv(argv_list)}")

    if p.stderr:
        logger.debug("STDERR %s", p.stderr.strip())

    if check and p.returncode != 0:
        raise RuntimeError(
            f"Command failed ({p.returncode}): {format_argv(argv_list)}\n{p.stderr.strip()}"
        )

    return CmdResult(argv=argv_list, returncode=p.returncode, stdout=p.stdout, stderr=p.stderr)
