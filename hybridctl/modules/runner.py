"""Subprocess execution for the external tools hybridctl delegates to."""
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from hybridctl.errors import ExternalToolError, PreconditionError

logger = logging.getLogger("hybridctl.runner")

OUTPUT_TAIL_LINES = 20


@dataclass
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def run_command(
    argv: Sequence[Union[str, Path]],
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
    check: bool = True,
    timeout: Optional[float] = None,
    remediation: Optional[str] = None,
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        argv: Command and arguments
        cwd: Working directory
        env: Full environment for the child, None to inherit
        check: Raise ExternalToolError on a non-zero exit
        timeout: Seconds before the command is killed
        remediation: Hint attached to the raised error

    Returns:
        CommandResult

    Raises:
        PreconditionError: The executable is not installed
        ExternalToolError: Non-zero exit (when check is True) or timeout
    """
    argv = [str(a) for a in argv]
    logger.debug(f"Running: {' '.join(argv)}" + (f" (cwd={cwd})" if cwd else ""))
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            env=env,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise PreconditionError(
            f"{argv[0]} is not installed",
            remediation=f"Install {argv[0]} and re-run 'hybridctl validate prereqs'",
        )
    except subprocess.TimeoutExpired as e:
        output = e.stdout if isinstance(e.stdout, str) else ""
        raise ExternalToolError(argv, -1, f"timed out after {timeout}s\n{output}", remediation=remediation)

    result = CommandResult(argv, proc.returncode, proc.stdout or "", proc.stderr or "")
    if check and not result.ok:
        logger.error(f"❌ {' '.join(argv)} exited with {result.returncode}")
        raise ExternalToolError(argv, result.returncode, tail(result.output), remediation=remediation)
    return result
