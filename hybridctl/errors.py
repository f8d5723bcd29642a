"""Exception hierarchy for hybridctl.

Components raise these; only the pipeline controller and the CLI decide
whether to abort, continue, or wait for the operator.
"""
from typing import List, Optional, Sequence


class HybridctlError(Exception):
    """Base error carrying operator-facing remediation text."""

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation


class ConfigurationError(HybridctlError):
    """A required file, group or setting is missing. Raised before side effects."""


class GroupNotFound(ConfigurationError):
    def __init__(self, group: str, path: str):
        super().__init__(
            f"No hosts found under [{group}] in {path}",
            remediation=f"Add at least one host line under [{group}] in {path}",
        )
        self.group = group
        self.path = path


class TemplateMissing(ConfigurationError):
    def __init__(self, target: str, template: str):
        super().__init__(
            f"{target} does not exist and its template {template} was not found",
            remediation=f"Restore {template} from version control, or create {target} by hand",
        )
        self.target = target
        self.template = template


class PreconditionError(HybridctlError):
    """A required tool or credential is absent."""


class ExternalToolError(HybridctlError):
    """A delegated tool exited non-zero."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        output: str = "",
        remediation: Optional[str] = None,
    ):
        command = " ".join(str(a) for a in argv)
        super().__init__(f"'{command}' failed (rc={returncode})", remediation=remediation)
        self.argv = list(argv)
        self.returncode = returncode
        self.output = output or ""


class ConvergenceTimeout(HybridctlError):
    """The readiness prober ran out of attempts on a blocking wait."""

    def __init__(self, what: str, attempts: int, detail: str = "", remediation: Optional[str] = None):
        super().__init__(f"{what} did not converge after {attempts} attempt(s)", remediation=remediation)
        self.what = what
        self.attempts = attempts
        self.detail = detail


class ValidationFailed(HybridctlError):
    """A validation battery reported error-severity failures."""

    def __init__(self, battery: str, failed: List[str], remediation: Optional[str] = None):
        super().__init__(
            f"{battery} validation failed: {', '.join(failed)}",
            remediation=remediation,
        )
        self.battery = battery
        self.failed = failed


class AwaitingInput(HybridctlError):
    """Operator input is required but none could be read."""

    def __init__(self, prompt: str):
        super().__init__(
            f"Waiting for operator input: {prompt}",
            remediation="Re-run interactively to answer the prompt, or pass --yes to accept all prompts",
        )
        self.prompt = prompt


class PipelineLocked(HybridctlError):
    def __init__(self, lock_path: str, pid: int):
        super().__init__(
            f"Another hybridctl run (pid {pid}) holds {lock_path}",
            remediation=f"Wait for it to finish, or remove {lock_path} if that process is gone",
        )
        self.lock_path = lock_path
        self.pid = pid


class PhaseAborted(HybridctlError):
    """Raised by the executor when a phase cannot complete."""

    def __init__(self, phase: str, cause: Exception, output: str = "", remediation: Optional[str] = None):
        if remediation is None:
            remediation = getattr(cause, "remediation", None)
        super().__init__(f"Phase '{phase}' aborted: {cause}", remediation=remediation)
        self.phase = phase
        self.cause = cause
        self.output = output
