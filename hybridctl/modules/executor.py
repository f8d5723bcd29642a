"""Ordered phase execution with idempotency probes and confirmation gates.

Phases are monotonic: there is no rollback. Re-running the pipeline from the
top is the recovery path, and each phase's probe keeps that free of
duplicate side effects.
"""
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from hybridctl.errors import (
    AwaitingInput,
    ConfigurationError,
    ConvergenceTimeout,
    PhaseAborted,
    PipelineLocked,
    ValidationFailed,
)
from hybridctl.modules.confirm import ConfirmationGate

logger = logging.getLogger("hybridctl.executor")


class ConfirmMode(Flag):
    NONE = 0
    PRE_CONFIRM = auto()
    WARN_ON_FAILURE = auto()


class PhaseState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    DONE = "done"
    SKIPPED = "skipped"
    DECLINED = "declined"
    WARNED = "warned"
    AWAITING_INPUT = "awaiting_input"
    ABORTED = "aborted"


@dataclass
class Phase:
    """One named pipeline step.

    ``probe`` answers "is this already done?" without side effects. A probe
    that raises is treated as "not done".
    """
    name: str
    action: Callable[[], Optional[str]]
    probe: Optional[Callable[[], bool]] = None
    confirm: ConfirmMode = ConfirmMode.NONE
    description: str = ""
    prompt: str = ""
    remediation: str = ""
    required: bool = True


@dataclass
class PhaseRecord:
    name: str
    state: PhaseState = PhaseState.NOT_STARTED
    duration: float = 0.0
    detail: str = ""


@dataclass
class PipelineRun:
    records: List[PhaseRecord] = field(default_factory=list)
    halted_at: Optional[str] = None

    def record(self, name: str) -> Optional[PhaseRecord]:
        return next((r for r in self.records if r.name == name), None)

    @property
    def failed(self) -> bool:
        return any(r.state == PhaseState.ABORTED for r in self.records)

    @property
    def awaiting_input(self) -> bool:
        return self.halted_at is not None and not self.failed


def probe_done(phase: Phase) -> bool:
    if phase.probe is None:
        return False
    try:
        return bool(phase.probe())
    except Exception as e:
        logger.debug(f"Probe for '{phase.name}' raised, treating as not done: {e}")
        return False


def select_phases(
    phases: Sequence[Phase],
    start_at: Optional[str] = None,
    only: Optional[Iterable[str]] = None,
) -> List[Phase]:
    """Phases to run for a full, resumed (``start_at``) or partial (``only``) run."""
    names = [p.name for p in phases]
    requested = list(only or [])
    for name in requested + ([start_at] if start_at else []):
        if name not in names:
            raise ConfigurationError(
                f"Unknown phase '{name}'",
                remediation=f"Valid phases: {', '.join(names)}",
            )
    selected = list(phases)
    if start_at:
        selected = selected[names.index(start_at):]
    if requested:
        selected = [p for p in selected if p.name in requested]
    return selected


class PhaseExecutor:
    """Runs phases strictly in declared order.

    Args:
        gate: Confirmation gate for pre-confirm and warn-on-failure phases
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(self, gate: ConfirmationGate, clock: Callable[[], float] = time.monotonic):
        self.gate = gate
        self.clock = clock
        self.current = PipelineRun()

    def run(
        self,
        phases: Sequence[Phase],
        start_at: Optional[str] = None,
        only: Optional[Iterable[str]] = None,
        force: Iterable[str] = (),
    ) -> PipelineRun:
        selected = select_phases(phases, start_at, only)
        force = set(force)
        self.current = PipelineRun(records=[PhaseRecord(p.name) for p in selected])

        for phase in selected:
            record = self.current.record(phase.name)
            if not self._run_phase(phase, record, forced=phase.name in force):
                self.current.halted_at = phase.name
                break
        return self.current

    def _run_phase(self, phase: Phase, record: PhaseRecord, forced: bool) -> bool:
        """Run one phase; False halts the pipeline without failing it."""
        started = self.clock()
        record.state = PhaseState.RUNNING
        logger.info(f"▶️  Phase '{phase.name}': {phase.description or phase.name}")

        try:
            if not forced and probe_done(phase):
                record.state = PhaseState.SKIPPED
                record.detail = "already done"
                logger.info(f"✅ Phase '{phase.name}' already done, skipping")
                return True

            if ConfirmMode.PRE_CONFIRM in phase.confirm:
                if not self.gate.confirm(phase.prompt or f"Run phase '{phase.name}'?"):
                    record.state = PhaseState.DECLINED
                    record.detail = "declined by operator"
                    logger.warning(f"⚠️  Skipping phase '{phase.name}'")
                    return not phase.required

            output = phase.action()
            record.state = PhaseState.DONE
            record.detail = output or ""
            logger.info(f"✅ Phase '{phase.name}' completed")
            return True

        except AwaitingInput:
            record.state = PhaseState.AWAITING_INPUT
            raise
        except (ValidationFailed, ConvergenceTimeout) as e:
            if ConfirmMode.WARN_ON_FAILURE not in phase.confirm:
                record.state = PhaseState.ABORTED
                raise PhaseAborted(phase.name, e, output=getattr(e, "detail", ""),
                                   remediation=e.remediation or phase.remediation) from e
            record.state = PhaseState.WARNED
            record.detail = str(e)
            logger.warning(f"⚠️  Phase '{phase.name}' reported problems: {e}")
            try:
                proceed = self.gate.confirm("Continue despite validation failure?")
            except AwaitingInput:
                record.state = PhaseState.AWAITING_INPUT
                raise
            if proceed:
                return True
            record.state = PhaseState.ABORTED
            raise PhaseAborted(phase.name, e, remediation=e.remediation or phase.remediation) from e
        except Exception as e:
            record.state = PhaseState.ABORTED
            raise PhaseAborted(
                phase.name, e,
                output=getattr(e, "output", ""),
                remediation=getattr(e, "remediation", None) or phase.remediation,
            ) from e
        finally:
            record.duration = self.clock() - started


class PipelineLock:
    """Refuses concurrent runs against the same inventory.

    The lock file holds the owner's PID; a lock whose owner is gone is stale
    and gets reclaimed.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @staticmethod
    def _alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def _owner(self) -> Optional[int]:
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pid = self._owner()
                if pid is not None and pid != os.getpid() and self._alive(pid):
                    raise PipelineLocked(str(self.path), pid)
                logger.warning(f"Removing stale lock {self.path} (pid {pid})")
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            return
        raise PipelineLocked(str(self.path), self._owner() or -1)

    def release(self) -> None:
        if self._owner() == os.getpid():
            self.path.unlink(missing_ok=True)

    def __enter__(self) -> "PipelineLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
