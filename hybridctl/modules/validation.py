"""Validation aggregator.

Runs independent checks and folds them into a single report. Error-severity
failures make the exit code non-zero; warnings are counted but never block,
which lets the same aggregator gate pre-flight and report post-deploy health.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from rich.console import Console
from rich.markup import escape
from rich.table import Table

logger = logging.getLogger("hybridctl.validation")


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Outcome(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


CheckFn = Callable[[], Union[bool, Tuple[bool, str]]]


@dataclass
class ValidationCheck:
    name: str
    check: CheckFn
    severity: Severity = Severity.ERROR
    remediation: str = ""
    category: str = "general"


@dataclass
class CheckResult:
    name: str
    outcome: Outcome
    severity: Severity
    detail: str = ""
    remediation: str = ""
    category: str = "general"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "severity": self.severity.value,
            "detail": self.detail,
            "remediation": self.remediation,
            "category": self.category,
        }


@dataclass
class ValidationReport:
    battery: str
    results: List[CheckResult] = field(default_factory=list)

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def passed(self) -> int:
        return self._count(Outcome.PASS)

    @property
    def warnings(self) -> int:
        return self._count(Outcome.WARN)

    @property
    def failed(self) -> int:
        return self._count(Outcome.FAIL)

    @property
    def failures(self) -> List[CheckResult]:
        return [r for r in self.results if r.outcome == Outcome.FAIL]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "battery": self.battery,
            "summary": {
                "total": len(self.results),
                "passed": self.passed,
                "warnings": self.warnings,
                "failed": self.failed,
            },
            "exit_code": self.exit_code,
            "checks": [r.to_dict() for r in self.results],
        }

    def render(self, console: Optional[Console] = None) -> None:
        console = console or Console()
        table = Table(title=f"{self.battery.capitalize()} validation")
        table.add_column("Check")
        table.add_column("Result")
        table.add_column("Detail", overflow="fold")

        markers = {Outcome.PASS: "✅ pass", Outcome.WARN: "⚠️  warn", Outcome.FAIL: "❌ fail"}
        for r in self.results:
            detail = r.detail
            if r.outcome != Outcome.PASS and r.remediation:
                detail = f"{detail}\n→ {r.remediation}" if detail else f"→ {r.remediation}"
            table.add_row(escape(r.name), markers[r.outcome], escape(detail))
        console.print(table)
        console.print(
            f"Total checks performed: {len(self.results)}  "
            f"Passed: {self.passed}  Warnings: {self.warnings}  Failed: {self.failed}"
        )
        if self.failed:
            console.print(f"[red]❌ Validation completed with {self.failed} error(s)[/red]")
        elif self.warnings:
            console.print(f"[yellow]⚠️  All critical checks passed, {self.warnings} warning(s) found[/yellow]")
        else:
            console.print("[green]✅ All checks passed[/green]")


class ValidationAggregator:
    """Runs every check, in order, regardless of earlier outcomes."""

    def run_check(self, check: ValidationCheck) -> CheckResult:
        try:
            observed = check.check()
        except Exception as e:
            logger.debug(f"Check '{check.name}' raised", exc_info=True)
            observed = (False, f"{type(e).__name__}: {e}")

        if isinstance(observed, tuple):
            ok, detail = observed
        else:
            ok, detail = bool(observed), ""

        if ok:
            outcome = Outcome.PASS
            logger.info(f"✅ {check.name}{': ' + detail if detail else ''}")
        elif check.severity == Severity.WARNING:
            outcome = Outcome.WARN
            logger.warning(f"⚠️  {check.name}{': ' + detail if detail else ''}")
        else:
            outcome = Outcome.FAIL
            logger.error(f"❌ {check.name}{': ' + detail if detail else ''}")

        return CheckResult(
            name=check.name,
            outcome=outcome,
            severity=check.severity,
            detail=detail,
            remediation=check.remediation,
            category=check.category,
        )

    def run(self, checks: Iterable[ValidationCheck], battery: str = "validation") -> ValidationReport:
        report = ValidationReport(battery=battery)
        for check in checks:
            report.results.append(self.run_check(check))
        logger.info(
            f"{battery}: {report.passed} passed, {report.warnings} warning(s), {report.failed} failed"
        )
        return report
