"""Bounded-retry polling for eventually-consistent state.

Node readiness, pod readiness, CoreDNS replicas and tunnel connections all
settle some unbounded-but-usually-short time after the action that caused
them. Every wait in hybridctl goes through :func:`poll` so the attempt ceiling is
tuned in one place.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, NamedTuple, Union

logger = logging.getLogger("hybridctl.prober")


class Readiness(NamedTuple):
    """One observation of the polled resource."""
    ready: bool
    detail: str = ""


class ProbeOutcome(str, Enum):
    SUCCESS = "success"
    TIMEOUT = "timeout"
    FATAL_ERROR = "fatal_error"


@dataclass
class ProbeResult:
    outcome: ProbeOutcome
    attempts: int
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == ProbeOutcome.SUCCESS


Predicate = Callable[[], Union[Readiness, bool]]


def poll(
    predicate: Predicate,
    max_attempts: int,
    interval: float,
    name: str = "resource",
    sleep: Callable[[float], None] = time.sleep,
) -> ProbeResult:
    """Evaluate ``predicate`` until it reports ready or the attempts run out.

    Args:
        predicate: Returns a Readiness (or bool). Raising means "definitely
            broken" and stops polling immediately.
        max_attempts: Hard ceiling on predicate evaluations
        interval: Seconds to sleep between evaluations
        name: Used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        ProbeResult with the outcome, number of evaluations and the last detail
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    detail = ""
    for attempt in range(1, max_attempts + 1):
        try:
            observed = predicate()
        except Exception as e:
            logger.error(f"❌ {name}: probe failed on attempt {attempt}/{max_attempts}: {e}")
            return ProbeResult(ProbeOutcome.FATAL_ERROR, attempt, str(e))

        if isinstance(observed, bool):
            observed = Readiness(observed)
        detail = observed.detail

        if observed.ready:
            logger.info(f"✅ {name} ready after {attempt} attempt(s){': ' + detail if detail else ''}")
            return ProbeResult(ProbeOutcome.SUCCESS, attempt, detail)

        logger.info(f"⏳ Waiting for {name} ({detail or 'not ready'}) - attempt {attempt}/{max_attempts}")
        if attempt < max_attempts:
            sleep(interval)

    logger.warning(f"⚠️  {name} not ready after {max_attempts} attempt(s)")
    return ProbeResult(ProbeOutcome.TIMEOUT, max_attempts, detail)
