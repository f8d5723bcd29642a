import pytest

from hybridctl.modules.prober import ProbeOutcome, Readiness, poll


class Counter:
    def __init__(self, ready_on=None, raise_on=None):
        self.calls = 0
        self.ready_on = ready_on
        self.raise_on = raise_on

    def __call__(self):
        self.calls += 1
        if self.raise_on == self.calls:
            raise RuntimeError("api unreachable")
        return Readiness(self.calls == self.ready_on, f"observation {self.calls}")


def test_success_after_exactly_n_evaluations():
    sleeps = []
    predicate = Counter(ready_on=3)

    result = poll(predicate, max_attempts=10, interval=5, sleep=sleeps.append)

    assert result.outcome == ProbeOutcome.SUCCESS
    assert result.attempts == 3
    assert predicate.calls == 3
    assert sleeps == [5, 5]


def test_timeout_after_exactly_max_attempts():
    sleeps = []
    predicate = Counter()

    result = poll(predicate, max_attempts=4, interval=1, sleep=sleeps.append)

    assert result.outcome == ProbeOutcome.TIMEOUT
    assert not result.ok
    assert predicate.calls == 4
    assert result.detail == "observation 4"
    # no sleep after the last attempt
    assert len(sleeps) == 3


def test_predicate_error_is_fatal_immediately():
    predicate = Counter(raise_on=2)

    result = poll(predicate, max_attempts=10, interval=0, sleep=lambda s: None)

    assert result.outcome == ProbeOutcome.FATAL_ERROR
    assert result.attempts == 2
    assert "api unreachable" in result.detail


def test_bool_predicates_are_accepted():
    result = poll(lambda: True, max_attempts=1, interval=0)
    assert result.ok
    assert result.attempts == 1


@pytest.mark.parametrize("attempts", [0, -1])
def test_max_attempts_must_be_positive(attempts):
    with pytest.raises(ValueError):
        poll(lambda: True, max_attempts=attempts, interval=0)
