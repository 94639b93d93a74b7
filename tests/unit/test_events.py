"""Unit tests for the user events and their detection along a branch."""

import numpy as np
import pytest

from branchtrace.continuation.continuation_steppers import PseudoArclengthContinuation
from branchtrace.continuation.events import ContinuousEvent, DiscreteEvent, PairOfEvents, SetOfEvents
from branchtrace.continuation.parameters import ContinuationParameters
from branchtrace.core.problem import Problem
from branchtrace.core.types import Array


def line(x: Array, p: float) -> Array:
    return x - p


def test_continuous_event() -> None:
    event = ContinuousEvent(lambda x, p: [p - 0.5, x[0] + 1])
    v1 = event.values(np.array([0.0]), 0.4)
    v2 = event.values(np.array([0.0]), 0.6)
    np.testing.assert_allclose(v1, [-0.1, 1.0])
    assert not event.crossed(v1, v1)
    assert event.crossed(v2, v1)
    assert not event.crossed(v2, None)
    crit = event.criterion(v2, v1)
    assert crit(v1) != crit(v2)
    assert event.describe(v2, v1) == "userC"


def test_discrete_event() -> None:
    event = DiscreteEvent(lambda x, p: int(p > 0.5), label="threshold")
    v1 = event.values(np.array([0.0]), 0.4)
    v2 = event.values(np.array([0.0]), 0.6)
    assert v1 == (0,) and v2 == (1,)
    assert event.crossed(v2, v1)
    assert not event.crossed(v1, v1)
    assert event.criterion(v2, v1)(v2) == (1,)
    assert event.describe(v2, v1) == "threshold"


def test_set_of_events() -> None:
    e1 = ContinuousEvent(lambda x, p: p - 0.5, label="a")
    e2 = ContinuousEvent(lambda x, p: p - 0.55, label="b")
    x = np.array([0.0])
    any_set = SetOfEvents([e1, e2], mode="any")
    all_set = SetOfEvents([e1, e2], mode="all")
    first_set = SetOfEvents([e1, e2], mode="first")
    v1, v2, v3 = any_set.values(x, 0.4), any_set.values(x, 0.52), any_set.values(x, 0.6)
    assert any_set.fired(v2, v1) == [0]
    assert any_set.crossed(v2, v1)
    assert not all_set.crossed(v2, v1)
    assert all_set.crossed(v3, v1)
    assert any_set.describe(v3, v1) == "a+b"
    assert first_set.describe(v3, v1) == "a"
    crit = first_set.criterion(v3, v1)
    assert crit(v1) != crit(v3)
    with pytest.raises(ValueError):
        SetOfEvents([e1], mode="none")
    with pytest.raises(ValueError):
        SetOfEvents([])


def test_pair_of_events() -> None:
    pair = PairOfEvents(ContinuousEvent(lambda x, p: p), DiscreteEvent(lambda x, p: int(x[0] > 1)))
    x = np.array([0.0])
    v1, v2 = pair.values(x, -0.1), pair.values(x, 0.1)
    assert pair.crossed(v2, v1)
    assert pair.fired(v2, v1) == [0]
    assert isinstance(pair.continuous, ContinuousEvent)
    assert isinstance(pair.discrete, DiscreteEvent)


def test_continuous_event_is_located_along_branch() -> None:
    prob = Problem(line, lambda x, p: np.eye(1), params=0.0)
    params = ContinuationParameters(ds=0.05, dsmax=0.05, p_min=-1., p_max=1., detect_bifurcation=0,
                                    detect_event=2, detect_fold=False)
    event = ContinuousEvent(lambda x, p: p - 0.27, label="threshold")
    branch = PseudoArclengthContinuation(prob, [0.0], params, event=event).run()
    events = branch.events()
    assert len(events) == 1
    sp = events[0]
    assert sp.label == "threshold"
    assert sp.param == pytest.approx(0.27, abs=0.05)
    assert sp.interval[0] - 1e-12 <= 0.27 <= sp.interval[1] + 1e-12
    assert sp.interval[1] - sp.interval[0] < 0.05


def test_discrete_event_is_flagged_along_branch() -> None:
    prob = Problem(line, lambda x, p: np.eye(1), params=0.0)
    params = ContinuationParameters(ds=0.05, dsmax=0.05, p_min=-1., p_max=1., detect_bifurcation=0,
                                    detect_event=1)
    event = DiscreteEvent(lambda x, p: int(x[0] > 0.5))
    branch = PseudoArclengthContinuation(prob, [0.0], params, event=event).run()
    events = branch.events()
    assert len(events) == 1
    assert events[0].status == "guess"
    assert events[0].interval[0] <= 0.5 <= events[0].interval[1]
