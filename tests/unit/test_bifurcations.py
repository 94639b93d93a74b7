"""Unit tests for the detection and localisation of special points."""

import numpy as np
import pytest

from branchtrace.continuation.bifurcations import (bifurcation_type, compute_stability, detect_bifurcation,
                                                   detect_fold, locate_crossing)
from branchtrace.continuation.continuation_steppers import PseudoArclengthContinuation
from branchtrace.continuation.parameters import ContinuationParameters
from branchtrace.continuation.state import ContinuationState
from branchtrace.core.problem import Problem
from branchtrace.core.solution import Branch, BranchPoint
from branchtrace.core.types import BorderedArray


def make_state(n_unstable, n_imag, eigenvalues=None) -> ContinuationState:
    z = BorderedArray([0.0], 0.0)
    state = ContinuationState(current=z, predicted=z.copy(), tangent=BorderedArray([1.0], 1.0),
                              ds=0.1, theta=0.5, previous=z.copy())
    state.n_unstable = n_unstable
    state.n_imag = n_imag
    state.eigenvalues = eigenvalues
    return state


def test_compute_stability() -> None:
    ev = np.array([1 + 2j, 1 - 2j, 0.5, -1 + 3j, -2])
    assert compute_stability(ev, 1e-10) == (3, 2)
    assert compute_stability(np.array([-1.0, -2.0]), 1e-10) == (0, 0)
    assert compute_stability(np.array([1e-12]), 1e-10) == (0, 0)


def test_detect_bifurcation() -> None:
    assert detect_bifurcation(make_state((1, 0), (0, 0)))
    assert not detect_bifurcation(make_state((1, 1), (0, 0)))
    # unknown previous stability
    assert not detect_bifurcation(make_state((1, -1), (0, -1)))


def test_bifurcation_type() -> None:
    ev = np.array([0.1 + 1j, 0.1 - 1j, -0.01, -3.0])
    bif_type, delta, ind_ev = bifurcation_type(make_state((1, 0), (0, 0), ev), 4, 4, 1e-10)
    assert bif_type == "bp" and delta == (1, 0)
    assert ind_ev == 2
    bif_type, delta, ind_ev = bifurcation_type(make_state((2, 0), (2, 0), ev), 4, 4, 1e-10)
    assert bif_type == "hopf" and delta == (2, 2)
    assert ind_ev in (0, 1)
    # a single complex eigenvalue crossed, its partner was not computed
    bif_type, _, _ = bifurcation_type(make_state((0, 1), (0, 1), ev), 3, 10, 1e-10)
    assert bif_type == "hopf"
    bif_type, _, _ = bifurcation_type(make_state((0, 1), (0, 1), ev), 10, 10, 1e-10)
    assert bif_type == "bp"
    bif_type, delta, _ = bifurcation_type(make_state((0, 3), (0, 2), ev), 4, 4, 1e-10)
    assert bif_type == "bp" and delta == (-3, -2)
    bif_type, _, ind_ev = bifurcation_type(make_state((1, 1), (0, 0)), 4, 4, 1e-10)
    assert bif_type == "none" and ind_ev == -1


def test_detect_fold() -> None:
    branch = Branch()
    assert not detect_fold(branch, BorderedArray([0.0], 0.1))
    branch.add_point(BranchPoint(param=0.3, record=0.0, step=0))
    branch.add_point(BranchPoint(param=0.2, record=0.0, step=1))
    assert not detect_fold(branch, BorderedArray([0.0], 0.1))
    assert detect_fold(branch, BorderedArray([0.0], 0.25))


def test_locate_crossing_on_line() -> None:
    prob = Problem(lambda x, p: x - p, lambda x, p: np.eye(1), params=0.0)
    params = ContinuationParameters(detect_bifurcation=0, n_inversion=2, tol_bisection=1e-3,
                                    max_bisection_steps=40)
    it = PseudoArclengthContinuation(prob, [0.0], params)
    state = ContinuationState(current=BorderedArray([0.3], 0.3), predicted=BorderedArray([0.4], 0.2),
                              tangent=BorderedArray([1.0], 1.0), ds=0.1, theta=0.5,
                              previous=BorderedArray([0.2], 0.2))
    crossing = locate_crossing(it, state, lambda z: z.p > 0.2512, False)
    assert crossing.status == "converged"
    assert crossing.inversions >= 2
    assert crossing.interval[0] <= 0.2512 <= crossing.interval[1]
    assert crossing.interval[1] - crossing.interval[0] < 1e-3
    assert crossing.z.p == pytest.approx(0.2512, abs=1e-3)
    # the state is not modified
    assert state.current.p == pytest.approx(0.3)


def test_locate_crossing_status_needs_inversions() -> None:
    prob = Problem(lambda x, p: x - p, lambda x, p: np.eye(1), params=0.0)
    state = ContinuationState(current=BorderedArray([0.3], 0.3), predicted=BorderedArray([0.4], 0.2),
                              tangent=BorderedArray([1.0], 1.0), ds=0.1, theta=0.5,
                              previous=BorderedArray([0.2], 0.2))
    # a single step back to p = 0.25 passes the crossing once
    params = ContinuationParameters(detect_bifurcation=0, n_inversion=2, max_bisection_steps=1)
    crossing = locate_crossing(PseudoArclengthContinuation(prob, [0.0], params), state,
                               lambda z: z.p > 0.2512, False)
    assert crossing.inversions == 1
    assert crossing.status == "guess"
    assert crossing.interval == pytest.approx((0.25, 0.3))
    # the tolerance is far out of reach, but the crossing was passed often enough
    params = ContinuationParameters(detect_bifurcation=0, n_inversion=2, max_bisection_steps=6,
                                    tol_bisection=1e-12)
    crossing = locate_crossing(PseudoArclengthContinuation(prob, [0.0], params), state,
                               lambda z: z.p > 0.2512, False)
    assert crossing.steps == 6
    assert crossing.inversions >= 2
    assert crossing.status == "converged"
    assert crossing.interval[0] <= 0.2512 <= crossing.interval[1]
