"""
Detection and localisation of special points along a branch:
bifurcations (changes of the number of unstable eigenvalues), folds (turning points
of the continuation parameter) and user events.
All of them are located with the same bisection, that walks back and forth along
the tangent and watches a criterion that distinguishes the two sides of the crossing.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Hashable, NamedTuple, Optional

import numpy as np

from branchtrace.core.profiling import profile
from branchtrace.core.solution import Branch, SpecialPoint
from branchtrace.core.types import BorderedArray

from .predictors import bordered_tangent, dot_theta, norm_theta

if TYPE_CHECKING:
    from .continuation_steppers import PseudoArclengthContinuation
    from .state import ContinuationState


def compute_stability(eigenvalues: np.ndarray, tol: float) -> tuple[int, int]:
    """
    Count the unstable eigenvalues (real part > tol) and, among those,
    the ones with a non-negligible imaginary part.
    """
    eigenvalues = np.asarray(eigenvalues)
    unstable = eigenvalues.real > tol
    n_unstable = int(np.count_nonzero(unstable))
    n_imag = int(np.count_nonzero(unstable & (np.abs(eigenvalues.imag) > tol)))
    return n_unstable, n_imag


def detect_bifurcation(state: ContinuationState) -> bool:
    """Did the number of unstable eigenvalues change in the last step?"""
    n, n_prev = state.n_unstable
    return n >= 0 and n_prev >= 0 and n != n_prev


def bifurcation_type(state: ContinuationState, nev: int, N: int, tol: float) -> tuple[str, tuple[int, int], int]:
    """
    Classify the bifurcation by the number of eigenvalues that crossed the imaginary axis.
    Returns (type, (change of unstable, change of imaginary eigenvalues), index of the critical eigenvalue)
    """
    n1 = state.n_unstable[0] - state.n_unstable[1]
    n2 = state.n_imag[0] - state.n_imag[1]
    d1, d2 = abs(n1), abs(n2)
    if d1 == 0:
        bif_type = "none"
    elif d1 == 1:
        # a single eigenvalue with imaginary part: the partner was not computed
        bif_type = "hopf" if d2 == 1 and nev < N else "bp"
    elif d1 == 2:
        bif_type = "hopf" if d2 == 2 else "bp"
    else:
        bif_type = "bp"
    ind_ev = -1
    if state.eigenvalues is not None and len(state.eigenvalues) > 0:
        ev = np.asarray(state.eigenvalues)
        candidates = np.arange(len(ev))
        if bif_type == "hopf":
            complex_ones = candidates[np.abs(ev.imag) > tol]
            if complex_ones.size > 0:
                candidates = complex_ones
        ind_ev = int(candidates[np.argmin(np.abs(ev.real[candidates]))])
    return bif_type, (n1, n2), ind_ev


def detect_fold(branch: Branch, z: BorderedArray) -> bool:
    """Did the continuation parameter turn around at the last recorded point?"""
    if len(branch.branch) < 2:
        return False
    p1 = branch.branch[-1].param
    p2 = branch.branch[-2].param
    return (z.p - p1) * (p1 - p2) < 0


class Crossing(NamedTuple):
    """Result of the localisation of a crossing"""
    #: "converged" if the bisection passed the crossing often enough, else "guess"
    status: str
    #: parameter interval (p_lo, p_hi) bracketing the crossing
    interval: tuple[float, float]
    #: the last point computed during bisection
    z: BorderedArray
    #: number of sign inversions
    inversions: int
    #: number of bisection steps
    steps: int
    #: estimate of the parameter at the crossing, if better than the one of z
    param: Optional[float] = None


@profile
def locate_crossing(it: PseudoArclengthContinuation, state: ContinuationState,
                    criterion: Callable[[BorderedArray], Hashable], before: Hashable) -> Crossing:
    """
    Bisection for a crossing between the previous and the current point of the state.
    Starting from the current point (after the crossing), the curve is followed
    along the tangent with halving steps. At each point the criterion is evaluated,
    points where it equals 'before' are before the crossing, all others after.
    Each time we pass the crossing, the direction is reversed.
    The state itself is not modified.
    """
    params = it.params
    theta = state.theta
    tau = state.tangent
    z = state.current.copy()
    # the distance to the previous point, in units of the tangent
    dist = abs(dot_theta(state.current - state.previous, tau, theta) / dot_theta(tau, tau, theta))
    s = -dist / 2
    p_before, p_after = state.previous.p, state.current.p
    after_side = True
    inversions = 0
    steps = 0
    while steps < params.max_bisection_steps:
        steps += 1
        z_pred = z + s * tau
        z_new, result = it.corrector(z, tau, z_pred, s, theta)
        if not result.converged:
            it.log(f"Bisection: corrector failed at step {steps}, stopping bisection", level=2)
            break
        z = z_new
        is_after = criterion(z) != before
        if is_after:
            p_after = z.p
        else:
            p_before = z.p
        if is_after != after_side:
            inversions += 1
            after_side = is_after
            s = -s / 2
        it.log(f"Bisection step {steps}: p = {z.p:+.10e}, #inversions = {inversions}, "
               f"interval width = {abs(p_after - p_before):.2e}", level=3)
        if inversions >= params.n_inversion and abs(p_after - p_before) < params.tol_bisection:
            break
    status = "converged" if inversions >= params.n_inversion else "guess"
    interval = (min(p_before, p_after), max(p_before, p_after))
    return Crossing(status, interval, z, inversions, steps)


def locate_bifurcation(it: PseudoArclengthContinuation, state: ContinuationState) -> Crossing:
    """locate the change of the number of unstable eigenvalues"""
    def criterion(z: BorderedArray) -> int:
        return it.compute_eigen(z.u, z.p)[2]
    return locate_crossing(it, state, criterion, state.n_unstable[1])


def locate_fold(it: PseudoArclengthContinuation, state: ContinuationState, before: float) -> Crossing:
    """
    Locate the sign change of the parameter component of the tangent.
    Both bracketing points lie on the same side of the turning point, so the
    extremum of p is estimated from the last points on either side: with s the
    arclength between them, dp/ds is interpolated linearly and integrated up to its root.
    """
    tau0 = state.tangent
    theta = state.theta
    # (point, dp/ds) on either side of the fold
    samples: dict[bool, tuple[BorderedArray, float]] = {}

    def criterion(z: BorderedArray) -> float:
        tau = bordered_tangent(it, z, tau0, theta)
        tp = tau.p / norm_theta(tau, theta)
        samples[bool(np.sign(tp) != before)] = (z.copy(), tp)
        return float(np.sign(tp))

    criterion(state.current)
    crossing = locate_crossing(it, state, criterion, before)
    if not (True in samples and False in samples):
        return crossing
    (z_b, tp_b), (z_a, tp_a) = samples[False], samples[True]
    h = norm_theta(z_a - z_b, theta)
    extremum = z_b.p + 0.5 * tp_b * h * tp_b / (tp_b - tp_a)
    d = max(abs(extremum - z_b.p), abs(extremum - z_a.p))
    interval = (min(crossing.interval[0], extremum - d), max(crossing.interval[1], extremum + d))
    return crossing._replace(interval=interval, param=float(extremum))


def locate_event(it: PseudoArclengthContinuation, state: ContinuationState, event) -> Crossing:
    """locate the crossing of a user event"""
    current, previous = state.event_values
    crit = event.criterion(current, previous)

    def criterion(z: BorderedArray) -> Hashable:
        return crit(event.values(z.u, z.p))
    return locate_crossing(it, state, criterion, crit(previous))


def special_point(it: PseudoArclengthContinuation, state: ContinuationState, bif_type: str,
                  status: str, interval: tuple[float, float], z: Optional[BorderedArray] = None,
                  tangent: Optional[BorderedArray] = None, delta: tuple[int, int] = (0, 0),
                  ind_ev: int = -1, label: str = "", param: Optional[float] = None) -> SpecialPoint:
    """Assemble the SpecialPoint for a crossing between the previous and the current step"""
    if z is None:
        z = state.current
    if tangent is None:
        tangent = state.tangent
    record: Any = it.problem.record_from_solution(z.u, z.p)
    return SpecialPoint(type=bif_type, step=state.step, step_before=max(state.step - 1, 0),
                        param=z.p if param is None else param,
                        interval=(float(interval[0]), float(interval[1])), x=z.u.copy(),
                        tangent=tangent.copy(), norm=float(np.linalg.norm(z.u)), record=record,
                        status=status, delta=delta, precision=abs(interval[1] - interval[0]),
                        ind_ev=ind_ev, label=label)


def handle_fold(it: PseudoArclengthContinuation, state: ContinuationState,
                branch: Branch) -> Optional[SpecialPoint]:
    """detect a fold in the last step and, if possible, locate it by bisection"""
    if not detect_fold(branch, state.current):
        return None
    p_prev = branch.branch[-1].param
    before = float(np.sign(p_prev - branch.branch[-2].param))
    interval = (min(p_prev, state.p), max(p_prev, state.p))
    status, z, param = "guess", None, None
    it.log(f"Fold detected before p = {state.p:.6e}", level=1)
    if it.predictor.arclength and it.params.max_bisection_steps > 0:
        crossing = locate_fold(it, state, before)
        status, interval, z = crossing.status, crossing.interval, crossing.z
        param = crossing.param
    return special_point(it, state, "fold", status, interval, z=z, param=param)


def handle_bifurcation(it: PseudoArclengthContinuation, state: ContinuationState) -> Optional[SpecialPoint]:
    """detect a bifurcation in the last step and, if desired, locate it by bisection"""
    if not detect_bifurcation(state):
        return None
    it.log(f"Bifurcation detected before p = {state.p:.6e}", level=1)
    status, z = "guess", None
    interval = (min(state.previous.p, state.p), max(state.previous.p, state.p))
    if it.params.detect_bifurcation > 2:
        crossing = locate_bifurcation(it, state)
        status, interval, z = crossing.status, crossing.interval, crossing.z
    # make sure that the localisation did not remove the bifurcation point
    if not detect_bifurcation(state):
        return None
    bif_type, delta, ind_ev = bifurcation_type(state, it.params.nev, state.current.u.size,
                                               it.params.tol_stability)
    if bif_type == "none":
        return None
    return special_point(it, state, bif_type, status, interval, z=z, delta=delta, ind_ev=ind_ev)


def handle_event(it: PseudoArclengthContinuation, state: ContinuationState) -> Optional[SpecialPoint]:
    """update the event values, detect a crossing and, if desired, locate it by bisection"""
    event = it.event
    state.update_event_values(event.values(state.current.u, state.p))
    current, previous = state.event_values
    if not event.crossed(current, previous):
        return None
    label = event.describe(current, previous)
    it.log(f"Event '{label}' detected before p = {state.p:.6e}", level=1)
    status, z = "guess", None
    interval = (min(state.previous.p, state.p), max(state.previous.p, state.p))
    if it.params.detect_event > 1:
        crossing = locate_event(it, state, event)
        status, interval, z = crossing.status, crossing.interval, crossing.z
    return special_point(it, state, "event", status, interval, z=z, label=label)
