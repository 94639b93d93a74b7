"""
Tangent predictors for the pseudo-arclength continuation.
A predictor provides the direction of the curve of solutions (x(s), p(s)) at the
current point and the guess for the next point. All tangents are normalized to
unit length in the weighted norm
    ||(dx, dp)||_theta^2 = theta / N * <dx, dx> + (1 - theta) * dp^2
and point in the direction of travel, the standard guess is z + |ds| * tangent.
"""
from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Optional

import numpy as np

from branchtrace.core.solvers import NewtonResult
from branchtrace.core.types import BorderedArray

if TYPE_CHECKING:
    from .continuation_steppers import PseudoArclengthContinuation
    from .state import ContinuationState


def dot_theta(a: BorderedArray, b: BorderedArray, theta: float) -> float:
    """the weighted dot product of the arclength constraint"""
    return theta * np.dot(a.u, b.u) / max(a.u.size, 1) + (1 - theta) * a.p * b.p


def norm_theta(a: BorderedArray, theta: float) -> float:
    return float(np.sqrt(dot_theta(a, a, theta)))


def normalize_tangent(tau: BorderedArray, tau_old: Optional[BorderedArray], theta: float) -> BorderedArray:
    """normalize tau and orient it such that it does not reverse the previous tangent"""
    n = norm_theta(tau, theta)
    if not n > 0:
        return tau_old.copy() if tau_old is not None else tau
    tau = tau * (1. / n)
    if tau_old is not None and dot_theta(tau, tau_old, theta) < 0:
        tau = -tau
    return tau


def bordered_tangent(it: PseudoArclengthContinuation, z: BorderedArray, tau0: BorderedArray,
                     theta: float) -> BorderedArray:
    """
    Solve the bordered system
        [ J                  dF/dp          ] [dx]   [0]
        [ theta / N * dx0^T  (1-theta) * dp0 ] [dp] = [1]
    for the (unnormalized) tangent at z, oriented along tau0.
    """
    par = it.problem.set_continuation_parameter(z.p, it.par)
    J = it.problem.jacobian(z.u, par)
    dFdp = it.problem.parameter_derivative(z.u, par, eps=it.params.finite_difference_eps)
    N = z.u.size
    dx, dp, _, _ = it.params.bordered_linear_solver.solve(
        J, dFdp, theta / N * tau0.u, (1 - theta) * tau0.p, np.zeros(N), 1.,
        solver=it.newton.linear_solver)
    return BorderedArray(dx, dp)


class TangentPredictor:
    """
    Abstract base class for all tangent predictors.
    """

    #: whether the corrector solves the arclength constraint, otherwise it works at fixed parameter
    arclength = True

    def initialize(self, it: PseudoArclengthContinuation, state: ContinuationState) -> None:
        """called once, after the first point and the initial (secant) tangent are known"""
        pass

    def predict(self, it: PseudoArclengthContinuation, state: ContinuationState) -> BorderedArray:
        """guess for the next point on the branch"""
        return state.current + abs(state.ds) * state.tangent

    def step(self, it: PseudoArclengthContinuation,
             state: ContinuationState) -> tuple[BorderedArray, NewtonResult]:
        """predict and correct, return the corrected point and the corrector's result"""
        state.predicted = it.clamp(self.predict(it, state))
        return it.corrector(state.current, state.tangent, state.predicted, abs(state.ds), state.theta)

    def update_tangent(self, it: PseudoArclengthContinuation, state: ContinuationState,
                       z_new: BorderedArray) -> BorderedArray:
        """the tangent at the newly accepted point z_new (state.current is still the old point)"""
        raise NotImplementedError(
            "'TangentPredictor' is an abstract base class - do not use for actual continuation!")


class NaturalPredictor(TangentPredictor):
    """
    Natural parameter continuation: the parameter is increased by ds and the
    corrector works at fixed parameter. Does not pass folds.
    """

    arclength = False

    def _tangent(self, state: ContinuationState) -> BorderedArray:
        return BorderedArray(np.zeros_like(state.current.u), np.sign(state.ds))

    def initialize(self, it: PseudoArclengthContinuation, state: ContinuationState) -> None:
        state.tangent = self._tangent(state)

    def update_tangent(self, it: PseudoArclengthContinuation, state: ContinuationState,
                       z_new: BorderedArray) -> BorderedArray:
        return self._tangent(state)


class SecantPredictor(TangentPredictor):
    """The tangent is the normalized difference of the two last points"""

    def update_tangent(self, it: PseudoArclengthContinuation, state: ContinuationState,
                       z_new: BorderedArray) -> BorderedArray:
        return normalize_tangent(z_new - state.current, state.tangent, state.theta)


class BorderedPredictor(TangentPredictor):
    """The tangent is obtained from the bordered system at the new point"""

    def update_tangent(self, it: PseudoArclengthContinuation, state: ContinuationState,
                       z_new: BorderedArray) -> BorderedArray:
        tau = bordered_tangent(it, z_new, state.tangent, state.theta)
        return normalize_tangent(tau, state.tangent, state.theta)


class PolynomialPredictor(TangentPredictor):
    """
    Fits a polynomial of degree n through the last k points of the branch,
    parametrized by the (weighted) arclength. The tangent is the derivative at the
    last point and the guess extrapolates the polynomial by |ds|.
    With only two points available, this is the secant predictor.
    """

    def __init__(self, n: int = 2, k: int = 6) -> None:
        if n < 1 or k < n + 1:
            raise ValueError(f"PolynomialPredictor needs n >= 1 and k > n, got n={n}, k={k}")
        #: degree of the polynomial
        self.n = n
        #: number of points used for the fit
        self.k = k

    def initialize(self, it: PseudoArclengthContinuation, state: ContinuationState) -> None:
        state.history = deque([state.current.copy()], maxlen=self.k)

    def _fit(self, points: list[BorderedArray], theta: float) -> Optional[np.ndarray]:
        """coefficients of the polynomial fit in the arclength s, with s = 0 at the last point"""
        s = np.zeros(len(points))
        for i in range(1, len(points)):
            s[i] = s[i - 1] + norm_theta(points[i] - points[i - 1], theta)
        if np.any(np.diff(s) <= 0):
            return None
        s -= s[-1]
        Z = np.array([np.append(z.u, z.p) for z in points])
        deg = min(self.n, len(points) - 1)
        return np.polyfit(s, Z, deg)

    def predict(self, it: PseudoArclengthContinuation, state: ContinuationState) -> BorderedArray:
        points = list(state.history)
        coeffs = self._fit(points, state.theta) if len(points) > 2 else None
        if coeffs is None:
            return super().predict(it, state)
        h = abs(state.ds)
        z = np.zeros(coeffs.shape[1])
        for c in coeffs:
            z = z * h + c
        return BorderedArray(z[:-1], z[-1])

    def update_tangent(self, it: PseudoArclengthContinuation, state: ContinuationState,
                       z_new: BorderedArray) -> BorderedArray:
        points = list(state.history)[-(self.k - 1):] + [z_new]
        coeffs = self._fit(points, state.theta) if len(points) > 2 else None
        if coeffs is None:
            return normalize_tangent(z_new - state.current, state.tangent, state.theta)
        # derivative at s = 0
        d = coeffs[-2]
        return normalize_tangent(BorderedArray(d[:-1], d[-1]), state.tangent, state.theta)


class MultiplePredictor(SecantPredictor):
    """
    Tries nb guesses along the secant with the step sizes |ds| * alpha^k, k = nb-1, ..., 0.
    The farthest guess that converges within a few Newton iterations is taken,
    the guess with k = 0 gets the full Newton budget.
    """

    def __init__(self, alpha: float = 2., nb: int = 3, max_iterations: int = 5) -> None:
        if alpha <= 1 or nb < 1:
            raise ValueError(f"MultiplePredictor needs alpha > 1 and nb >= 1, got alpha={alpha}, nb={nb}")
        #: growth factor of the step
        self.alpha = alpha
        #: number of guesses
        self.nb = nb
        #: Newton budget for the farther guesses
        self.max_iterations = max_iterations

    def step(self, it: PseudoArclengthContinuation,
             state: ContinuationState) -> tuple[BorderedArray, NewtonResult]:
        for k in reversed(range(self.nb)):
            h = abs(state.ds) * self.alpha**k
            state.predicted = it.clamp(state.current + h * state.tangent)
            max_iterations = self.max_iterations if k > 0 else None
            z, result = it.corrector(state.current, state.tangent, state.predicted, h, state.theta,
                                     max_iterations=max_iterations)
            if result.converged:
                if k > 0:
                    it.log(f"Multiple predictor: accepted guess #{k} with step {h:.3e}", level=2)
                break
        return z, result
