"""
A deflation operator M for deflated Newton solves and deflated continuation.
Adds singularities to the equation at given solutions r_i
0 = F(u) --> 0 = M(u) * F(u)
with
M(u) = product_i (<u - r_i, u - r_i>^-power + shift)
The parameters are:
  power: some exponent to the norm <u, v>
  shift: some constant added shift parameter for numerical stability
"""
from __future__ import annotations

from typing import Any, Callable, Optional

import numpy as np

from branchtrace.core.solvers import DefaultLinearSolver, LinearSolver, NewtonResult, NewtonSolver
from branchtrace.core.types import Array, apply


class DeflationOperator:
    """
    The deflation operator, basically an ordered list of roots that are suppressed.
    The bilinear form dot has to be symmetric and positive on the diagonal.
    """

    def __init__(self, power: float = 2, shift: float = 1., roots=(),
                 dot: Callable[[Array, Array], float] = np.dot) -> None:
        if not power > 0:
            raise ValueError(f"The power of the deflation operator must be positive, got {power}")
        if shift < 0:
            raise ValueError(f"The shift of the deflation operator must be >= 0, got {shift}")
        #: the exponent of the norm that will be used for the deflation operator
        self.power = power
        #: small constant in the deflation operator, for numerical stability
        self.shift = shift
        #: symmetric bilinear form
        self.dot = dot
        #: list of solutions, that will be suppressed by the deflation operator
        self.roots: list[Array] = [np.array(r, dtype=float, copy=True) for r in roots]

    def operator(self, u: Array) -> float:
        """obtain the value of the deflation operator for given u"""
        if len(self.roots) == 0:
            return 1.
        out = 1.
        for r in self.roots:
            d = u - r
            out *= self.dot(d, d)**-self.power + self.shift
        return float(out)

    __call__ = operator

    def D_operator(self, u: Array, du: Array) -> float:
        """directional derivative dM(u)*du by finite differences"""
        if len(self.roots) == 0:
            return 0.
        delta = 1e-8
        return (self.operator(u + delta * du) - self.operator(u)) / delta

    def append(self, u: Array) -> None:
        """add a solution to the list of solutions used for deflation"""
        self.roots.append(np.array(u, dtype=float, copy=True))

    def pop(self, index: int = -1) -> Array:
        """remove a solution from the list and return it"""
        return self.roots.pop(index)

    def clear(self) -> None:
        """clear the list of solutions used for deflation"""
        self.roots = []

    def copy(self) -> DeflationOperator:
        return DeflationOperator(self.power, self.shift, self.roots, self.dot)

    def __getitem__(self, index):
        return self.roots[index]

    def __delitem__(self, index) -> None:
        del self.roots[index]

    def __len__(self) -> int:
        return len(self.roots)

    def __iter__(self):
        return iter(self.roots)

    def __repr__(self) -> str:
        return f"DeflationOperator(power={self.power}, shift={self.shift}) with {len(self)} roots"


class DeflatedJacobian:
    """
    The Jacobian of the deflated problem M(u) * F(u) at a point u,
    d(M*F)(u)*du = dF(u)*du * M(u) + F(u) * dM(u)*du.
    It is a matrix-free operator (call it on du), that the DeflatedLinearSolver
    inverts with two solves of the undeflated Jacobian.
    """

    def __init__(self, problem: DeflatedProblem, u: Array, par: Any) -> None:
        #: the deflated problem
        self.problem = problem
        #: the point where the Jacobian is evaluated
        self.u = u
        #: the parameters
        self.par = par
        #: the undeflated Jacobian dF(u)
        self.J = problem.problem.jacobian(u, par)
        #: the undeflated residuals F(u)
        self.F = problem.problem.rhs(u, par)
        #: the value of the deflation operator M(u)
        self.M = problem.deflation.operator(u)
        #: shape of the operator
        self.shape = (u.size, u.size)

    def __call__(self, du: Array) -> Array:
        out = apply(self.J, du) * self.M
        if len(self.problem.deflation) > 0:
            out = out + self.problem.deflation.D_operator(self.u, du) * self.F
        return out


class DeflatedProblem:
    """
    The deflated problem M(u) * F(u, par) = 0, where M is a DeflationOperator
    that penalizes the known roots.
    """

    def __init__(self, problem, deflation: DeflationOperator) -> None:
        #: the undeflated problem
        self.problem = problem
        #: the deflation operator
        self.deflation = deflation

    def rhs(self, u: Array, par: Any) -> Array:
        """the deflated residuals M(u) * F(u, par)"""
        return self.deflation.operator(u) * self.problem.rhs(u, par)

    def jacobian(self, u: Array, par: Any) -> DeflatedJacobian:
        return DeflatedJacobian(self, u, par)

    def __len__(self) -> int:
        return len(self.deflation)


class DeflatedLinearSolver(LinearSolver):
    """
    Solves the linear systems of the deflated problem
        M(u) * dF(u)*h + F(u) * dM(u)*h = rhs
    exactly, using two solves of the undeflated system dF(u)*h1 = rhs and dF(u)*h2 = F(u)
    (with one factorization), i.e. a Sherman-Morrison formula for the rank one update:
        h = (h1 - z*h2) / M(u),  z = dM(u)*h1 / (M(u) + dM(u)*h2)
    Other Jacobians are handed to the underlying solver.
    """

    def __init__(self, solver: Optional[LinearSolver] = None) -> None:
        #: the linear solver for the undeflated Jacobian
        self.solver = DefaultLinearSolver() if solver is None else solver

    def solve(self, J, rhs: Array):
        if not isinstance(J, DeflatedJacobian):
            return self.solver.solve(J, rhs)
        if len(J.problem.deflation) == 0:
            h1, converged, it1 = self.solver.solve(J.J, rhs)
            return h1, converged, (it1, 0)
        h1, h2, converged, its = self.solver.solve_bordered(J.J, rhs, J.F)
        deflation = J.problem.deflation
        z1 = deflation.D_operator(J.u, h1)
        z2 = deflation.D_operator(J.u, h2)
        z = z1 / (J.M + z2)
        return (h1 - z * h2) / J.M, converged, its


def newton_from_two_guesses(newton: NewtonSolver, problem, x0: Array, x1: Array, par: Any,
                            deflation: Optional[DeflationOperator] = None,
                            **kwargs) -> tuple[NewtonResult, NewtonResult]:
    """
    Converge the first guess x0, then converge the second guess x1 with the first
    solution deflated, such that the two results are distinct (e.g. for branch switching).
    Raises a LinAlgError if the first guess does not converge.
    """
    first = newton.solve(problem, x0, par, **kwargs)
    if not first.converged:
        newton.throw_no_convergence_error(first, "(first guess)")
    if deflation is None:
        deflation = DeflationOperator(power=2, shift=1.)
    else:
        deflation = deflation.copy()
    deflation.append(first.x)
    second = newton.solve(problem, x1, par, deflation=deflation, **kwargs)
    return first, second
