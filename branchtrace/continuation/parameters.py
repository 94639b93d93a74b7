"""
Configuration of the continuation.
All options are enumerated once with their defaults and validated at construction,
use dataclasses.replace(params, ...) to obtain a modified (and validated) copy.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from branchtrace.core.solvers import BorderedLinearSolver, BorderingBLS, NewtonSolver


@dataclass
class ContinuationParameters:
    """Options of the pseudo-arclength continuation and of the deflated continuation"""

    # step size control
    #: minimal absolute step size, the continuation stops when a step fails at this size
    dsmin: float = 1e-4
    #: maximal absolute step size
    dsmax: float = 0.1
    #: initial step size, its sign determines the initial direction in the parameter
    ds: float = 0.01
    #: aggressiveness of the step size adaption
    a: float = 0.5
    #: the number of Newton iterations that the step size adaption aims at
    ndesired_newton_steps: int = 3

    # parameter range
    #: lower bound of the continuation parameter
    p_min: float = -1.
    #: upper bound of the continuation parameter
    p_max: float = 1.
    #: maximum number of continuation steps
    max_steps: int = 400

    # pseudo-arclength constraint
    #: weight of the state vector (theta) vs. the parameter (1 - theta) in the arclength
    theta: float = 0.5
    #: the second initial point is computed at p0 + ds / eta
    eta: float = 150.
    #: rescale theta such that the parameter contribution stays balanced
    do_arclength_scaling: bool = False
    #: target value of |dp * theta| for the arclength scaling
    g_goal: float = 0.5
    #: threshold of |dp * theta| above which theta is rescaled
    g_max: float = 0.8
    #: lower bound of theta during the arclength scaling
    theta_min: float = 1e-3
    #: step size of the finite difference derivative dF/dp
    finite_difference_eps: float = 1e-8

    # detection of special points
    #: detect folds by the sign of the tangent's parameter component
    detect_fold: bool = True
    #: 0: no eigenvalues, 1: eigenvalues only, 2: flag bifurcations, 3: flag and locate by bisection
    detect_bifurcation: int = 3
    #: 0: no events, 1: flag events, 2: flag and locate by bisection
    detect_event: int = 0
    #: number of eigenvalues to compute
    nev: int = 3
    #: eigenvalues with a real part larger than this are considered unstable
    tol_stability: float = 1e-10
    #: number of sign inversions during bisection before it is considered converged
    n_inversion: int = 2
    #: maximum number of bisection steps
    max_bisection_steps: int = 15
    #: bisection has converged when the parameter interval is smaller than this
    tol_bisection: float = 1e-10

    # recording
    #: store the eigenvalues every n steps (0: never)
    save_eig_every_step: int = 1
    #: store the solution vector every n steps (0: never)
    save_sol_every_step: int = 0
    #: whether the eigenvectors are stored together with the eigenvalues
    save_eigenvectors: bool = False

    # solvers
    #: the corrector
    newton_solver: NewtonSolver = field(default_factory=NewtonSolver)
    #: solver for the bordered systems of the arclength constraint and the tangent
    bordered_linear_solver: BorderedLinearSolver = field(default_factory=BorderingBLS)

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        """Raise a ValueError for an inconsistent configuration"""
        if not 0 < self.dsmin <= self.dsmax:
            raise ValueError(
                f"Invalid step size bounds: 0 < dsmin <= dsmax required, got dsmin={self.dsmin}, dsmax={self.dsmax}")
        if not self.dsmin <= abs(self.ds) <= self.dsmax:
            raise ValueError(
                f"Invalid initial step size ds={self.ds}: |ds| must lie in [{self.dsmin}, {self.dsmax}]")
        if not self.p_min < self.p_max:
            raise ValueError(f"Invalid parameter range: p_min={self.p_min} >= p_max={self.p_max}")
        if not 0 < self.theta <= 1:
            raise ValueError(f"theta must lie in (0, 1], got {self.theta}")
        if not 0 < self.theta_min <= 1:
            raise ValueError(f"theta_min must lie in (0, 1], got {self.theta_min}")
        if self.max_steps < 0:
            raise ValueError(f"max_steps must be >= 0, got {self.max_steps}")
        if self.a < 0:
            raise ValueError(f"The aggressiveness a must be >= 0, got {self.a}")
        if self.eta <= 0:
            raise ValueError(f"eta must be positive, got {self.eta}")
        if self.finite_difference_eps <= 0:
            raise ValueError(f"finite_difference_eps must be positive, got {self.finite_difference_eps}")
        if self.detect_bifurcation not in (0, 1, 2, 3):
            raise ValueError(f"detect_bifurcation must be one of 0, 1, 2, 3, got {self.detect_bifurcation}")
        if self.detect_event not in (0, 1, 2):
            raise ValueError(f"detect_event must be one of 0, 1, 2, got {self.detect_event}")
        if self.nev < 0:
            raise ValueError(f"nev must be >= 0, got {self.nev}")
        if self.detect_bifurcation > 0 and self.nev == 0:
            raise ValueError("Bifurcation detection needs eigenvalues, but nev == 0")
        if self.n_inversion < 1:
            raise ValueError(f"n_inversion must be >= 1, got {self.n_inversion}")
        if self.max_bisection_steps < 0:
            raise ValueError(f"max_bisection_steps must be >= 0, got {self.max_bisection_steps}")
        if self.save_eig_every_step < 0 or self.save_sol_every_step < 0:
            raise ValueError("save_eig_every_step and save_sol_every_step must be >= 0")
        nmax = self.newton_solver.max_iterations
        if not 0 < self.ndesired_newton_steps <= max(nmax, 1):
            raise ValueError(
                f"ndesired_newton_steps={self.ndesired_newton_steps} must lie in [1, {nmax}] "
                "(the maximum number of Newton iterations)")
