"""
Deflated continuation (Farrell, Beentjes & Birkisson, "The computation of disconnected
bifurcation diagrams", arXiv:1603.00809).
All branches are continued simultaneously in natural parameter steps. At each
parameter value, the roots found on the other branches are deflated, so that no two
branches converge to the same solution, and a deflated Newton search from the known
solutions discovers new, possibly disconnected, branches.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

import numpy as np

from branchtrace.core.solution import BifurcationDiagram, Branch
from branchtrace.core.types import Array, ArrayLike, BorderedArray

from .bifurcations import bifurcation_type, detect_bifurcation, special_point
from .continuation_steppers import PseudoArclengthContinuation
from .deflation import DeflationOperator
from .parameters import ContinuationParameters
from .predictors import SecantPredictor, TangentPredictor, normalize_tangent
from .state import ContinuationState

if TYPE_CHECKING:
    from branchtrace.core.problem import Problem


@dataclass
class DCState:
    """State of a single branch during deflated continuation"""
    #: the continuation state of the branch
    state: ContinuationState
    #: inactive branches are frozen and take no part in stepping and deflation
    is_active: bool = True

    @property
    def x(self) -> np.ndarray:
        return self.state.x

    @property
    def p(self) -> float:
        return self.state.p


class DeflatedContinuationResult(BifurcationDiagram):
    """The branches of a deflated continuation, with the final solutions of the active ones"""

    def __init__(self, branches: list[Branch], solutions: list[Array], parameter: float) -> None:
        super().__init__(branches)
        #: the solutions of the active branches at the final parameter value
        self.solutions = solutions
        #: the final parameter value
        self.parameter = parameter

    def __repr__(self) -> str:
        return (f"DeflatedContinuationResult with {len(self.branches)} branches, "
                f"{len(self.solutions)} active at p = {self.parameter:.6g}")


def default_perturbation(x: Array, p: float, idb: int) -> Array:
    """small deterministic perturbation of a known solution, the starting point of a deflated search"""
    return x + 1e-3 * (1 + np.abs(x))


class DeflatedContinuation:
    """
    Driver for deflated continuation. The roots of the deflation operator are the initial
    guesses at the initial parameter value, each of them seeds a branch.
    """

    def __init__(self, problem: Problem, deflation: DeflationOperator,
                 params: Optional[ContinuationParameters] = None,
                 par: Any = None,
                 max_branches: int = 100,
                 seek_every_step: int = 1,
                 max_iter_deflation: Optional[int] = None,
                 perturb_solution: Callable[[Array, float, int], Array] = default_perturbation,
                 accept_solution: Callable[[Array, float], bool] = lambda x, p: True,
                 update_deflation_op: Optional[Callable[[DeflationOperator, Array, float], None]] = None,
                 predictor: Optional[TangentPredictor] = None,
                 callback_newton: Optional[Callable[..., bool]] = None,
                 verbosity: int = 0) -> None:
        if len(deflation) == 0:
            raise ValueError("The deflation operator needs at least one root, "
                             "the roots are the initial guesses of the branches")
        if max_branches < 1 or seek_every_step < 1:
            raise ValueError("max_branches and seek_every_step must be positive")
        #: a copy of the deflation operator, its roots are replaced at each step
        self.deflation = deflation.copy()
        #: the problem
        self.problem = problem
        #: the continuation parameters
        self.params = ContinuationParameters() if params is None else params
        #: maximum number of active branches, no new branches are sought beyond
        self.max_branches = max_branches
        #: seek new branches every n-th step
        self.seek_every_step = seek_every_step
        #: maximum number of deflated Newton iterations when seeking new branches
        self.max_iter_deflation = 5 * self.params.newton_solver.max_iterations \
            if max_iter_deflation is None else max_iter_deflation
        #: perturbation (x, p, branch index) -> x of known solutions, used to seek new ones
        self.perturb_solution = perturb_solution
        #: new solutions (x, p) are only accepted if this returns True
        self.accept_solution = accept_solution
        #: update of the deflation operator with an accepted solution, e.g. to add symmetric copies
        self.update_deflation_op = update_deflation_op
        #: how verbose should the continuation be? 0 = quiet, larger numbers = print more details
        self.verbosity = verbosity
        #: the continuation iterator, that is shared by all branches
        self.iterator = PseudoArclengthContinuation(
            problem, self.deflation[0], self.params, par=par,
            predictor=SecantPredictor() if predictor is None else predictor,
            callback_newton=callback_newton, verbosity=max(verbosity - 2, 0))
        #: the states of all branches
        self.states: list[DCState] = []
        #: the branches
        self.branches: list[Branch] = []

    def log(self, message: str, level: int = 1) -> None:
        if self.verbosity >= level:
            print(message)

    @property
    def newton(self):
        return self.params.newton_solver

    @property
    def nactive(self) -> int:
        return sum(s.is_active for s in self.states)

    def add_branch(self, x: ArrayLike, p: float) -> DCState:
        """start a new branch from the solution x at parameter p"""
        it = self.iterator
        state = it.start(x, self.problem.set_continuation_parameter(p, it.par))
        dcstate = DCState(state)
        self.states.append(dcstate)
        self.branches.append(it.new_branch(state))
        return dcstate

    def _deflate(self, x: Array, p: float) -> None:
        if self.update_deflation_op is None:
            self.deflation.append(x)
        else:
            self.update_deflation_op(self.deflation, x, p)

    def update_branch(self, dcstate: DCState, branch: Branch, current_param: float) -> bool:
        """
        Continue an active branch to the current parameter value with a Newton solve,
        deflated by the roots of the branches that were updated before.
        """
        if not dcstate.is_active:
            return False
        it = self.iterator
        state = dcstate.state
        # guess along the tangent
        dp = current_param - state.p
        guess = state.x
        if abs(state.tangent.p) > 1e-8:
            guess = state.x + dp / state.tangent.p * state.tangent.u
        par = self.problem.set_continuation_parameter(current_param, it.par)
        result = self.newton.solve(self.problem, guess, par, deflation=self.deflation,
                                   callback=it.callback_newton, iteration_continuation=state.step,
                                   p=current_param)
        state.converged = result.converged
        state.newton_iterations = result.iterations
        state.linear_iterations = result.linear_iterations
        if not result.converged:
            dcstate.is_active = False
            branch.add_solution(state.x, state.p, state.step)
            return False
        z = BorderedArray(result.x, current_param)
        tangent = normalize_tangent(z - state.current, state.tangent, state.theta)
        state.accept(z)
        state.tangent = tangent
        self._deflate(result.x, current_param)
        if it.compute_eigen_elements:
            it.update_eigen(state)
        state.step += 1
        special = None
        if self.params.detect_bifurcation > 1 and detect_bifurcation(state):
            bif_type, delta, ind_ev = bifurcation_type(state, self.params.nev, state.x.size,
                                                       self.params.tol_stability)
            if bif_type != "none":
                interval = (min(state.previous.p, state.p), max(state.previous.p, state.p))
                special = special_point(it, state, bif_type, "guess", interval,
                                        delta=delta, ind_ev=ind_ev)
        it.record(branch, state)
        if special is not None:
            branch.add_special_point(special)
        return True

    def seek_new_branches(self, current_param: float) -> None:
        """deflated Newton searches from the active branches that existed at the beginning of the step"""
        par = self.problem.set_continuation_parameter(current_param, self.iterator.par)
        newton = dataclasses.replace(self.newton, max_iterations=self.max_iter_deflation)
        nbranches = len(self.states)
        nsearched = 0
        for idb, dcstate in enumerate(self.states[:nbranches]):
            if not dcstate.is_active or nsearched >= self.max_branches:
                continue
            nsearched += 1
            self.log(f"  Deflating branch {idb}", level=2)
            while True:
                guess = self.perturb_solution(dcstate.x, current_param, idb)
                result = newton.solve(self.problem, guess, par, deflation=self.deflation,
                                      callback=self.iterator.callback_newton,
                                      from_deflated_newton=True, p=current_param)
                if not result.converged:
                    break
                if newton.norm(result.x - dcstate.x) < newton.tolerance:
                    self.log("Same solution found for identical parameter value", level=1)
                    break
                if not self.accept_solution(result.x, current_param):
                    self.log(f"  Solution from branch {idb} rejected", level=2)
                    break
                self.log(f"  New solution found from branch {idb}", level=1)
                self.deflation.append(result.x)
                try:
                    self.add_branch(result.x, current_param)
                except np.linalg.LinAlgError as err:
                    self.log(f"  Could not start a branch from the new solution: {err}", level=1)

    def run(self) -> DeflatedContinuationResult:
        params = self.params
        it = self.iterator
        # every root of the deflation operator seeds a branch
        p0 = self.problem.get_continuation_parameter(it.par)
        for root in list(self.deflation):
            self.add_branch(root, p0)
        self.log(f"There are {len(self.branches)} branches", level=1)
        current_param = p0
        nstep = 0
        while (params.p_min < current_param < params.p_max or nstep == 0) and nstep < params.max_steps:
            current_param = float(np.clip(current_param + params.ds, params.p_min, params.p_max))
            self.log(f"Step {nstep}: {self.nactive}/{len(self.branches)} active branches, "
                     f"p = {current_param:.6e}", level=1)
            # only roots of the current parameter value are deflated
            self.deflation.clear()
            for idb, (dcstate, branch) in enumerate(zip(self.states, self.branches)):
                was_active = dcstate.is_active
                if self.update_branch(dcstate, branch, current_param):
                    self.log(f"  Continuation of branch {idb} in {dcstate.state.newton_iterations} "
                             f"iterations", level=2)
                elif was_active:
                    self.log(f"  Branch {idb} failed to converge, fold?", level=1)
            if nstep % self.seek_every_step == 0 and self.nactive < self.max_branches:
                self.log("  Looking for new branches", level=2)
                self.seek_new_branches(current_param)
            nstep += 1
        solutions = [s.x.copy() for s in self.states if s.is_active]
        return DeflatedContinuationResult(self.branches, solutions, current_param)


def deflated_continuation(problem: Problem, deflation: DeflationOperator,
                          params: Optional[ContinuationParameters] = None,
                          **kwargs) -> DeflatedContinuationResult:
    """
    Compute the (possibly disconnected) branches of solutions with deflated continuation,
    starting from the roots of the deflation operator.
    Keyword arguments are passed to DeflatedContinuation.
    """
    return DeflatedContinuation(problem, deflation, params, **kwargs).run()
