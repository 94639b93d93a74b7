from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional

import numpy as np

from branchtrace.core.profiling import profile
from branchtrace.core.solution import Branch, BranchPoint
from branchtrace.core.solvers import NewtonResult, NewtonSolver
from branchtrace.core.types import ArrayLike, BorderedArray

from .bifurcations import compute_stability, handle_bifurcation, handle_event, handle_fold
from .events import Event
from .parameters import ContinuationParameters
from .predictors import SecantPredictor, TangentPredictor, dot_theta, normalize_tangent
from .state import ContinuationState
from .stepsize import step_size_control

if TYPE_CHECKING:
    from branchtrace.core.problem import Problem


class PlotStrategy:
    """
    Plotting strategy that is called after each recorded step. This one does nothing,
    see branchtrace.plotting for a live plot with matplotlib.
    """

    def update(self, branch: Branch, state: ContinuationState) -> None:
        pass

    def finish(self, branch: Branch) -> None:
        pass


class PseudoArclengthContinuation:
    """
    Pseudo-arclength continuation of the solutions of F(x, par) = 0 with respect to the
    scalar continuation parameter p, that the problem's lens selects within par.
    One step consists of predictor (see predictors.py), corrector (a Newton solver for
    F = 0 together with the arclength constraint), tangent update, computation of the
    eigenvalues, detection of special points and recording on the branch.
    Use run() to compute a whole branch, or iterate over the object to get the states
    step by step.
    """

    def __init__(self, problem: Problem, x0: ArrayLike,
                 params: Optional[ContinuationParameters] = None,
                 par: Any = None,
                 predictor: Optional[TangentPredictor] = None,
                 event: Optional[Event] = None,
                 finalise_solution: Optional[Callable[..., bool]] = None,
                 save_solution: Optional[Callable[..., None]] = None,
                 callback_newton: Optional[Callable[..., bool]] = None,
                 plot: Optional[PlotStrategy] = None,
                 verbosity: int = 0) -> None:
        #: the problem with the residuals F(x, par) and the lens on the continuation parameter
        self.problem = problem
        #: the parameters, the continuation starts from the value of the continuation parameter in here
        self.par = problem.params if par is None else par
        # the lens has to fit the parameters
        self.problem.lens.check(self.par)
        #: the initial guess
        self.x0 = np.array(x0, dtype=float)
        #: the continuation parameters
        self.params = ContinuationParameters() if params is None else params
        #: the tangent predictor
        self.predictor = SecantPredictor() if predictor is None else predictor
        #: the monitored user event
        self.event = event
        #: called with (z, tangent, step, branch, state=state, iterator=self) after each step,
        #: the continuation stops if it returns False
        self.finalise_solution = finalise_solution
        #: called with (x, p, step, branch) after each step, e.g. to save the solution to a file
        self.save_solution = save_solution
        #: callback for the Newton iterations, see NewtonSolver.solve
        self.callback_newton = callback_newton
        #: the plotting strategy
        self.plot = PlotStrategy() if plot is None else plot
        #: how verbose should the continuation be? 0 = quiet, larger numbers = print more details
        self.verbosity = verbosity

    @property
    def newton(self) -> NewtonSolver:
        return self.params.newton_solver

    @property
    def compute_eigen_elements(self) -> bool:
        return self.params.detect_bifurcation > 0

    @property
    def event_active(self) -> bool:
        return self.event is not None and self.params.detect_event > 0

    def log(self, message: str, level: int = 1) -> None:
        """print a message if the verbosity is at least level"""
        if self.verbosity >= level:
            print(message)

    def clamp(self, z: BorderedArray) -> BorderedArray:
        """restrict the parameter of z to [p_min, p_max]"""
        return BorderedArray(z.u, float(np.clip(z.p, self.params.p_min, self.params.p_max)))

    # --- initialisation ---

    def start(self, x0: Optional[ArrayLike] = None, par: Any = None) -> ContinuationState:
        """
        Converge the initial guess at p0 and a second point at p0 + ds / eta,
        and return the initial state with the secant tangent of the two points.
        The initial guess and parameters default to the ones given to the constructor.
        """
        params = self.params
        x0 = self.x0 if x0 is None else np.array(x0, dtype=float)
        par = self.par if par is None else par
        p0 = self.problem.get_continuation_parameter(par)
        if not params.p_min <= p0 <= params.p_max:
            raise ValueError(f"Initial parameter {p0} must be within bounds [{params.p_min}, {params.p_max}]")
        self.log("Converging the initial guess", level=1)
        result = self.newton.solve(self.problem, x0, par, callback=self.callback_newton,
                                   iteration_continuation=0, p=p0)
        if not result.converged:
            self.newton.throw_no_convergence_error(result, "Failed to converge the initial guess on the branch.")
        p1 = p0 + params.ds / params.eta
        self.log(f"Computing the initial tangent, second point at p = {p1:.6e}", level=1)
        result1 = self.newton.solve(self.problem, result.x, self.problem.set_continuation_parameter(p1, par),
                                    callback=self.callback_newton, iteration_continuation=0, p=p1)
        if not result1.converged:
            self.newton.throw_no_convergence_error(
                result1, "Failed to converge the second point, required for the initial tangent.")
        return self.start_from_two_points(result.x, p0, result1.x, p1)

    def start_from_two_points(self, x0: ArrayLike, p0: float, x1: ArrayLike, p1: float) -> ContinuationState:
        """initial state from two converged points, the branch starts at (x0, p0)"""
        z0 = BorderedArray(x0, p0)
        z1 = BorderedArray(x1, p1)
        tangent = normalize_tangent(z1 - z0, None, self.params.theta)
        state = ContinuationState(current=z0, predicted=z1, tangent=tangent, ds=self.params.ds,
                                  theta=self.params.theta, previous=z0.copy())
        state.history.append(z0.copy())
        if self.compute_eigen_elements:
            self.update_eigen(state)
        if self.event_active:
            values = self.event.values(z0.u, z0.p)
            state.event_values = (values, values)
        self.predictor.initialize(self, state)
        return state

    # --- corrector ---

    def corrector(self, z0: BorderedArray, tangent: BorderedArray, z_pred: BorderedArray, ds: float,
                  theta: float, max_iterations: Optional[int] = None) -> tuple[BorderedArray, NewtonResult]:
        """
        Correct the guess z_pred onto the branch. With arclength, the constraint
        dot_theta(z - z0, tangent) = ds is solved together with F = 0, otherwise
        the parameter is fixed to z_pred.p.
        """
        newton = self.newton
        if max_iterations is not None:
            newton = dataclasses.replace(newton, max_iterations=max_iterations)
        if not self.predictor.arclength:
            par = self.problem.set_continuation_parameter(z_pred.p, self.par)
            result = newton.solve(self.problem, z_pred.u, par, callback=self.callback_newton, p=z_pred.p)
            return BorderedArray(result.x, z_pred.p), result
        return self.newton_palc(newton, z0, tangent, z_pred, ds, theta)

    @profile
    def newton_palc(self, newton: NewtonSolver, z0: BorderedArray, tangent: BorderedArray,
                    z_pred: BorderedArray, ds: float, theta: float) -> tuple[BorderedArray, NewtonResult]:
        """
        Newton solver for the bordered system
            F(x, p) = 0
            N(x, p) = theta / N * <x - x0, dx0> + (1 - theta) * (p - p0) * dp0 - ds = 0
        The residual is max(norm(F), |N|).
        """
        N = z0.u.size
        b = theta / N * tangent.u
        c = (1 - theta) * tangent.p
        bls = self.params.bordered_linear_solver
        x = np.array(z_pred.u, dtype=float, copy=True)
        p = z_pred.p

        def residuals(x, p):
            par = self.problem.set_continuation_parameter(p, self.par)
            f = self.problem.rhs(x, par)
            n = dot_theta(BorderedArray(x - z0.u, p - z0.p), tangent, theta) - ds
            return par, f, n

        par, f, n = residuals(x, p)
        res = max(float(newton.norm(f)), abs(n))
        history = [res]
        iteration = 0
        itlinear = 0
        proceed = True
        while proceed and np.isfinite(res) and not res < newton.tolerance and iteration < newton.max_iterations:
            J = self.problem.jacobian(x, par)
            dFdp = self.problem.parameter_derivative(x, par, f0=f, eps=self.params.finite_difference_eps)
            dx, dp, _, its = bls.solve(J, dFdp, b, c, f, n, solver=newton.linear_solver)
            itlinear += its
            x = x - dx
            p = p - dp
            par, f, n = residuals(x, p)
            res = max(float(newton.norm(f)), abs(n))
            history.append(res)
            iteration += 1
            self.log(f"  PALC Newton step #{iteration}, residuals: {res:.2e}", level=3)
            if self.callback_newton is not None:
                proceed = self.callback_newton(x, f, J, res, iteration, its, newton, p=p, z0=z0) is not False
        converged = bool(res < newton.tolerance)
        return BorderedArray(x, p), NewtonResult(x, history, converged, iteration, itlinear)

    # --- eigenvalues ---

    def compute_eigen(self, x: np.ndarray, p: float) -> tuple[np.ndarray, np.ndarray, int, int]:
        """eigenvalues, eigenvectors and the stability counts of the solution (x, p)"""
        par = self.problem.set_continuation_parameter(p, self.par)
        J = self.problem.jacobian(x, par)
        eigenvalues, eigenvectors, converged, _ = self.newton.eigen_solver.solve(J, self.params.nev)
        if not converged:
            self.log(f"Eigensolver did not converge at p = {p:.6e}", level=1)
        n_unstable, n_imag = compute_stability(eigenvalues, self.params.tol_stability)
        return eigenvalues, eigenvectors, n_unstable, n_imag

    def update_eigen(self, state: ContinuationState) -> None:
        """compute the eigenvalues at the current point and update the stability of the state"""
        eigenvalues, eigenvectors, n_unstable, n_imag = self.compute_eigen(state.x, state.p)
        state.eigenvalues = eigenvalues
        state.eigenvectors = eigenvectors if self.params.save_eigenvectors else None
        state.update_stability(n_unstable, n_imag)
        self.log(f"  Computed {len(eigenvalues)} eigenvalues, #unstable = {n_unstable}", level=2)

    # --- stepping ---

    def is_running(self, state: ContinuationState) -> bool:
        """whether the continuation goes on"""
        params = self.params
        return (state.step <= params.max_steps
                and (params.p_min < state.p < params.p_max or state.step == 0)
                and not state.stop)

    @profile
    def step(self, state: ContinuationState) -> None:
        """perform a single continuation step: predict, correct, update tangent and eigenvalues, adapt ds"""
        self.log(f"Continuation step {state.step}, ds = {state.ds:.4e}, p = {state.p:.6e}", level=2)
        z, result = self.predictor.step(self, state)
        state.converged = result.converged
        state.newton_iterations = result.iterations
        state.linear_iterations = result.linear_iterations
        if result.converged:
            self.log(f"  Step converged in {result.iterations} Newton iterations, "
                     f"p = {state.p:.6e} -> {z.p:.6e}", level=2)
            tangent = self.predictor.update_tangent(self, state, z)
            state.accept(z)
            state.tangent = tangent
            if self.compute_eigen_elements:
                self.update_eigen(state)
            state.step += 1
        else:
            self.log(f"  Corrector failed, residuals: {result.residuals[-1]:.2e}", level=2)
        # step size control
        if not state.stop:
            state.ds, state.theta, state.stop = step_size_control(
                state.ds, state.theta, self.params, result.converged, result.iterations,
                state.tangent, self.verbosity)

    def __iter__(self) -> Iterator[ContinuationState]:
        """iterate over the states of the continuation, the first one is the initial state"""
        state = self.start()
        yield state
        while self.is_running(state):
            self.step(state)
            yield state

    # --- recording ---

    def summary(self, state: ContinuationState) -> BranchPoint:
        """the summary of the current point, that is stored on the branch"""
        return BranchPoint(param=state.p,
                           record=self.problem.record_from_solution(state.x, state.p),
                           newton_iterations=state.newton_iterations,
                           linear_iterations=state.linear_iterations,
                           ds=state.ds, theta=state.theta,
                           n_unstable=state.n_unstable[0], n_imag=state.n_imag[0],
                           stable=state.is_stable() if self.compute_eigen_elements else None,
                           step=state.step)

    def record(self, branch: Branch, state: ContinuationState) -> None:
        """store the current point (and maybe the solution and eigenvalues) on the branch"""
        params = self.params
        branch.add_point(self.summary(state))
        every = params.save_sol_every_step
        last = state.step >= params.max_steps or not self.is_running(state)
        if every > 0 and (state.step % every == 0 or last):
            branch.add_solution(state.x, state.p, state.step)
        every = params.save_eig_every_step
        if self.compute_eigen_elements and every > 0 and state.step % every == 0:
            branch.add_eigen(state.eigenvalues, state.eigenvectors, state.step)

    def new_branch(self, state: ContinuationState) -> Branch:
        """a new branch that holds the initial point"""
        branch = Branch(parameter_name=self.problem.lens.name)
        self.record(branch, state)
        return branch

    def process(self, branch: Branch, state: ContinuationState) -> None:
        """detect special points and record the newly accepted point"""
        params = self.params
        special_points = []
        # fold detection by the monotony of the parameter,
        # disabled if bifurcations are detected by the eigenvalues to avoid duplicates
        if params.detect_fold and params.detect_bifurcation < 2:
            special_points.append(handle_fold(self, state, branch))
        if params.detect_bifurcation > 1:
            special_points.append(handle_bifurcation(self, state))
        if self.event_active:
            special_points.append(handle_event(self, state))
        if self.save_solution is not None:
            self.save_solution(state.x, state.p, state.step, branch)
        if self.finalise_solution is not None:
            if self.finalise_solution(state.current, state.tangent, state.step, branch,
                                      state=state, iterator=self) is False:
                self.log("Continuation stopped by finalise_solution", level=1)
                state.stop = True
        self.record(branch, state)
        for sp in special_points:
            if sp is not None:
                branch.add_special_point(sp)
                self.log(f"  Special point: {sp}", level=1)
        self.plot.update(branch, state)

    def run(self, state: Optional[ContinuationState] = None, branch: Optional[Branch] = None) -> Branch:
        """
        Compute the whole branch. Raises a ValueError if the initial parameter is out
        of bounds and a LinAlgError if the initial guess does not converge.
        """
        if state is None:
            state = self.start()
        if branch is None:
            branch = self.new_branch(state)
        while True:
            if state.converged and 0 < state.step <= self.params.max_steps:
                self.process(branch, state)
            if not self.is_running(state):
                break
            self.step(state)
        self.log(f"Continuation finished after {state.step} steps at p = {state.p:.6e}", level=1)
        self.plot.finish(branch)
        self.state = state
        return branch


def continuation(problem: Problem, x0: ArrayLike, params: Optional[ContinuationParameters] = None,
                 bothside: bool = False, **kwargs) -> Branch:
    """
    Compute the branch of solutions starting from the initial guess x0.
    With bothside=True, the branch is continued in both directions from x0
    and the two parts are merged.
    Further keyword arguments are passed to PseudoArclengthContinuation.
    """
    if params is None:
        params = ContinuationParameters()
    branch = PseudoArclengthContinuation(problem, x0, params, **kwargs).run()
    if bothside:
        params_back = dataclasses.replace(params, ds=-params.ds)
        branch_back = PseudoArclengthContinuation(problem, x0, params_back, **kwargs).run()
        branch = branch.merge(branch_back)
    return branch
