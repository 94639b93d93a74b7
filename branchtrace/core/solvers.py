from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, NamedTuple, Optional, Union

import numpy as np
import scipy.linalg
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from .profiling import profile
from .types import Array, Jacobian


def as_linear_operator(J: Jacobian, n: int) -> spla.LinearOperator:
    """Wrap a matrix, a sparse matrix or a function dx -> J*dx into a LinearOperator"""
    if isinstance(J, spla.LinearOperator):
        return J
    if isinstance(J, np.ndarray) or sp.issparse(J):
        return spla.aslinearoperator(J)
    if callable(J):
        return spla.LinearOperator((n, n), matvec=lambda v: np.asarray(J(np.ravel(v))), dtype=float)
    raise TypeError(f"Cannot convert an object of type {type(J).__name__} into a linear operator")


def _count(iterations: Union[int, tuple]) -> int:
    """total number of iterations of a (possibly bordered) linear solve"""
    if isinstance(iterations, tuple):
        return int(sum(iterations))
    return int(iterations)


class LinearSolver:
    """
    Abstract base class for the linear solvers.
    A linear solver solves J * x = rhs for x, where the Jacobian J may be a matrix,
    a matrix-free operator or anything the specific solver understands.
    """

    def solve(self, J: Jacobian, rhs: Array) -> tuple[Array, bool, int]:
        """solve J * x = rhs, return (x, converged, number of iterations)"""
        raise NotImplementedError(
            "'LinearSolver' is an abstract base class - do not use for actual solving!")

    def solve_bordered(self, J: Jacobian, rhs1: Array, rhs2: Array) -> tuple[Array, Array, bool, tuple[int, int]]:
        """
        solve J * x1 = rhs1 and J * x2 = rhs2 with the same Jacobian,
        return (x1, x2, converged, (iterations1, iterations2))
        """
        x1, c1, it1 = self.solve(J, rhs1)
        x2, c2, it2 = self.solve(J, rhs2)
        return x1, x2, c1 and c2, (it1, it2)


class DefaultLinearSolver(LinearSolver):
    """
    Direct solver for dense (numpy) and sparse (scipy) matrices.
    The matrix is factorized only once when solving for two right-hand sides.
    A singular matrix yields the least-squares solution and converged = False.
    """

    def solve(self, J: Jacobian, rhs: Array) -> tuple[Array, bool, int]:
        solve, converged = self._factorize(J, rhs.size)
        return solve(rhs), converged, 1

    def solve_bordered(self, J: Jacobian, rhs1: Array, rhs2: Array) -> tuple[Array, Array, bool, tuple[int, int]]:
        solve, converged = self._factorize(J, rhs1.size)
        return solve(rhs1), solve(rhs2), converged, (1, 1)

    def _factorize(self, J: Jacobian, n: int) -> tuple[Callable[[Array], Array], bool]:
        if np.ndim(J) == 0 and not sp.issparse(J) and not callable(J):
            # scalar Jacobian of a one-dimensional problem
            J = np.array([[float(J)]])
        if sp.issparse(J):
            try:
                lu = spla.splu(sp.csc_matrix(J))
                return lu.solve, True
            except RuntimeError:
                # matrix is exactly singular
                J = J.toarray()
        if isinstance(J, np.ndarray):
            J = J.reshape(n, n)
            if not np.all(np.isfinite(J)):
                return lambda b: np.full(n, np.nan), False
            with warnings.catch_warnings():
                warnings.simplefilter("error", scipy.linalg.LinAlgWarning)
                try:
                    lu_piv = scipy.linalg.lu_factor(J)
                    if np.all(np.isfinite(lu_piv[0])) and np.all(np.diag(lu_piv[0]) != 0):
                        return lambda b: scipy.linalg.lu_solve(lu_piv, b, check_finite=False), True
                except (np.linalg.LinAlgError, ValueError, scipy.linalg.LinAlgWarning):
                    pass
            return lambda b: np.linalg.lstsq(J, b, rcond=None)[0], False
        raise TypeError(
            f"DefaultLinearSolver needs a dense or sparse matrix, got {type(J).__name__}. "
            "Use GMRESLinearSolver for matrix-free Jacobians.")


class GMRESLinearSolver(LinearSolver):
    """
    Iterative GMRES solver (scipy) that only needs Jacobian-vector products.
    Works with matrices, LinearOperators and functions dx -> J*dx.
    """

    def __init__(self, tol: float = 1e-10, atol: float = 0., restart: int = 200,
                 maxiter: int = 100, preconditioner: Optional[Any] = None) -> None:
        #: relative tolerance of the residual
        self.tol = tol
        #: absolute tolerance of the residual
        self.atol = atol
        #: number of iterations between restarts
        self.restart = restart
        #: maximum number of restart cycles
        self.maxiter = maxiter
        #: optional preconditioner M ~ J^-1 (matrix or LinearOperator)
        self.preconditioner = preconditioner

    def solve(self, J: Jacobian, rhs: Array) -> tuple[Array, bool, int]:
        A = as_linear_operator(J, rhs.size)
        count = 0

        def inc(_) -> None:
            nonlocal count
            count += 1

        x, info = spla.gmres(A, rhs, rtol=self.tol, atol=self.atol, restart=self.restart,
                             maxiter=self.maxiter, M=self.preconditioner,
                             callback=inc, callback_type="pr_norm")
        return np.asarray(x), info == 0, count


class BorderedLinearSolver:
    """
    Abstract base class for solvers of the bordered linear system
        / J    a \\   / X \\   / R \\
        \\ b^T  c /   \\ y /  = \\ n /
    that arises from the pseudo-arclength condition.
    """

    def __init__(self, solver: Optional[LinearSolver] = None) -> None:
        #: the linear solver for the Jacobian J, None means: use the Newton solver's one
        self.solver = solver

    def solve(self, J: Jacobian, a: Array, b: Array, c: float, R: Array, n: float,
              solver: Optional[LinearSolver] = None) -> tuple[Array, float, bool, int]:
        raise NotImplementedError(
            "'BorderedLinearSolver' is an abstract base class - do not use for actual solving!")

    def _solver(self, fallback: Optional[LinearSolver]) -> LinearSolver:
        if self.solver is not None:
            return self.solver
        if fallback is not None:
            return fallback
        return DefaultLinearSolver()


class BorderingBLS(BorderedLinearSolver):
    """
    Solves the bordered system by block elimination: two solves with J and
    the same factorization, then a scalar equation for y.
    Works for matrix-free Jacobians as long as the linear solver does.
    """

    def solve(self, J: Jacobian, a: Array, b: Array, c: float, R: Array, n: float,
              solver: Optional[LinearSolver] = None) -> tuple[Array, float, bool, int]:
        x1, x2, converged, its = self._solver(solver).solve_bordered(J, R, a)
        y = (n - np.dot(b, x1)) / (c - np.dot(b, x2))
        return x1 - y * x2, float(y), converged, _count(its)


class MatrixBLS(BorderedLinearSolver):
    """
    Assembles the full (N+1)x(N+1) bordered matrix and solves it directly.
    More robust than bordering when J is (nearly) singular, needs a matrix J.
    """

    def solve(self, J: Jacobian, a: Array, b: Array, c: float, R: Array, n: float,
              solver: Optional[LinearSolver] = None) -> tuple[Array, float, bool, int]:
        N = R.size
        if sp.issparse(J):
            A = sp.bmat([[J, a.reshape((N, 1))],
                         [b.reshape((1, N)), np.array([[c]])]], format="csc")
        else:
            A = np.block([[np.asarray(J, dtype=float).reshape(N, N), a.reshape((N, 1))],
                          [b.reshape((1, N)), np.array([[c]])]])
        sol, converged, it = DefaultLinearSolver().solve(A, np.append(R, n))
        return sol[:N], float(sol[N]), converged, it


class EigenSolver:
    """
    Computes the eigenvalues of largest real part of a Jacobian.
    Small or dense problems are treated with a direct solver (scipy.linalg.eig),
    large sparse and matrix-free problems with the iterative solver ARPACK.
    """

    def __init__(self, shift: Optional[float] = None, which: str = "LR", tol: float = 1e-10,
                 maxiter: Optional[int] = None) -> None:
        #: The shift used for the shift-invert method in the iterative eigensolver.
        #: If shift != None, ARPACK will find the eigenvalues near the value of the shift
        self.shift = shift
        #: ordering of the eigenvalues: "LR" = largest real part, "LM" = largest magnitude
        self.which = which
        #: convergence tolerance of the iterative eigensolver
        self.tol = tol
        #: maximum number of Arnoldi iterations
        self.maxiter = maxiter
        #: results of the latest eigenvalue computation
        self.latest_eigenvalues: Optional[np.ndarray] = None
        #: results of the latest eigenvector computation
        self.latest_eigenvectors: Optional[np.ndarray] = None

    @profile
    def solve(self, J: Jacobian, nev: int) -> tuple[np.ndarray, np.ndarray, bool, int]:
        """
        Solve the eigenproblem J*v = l*v for the nev eigenvalues l sorted by the
        ordering criterion. Returns (eigenvalues, eigenvectors, converged, #operator applications),
        where eigenvectors[i] belongs to eigenvalues[i].
        """
        if np.ndim(J) == 0 and not sp.issparse(J) and not callable(J):
            J = np.array([[float(J)]])
        napplications = 0
        converged = True
        if not hasattr(J, "shape"):
            raise TypeError(
                f"EigenSolver needs an operator with a shape, got {type(J).__name__}. "
                "Wrap matrix-free Jacobians into a scipy.sparse.linalg.LinearOperator.")
        N = J.shape[0]
        if isinstance(J, np.ndarray) or nev >= N - 1:
            # direct solver for the full spectrum
            if sp.issparse(J):
                A = J.toarray()
            elif isinstance(J, np.ndarray):
                A = J
            else:
                A = as_linear_operator(J, N).matmat(np.eye(N))
                napplications += N
            eigenvalues, eigenvectors = scipy.linalg.eig(A)
        else:
            op = as_linear_operator(J, N)

            def matvec(v):
                nonlocal napplications
                napplications += 1
                return op.matvec(v)
            counted = spla.LinearOperator(op.shape, matvec=matvec, dtype=float)
            k = min(nev, N - 2)
            try:
                if self.shift is not None and sp.issparse(J):
                    eigenvalues, eigenvectors = spla.eigs(
                        sp.csc_matrix(J), k=k, sigma=self.shift, which="LM", tol=self.tol,
                        maxiter=self.maxiter)
                else:
                    eigenvalues, eigenvectors = spla.eigs(
                        counted, k=k, which=self.which, tol=self.tol, maxiter=self.maxiter)
            except spla.ArpackNoConvergence as err:
                eigenvalues, eigenvectors = err.eigenvalues, err.eigenvectors
                converged = False
        # sort by the ordering criterion and filter infinite eigenvalues
        key = -np.abs(eigenvalues) if self.which == "LM" else -eigenvalues.real
        idx = np.argsort(key, kind="stable")
        idx = idx[np.isfinite(eigenvalues[idx])][:nev]
        self.latest_eigenvalues = eigenvalues[idx]
        self.latest_eigenvectors = eigenvectors.T[idx]
        return self.latest_eigenvalues, self.latest_eigenvectors, converged, napplications


class NewtonResult(NamedTuple):
    """Outcome of a Newton solve"""
    #: the last iterate
    x: Array
    #: history of the norm of the residuals
    residuals: list
    #: did the residual norm drop below the tolerance?
    converged: bool
    #: number of Newton iterations
    iterations: int
    #: total number of iterations of the linear solver
    linear_iterations: int


@dataclass
class NewtonSolver:
    """
    Reference implementation of a 'text book' Newton solver for F(x, par) = 0 at
    fixed parameters. Each step solves J(x) * dx = F(x) with the linear solver and
    updates x -> x - dx. With a matrix-free Jacobian and GMRESLinearSolver this
    is a Newton-Krylov method.
    Non-convergence is not an error: the result carries converged = False and the
    caller decides whether that is fatal.
    """

    #: absolute convergence tolerance for the norm of the residuals
    tolerance: float = 1e-10
    #: maximum number of steps during solve
    max_iterations: int = 25
    #: solver for the linear systems J * dx = F
    linear_solver: LinearSolver = field(default_factory=DefaultLinearSolver)
    #: eigensolver used for the stability of solutions
    eigen_solver: EigenSolver = field(default_factory=EigenSolver)
    #: how verbose should the solving be? 0 = quiet, larger numbers = print more details
    verbosity: int = 0
    #: the norm used for checking the residuals for convergence
    norm: Callable[[Array], float] = np.linalg.norm

    def __post_init__(self) -> None:
        if not self.tolerance > 0:
            raise ValueError(f"Newton tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        # internal storage for the number of iterations taken during last solve
        self._iteration_count: Optional[int] = None

    @property
    def niterations(self) -> Optional[int]:
        """access to the number of iterations taken in the last Newton solve"""
        return self._iteration_count

    @profile
    def solve(self, problem, x0: Array, par: Any, callback: Optional[Callable[..., bool]] = None,
              linear_solver: Optional[LinearSolver] = None, deflation=None, **kwargs) -> NewtonResult:
        """
        Solve problem.rhs(x, par) = 0 starting from the initial guess x0.
        The optional callback(x, f, J, residual, iteration, itlinear, solver, **kwargs)
        is called after each step and may stop the iteration by returning False.
        With a DeflationOperator, the deflated problem M(x) * F(x, par) = 0 is solved
        instead, such that the known roots of the operator are avoided.
        """
        ls = self.linear_solver if linear_solver is None else linear_solver
        if deflation is not None:
            # import here to avoid circular imports
            from branchtrace.continuation.deflation import DeflatedLinearSolver, DeflatedProblem
            problem = DeflatedProblem(problem, deflation)
            if linear_solver is None:
                ls = DeflatedLinearSolver(self.linear_solver)
        x = np.array(x0, dtype=float, copy=True)
        f = problem.rhs(x, par)
        res = float(self.norm(f))
        residuals = [res]
        iteration = 0
        itlinear = 0
        proceed = True
        if callback is not None:
            proceed = callback(x, f, None, res, iteration, 0, self, **kwargs) is not False
        if self.verbosity > 1:
            print(f"Newton step #{iteration}, residuals: {res:.2e}")
        while proceed and np.isfinite(res) and not res < self.tolerance and iteration < self.max_iterations:
            J = problem.jacobian(x, par)
            dx, _, its = ls.solve(J, f)
            itlinear += _count(its)
            x = x - dx
            f = problem.rhs(x, par)
            res = float(self.norm(f))
            residuals.append(res)
            iteration += 1
            if self.verbosity > 1:
                print(f"Newton step #{iteration}, residuals: {res:.2e}, linear iterations: {its}")
            if callback is not None:
                proceed = callback(x, f, J, res, iteration, its, self, **kwargs) is not False
        self._iteration_count = iteration
        converged = bool(res < self.tolerance)
        if self.verbosity > 0:
            status = "converged" if converged else "did not converge"
            print(f"{type(self).__name__} {status} after {iteration} iterations, residuals: {res:.2e}")
        return NewtonResult(x, residuals, converged, iteration, itlinear)

    def throw_no_convergence_error(self, result: Optional[NewtonResult] = None, message: str = "") -> None:
        """throw an error when the solver failed to converge"""
        it = "" if self.niterations is None else f" after {self.niterations} iterations"
        res = "" if result is None else f" Residuals: {result.residuals[-1]:.2e}"
        raise np.linalg.LinAlgError(
            f"{type(self).__name__} did not converge{it}!{res} {message}".rstrip())
