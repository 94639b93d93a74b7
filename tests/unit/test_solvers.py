"""Unit tests for the linear, bordered, eigen and Newton solvers."""

import numpy as np
import pytest
import scipy.sparse as sp

from branchtrace.core.problem import Problem
from branchtrace.core.solvers import (BorderingBLS, DefaultLinearSolver, EigenSolver, GMRESLinearSolver,
                                      MatrixBLS, NewtonSolver)
from branchtrace.core.types import Array, Matrix


def quadratic(x: Array, p: float) -> Array:
    """F(x, p) = x^2 - p, roots at x = +-sqrt(p)"""
    return x**2 - p


def quadratic_jacobian(x: Array, p: float) -> Matrix:
    return np.diag(2 * x)


def random_system(N: int = 6, seed: int = 0) -> tuple[Array, Array]:
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(N, N)) + N * np.eye(N)
    b = rng.normal(size=N)
    return A, b


def test_default_linear_solver_dense_and_sparse() -> None:
    A, b = random_system()
    solver = DefaultLinearSolver()
    x, converged, it = solver.solve(A, b)
    assert converged and it == 1
    np.testing.assert_allclose(A @ x, b, atol=1e-10)
    x, converged, _ = solver.solve(sp.csr_matrix(A), b)
    assert converged
    np.testing.assert_allclose(A @ x, b, atol=1e-10)


def test_default_linear_solver_two_rhs() -> None:
    A, b = random_system()
    x1, x2, converged, its = DefaultLinearSolver().solve_bordered(A, b, 2 * b)
    assert converged and its == (1, 1)
    np.testing.assert_allclose(x2, 2 * x1, atol=1e-10)


def test_default_linear_solver_singular() -> None:
    A = np.array([[1.0, 1.0], [1.0, 1.0]])
    x, converged, _ = DefaultLinearSolver().solve(A, np.array([2.0, 2.0]))
    assert not converged
    np.testing.assert_allclose(A @ x, [2.0, 2.0], atol=1e-10)


def test_default_linear_solver_non_finite_matrix() -> None:
    A = np.array([[np.nan, 1.0], [1.0, np.inf]])
    x, converged, _ = DefaultLinearSolver().solve(A, np.array([1.0, 2.0]))
    assert not converged
    assert not np.all(np.isfinite(x))
    _, _, converged, _ = DefaultLinearSolver().solve_bordered(A, np.ones(2), np.ones(2))
    assert not converged


def test_default_linear_solver_rejects_matrix_free() -> None:
    with pytest.raises(TypeError):
        DefaultLinearSolver().solve(lambda v: 2 * v, np.ones(3))


def test_gmres_matrix_free() -> None:
    A, b = random_system()
    x, converged, it = GMRESLinearSolver().solve(lambda v: A @ v, b)
    assert converged and it > 0
    np.testing.assert_allclose(A @ x, b, atol=1e-8)


@pytest.mark.parametrize("bls", [BorderingBLS(), MatrixBLS()])
def test_bordered_solvers(bls) -> None:
    J, R = random_system(5, seed=1)
    rng = np.random.default_rng(2)
    a, b = rng.normal(size=5), rng.normal(size=5)
    c, n = 3.0, 0.5
    full = np.block([[J, a.reshape(5, 1)], [b.reshape(1, 5), np.array([[c]])]])
    expected = np.linalg.solve(full, np.append(R, n))
    X, y, converged, _ = bls.solve(J, a, b, c, R, n)
    assert converged
    np.testing.assert_allclose(X, expected[:5], atol=1e-10)
    assert y == pytest.approx(expected[5])


def test_eigensolver_dense() -> None:
    J = np.diag([1.0, -2.0, 3.0])
    ev, evecs, converged, _ = EigenSolver().solve(J, 2)
    assert converged
    np.testing.assert_allclose(ev, [3.0, 1.0])
    # eigenvectors are stored as rows
    np.testing.assert_allclose(np.abs(evecs[0]), [0.0, 0.0, 1.0], atol=1e-12)


def test_eigensolver_sparse() -> None:
    N = 50
    J = sp.diags(-np.arange(N, dtype=float)).tocsr()
    ev, _, converged, napplications = EigenSolver().solve(J, 3)
    assert converged and napplications > 0
    np.testing.assert_allclose(ev.real, [0.0, -1.0, -2.0], atol=1e-8)


def test_eigensolver_complex_pair() -> None:
    J = np.array([[0.5, -1.0], [1.0, 0.5]])
    ev, _, _, _ = EigenSolver().solve(J, 2)
    np.testing.assert_allclose(ev.real, [0.5, 0.5])
    np.testing.assert_allclose(sorted(ev.imag), [-1.0, 1.0])


def test_newton_quadratic() -> None:
    prob = Problem(quadratic, quadratic_jacobian, params=4.0)
    solver = NewtonSolver()
    result = solver.solve(prob, np.array([1.0]), 4.0)
    assert result.converged
    np.testing.assert_allclose(result.x, [2.0])
    assert result.iterations == solver.niterations
    assert result.residuals[-1] < solver.tolerance
    result = solver.solve(prob, np.array([-0.3]), 4.0)
    assert result.converged
    np.testing.assert_allclose(result.x, [-2.0])


def test_newton_no_convergence() -> None:
    prob = Problem(quadratic, quadratic_jacobian, params=4.0)
    solver = NewtonSolver(max_iterations=1)
    result = solver.solve(prob, np.array([1.0]), 4.0)
    assert not result.converged
    assert result.iterations == 1
    assert len(result.residuals) == 2
    with pytest.raises(np.linalg.LinAlgError):
        solver.throw_no_convergence_error(result)


def test_newton_stops_at_non_finite_residuals() -> None:
    # the first step of log(x) = 0 from x = 3 leaves the domain
    prob = Problem(lambda x, p: np.log(x), lambda x, p: np.diag(1 / x), params=0.0)
    with np.errstate(invalid="ignore"):
        result = NewtonSolver(max_iterations=50).solve(prob, np.array([3.0]), 0.0)
    assert not result.converged
    assert result.iterations == 1
    assert np.isnan(result.residuals[-1])


def test_newton_callback_veto() -> None:
    prob = Problem(quadratic, quadratic_jacobian, params=4.0)
    calls = []

    def callback(x, f, J, res, iteration, itlinear, solver, **kwargs):
        calls.append((iteration, kwargs.get("tag")))
        return iteration < 1

    result = NewtonSolver().solve(prob, np.array([1.0]), 4.0, callback=callback, tag="test")
    assert result.iterations == 1
    assert not result.converged
    assert calls == [(0, "test"), (1, "test")]


def test_newton_matrix_free() -> None:
    prob = Problem(quadratic, lambda x, p: (lambda v: 2 * x * v), params=9.0)
    solver = NewtonSolver(linear_solver=GMRESLinearSolver())
    result = solver.solve(prob, np.array([1.0, 2.0, 5.0]), 9.0)
    assert result.converged
    np.testing.assert_allclose(result.x, [3.0, 3.0, 3.0])


def test_newton_validation() -> None:
    with pytest.raises(ValueError):
        NewtonSolver(tolerance=0.)
    with pytest.raises(ValueError):
        NewtonSolver(max_iterations=-1)
