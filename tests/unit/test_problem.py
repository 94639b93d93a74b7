"""Unit tests for the Problem class."""

import numpy as np
import pytest

from branchtrace.core.problem import Problem
from branchtrace.core.types import Array


def system_rhs(x: Array, par: dict) -> Array:
    return np.array([x[0]**2 - par["p"], x[0] * x[1] - par["q"]])


def system_jacobian(x: Array, par: dict) -> Array:
    return np.array([[2 * x[0], 0.], [x[1], x[0]]])


def test_rhs_and_parameter_access() -> None:
    prob = Problem(system_rhs, params={"p": 4.0, "q": 1.0}, lens="p")
    x = np.array([2.0, 0.5])
    np.testing.assert_allclose(prob.rhs(x, prob.params), [0.0, 0.0])
    assert prob.get_continuation_parameter() == 4.0
    par = prob.set_continuation_parameter(1.0)
    assert par == {"p": 1.0, "q": 1.0}
    assert prob.params["p"] == 4.0
    np.testing.assert_allclose(prob.residual(x, 1.0), [3.0, 0.0])


def test_finite_difference_jacobian() -> None:
    prob = Problem(system_rhs, params={"p": 4.0, "q": 1.0}, lens="p")
    x = np.array([1.5, -0.7])
    J = prob.jacobian(x, prob.params)
    assert J.shape == (2, 2)
    np.testing.assert_allclose(J, system_jacobian(x, prob.params), atol=1e-7)


def test_analytic_jacobian_is_used() -> None:
    calls = []

    def jac(x, par):
        calls.append(1)
        return system_jacobian(x, par)

    prob = Problem(system_rhs, jac, params={"p": 4.0, "q": 1.0}, lens="p")
    prob.jacobian(np.array([1.0, 1.0]), prob.params)
    assert len(calls) == 1


def test_parameter_derivative() -> None:
    prob = Problem(system_rhs, system_jacobian, params={"p": 4.0, "q": 1.0}, lens="p")
    x = np.array([1.0, 2.0])
    np.testing.assert_allclose(prob.parameter_derivative(x, prob.params), [-1.0, 0.0], atol=1e-5)
    prob_q = Problem(system_rhs, system_jacobian, params={"p": 4.0, "q": 1.0}, lens="q",
                     dFdp=lambda x, par: np.array([0.0, -1.0]))
    np.testing.assert_allclose(prob_q.parameter_derivative(x, prob_q.params), [0.0, -1.0])


def test_record_from_solution() -> None:
    prob = Problem(system_rhs, params={"p": 4.0, "q": 1.0}, lens="p")
    assert prob.record_from_solution(np.array([3.0, 4.0]), 0.0) == pytest.approx(5.0)
    prob = Problem(system_rhs, params={"p": 4.0, "q": 1.0}, lens="p",
                   record_from_solution=lambda x, p: x[0])
    assert prob.record_from_solution(np.array([3.0, 4.0]), 0.0) == 3.0


def test_with_params_and_check() -> None:
    prob = Problem(system_rhs, params={"p": 4.0, "q": 1.0}, lens="p")
    other = prob.with_params({"p": 2.0, "q": 1.0})
    assert other.get_continuation_parameter() == 2.0
    assert prob.get_continuation_parameter() == 4.0
    prob.check()
    bad = Problem(system_rhs, params={"q": 1.0}, lens="p")
    with pytest.raises(ValueError):
        bad.check()


def test_missing_rhs() -> None:
    prob = Problem(params=1.0)
    with pytest.raises(NotImplementedError):
        prob.rhs(np.zeros(1), 1.0)
