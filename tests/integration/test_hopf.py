"""Integration tests: detection of the Hopf point of the two-dimensional normal form."""

import numpy as np

from branchtrace import ContinuationParameters, PseudoArclengthContinuation, Problem
from branchtrace.core.types import Array


def hopf_rhs(u: Array, p: float) -> Array:
    x, y = u
    r2 = x**2 + y**2
    return np.array([p * x - y - x * r2, x + p * y - y * r2])


def hopf_jacobian(u: Array, p: float) -> Array:
    x, y = u
    return np.array([[p - 3 * x**2 - y**2, -1 - 2 * x * y],
                     [1 - 2 * x * y, p - x**2 - 3 * y**2]])


def test_hopf_point_on_trivial_branch() -> None:
    params = ContinuationParameters(p_min=-0.5, p_max=0.5)
    prob = Problem(hopf_rhs, hopf_jacobian, params=-0.5)
    branch = PseudoArclengthContinuation(prob, [0.0, 0.0], params).run()
    assert branch.params()[-1] >= 0.5 - 1e-8
    np.testing.assert_allclose(branch.records(), 0., atol=1e-8)
    assert [s.type for s in branch.special_points] == ["hopf"]
    hopf = branch.special_points[0]
    assert abs(hopf.param) < 0.05
    assert hopf.interval[0] <= 0. <= hopf.interval[1]
    assert hopf.delta == (2, 2)
    assert hopf.status == "converged"
    assert hopf.step_before == hopf.step - 1
    # the complex pair p +- i crosses the imaginary axis
    assert abs(np.asarray(branch.eigen[0].eigenvalues).imag).max() > 0.5
    # stable before, unstable after the Hopf point
    p = branch.params()
    stable = np.array(branch.stability())
    assert np.all(stable[p < -0.01])
    assert not np.any(stable[p > 0.01])
