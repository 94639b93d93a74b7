"""Integration tests: continuation around the fold of x^2 = p."""

import numpy as np
import pytest

from branchtrace import ContinuationParameters, Problem, continuation
from branchtrace.continuation.predictors import BorderedPredictor, SecantPredictor
from branchtrace.core.types import Array


def fold_rhs(x: Array, p: float) -> Array:
    return x**2 - p


def fold_jacobian(x: Array, p: float) -> Array:
    return np.diag(2 * x)


@pytest.mark.parametrize("x0", [1.0, -1.0])
@pytest.mark.parametrize("predictor", [SecantPredictor, BorderedPredictor])
def test_fold_is_passed_and_located(x0, predictor) -> None:
    params = ContinuationParameters(ds=-0.05, dsmax=0.05, p_min=-1., p_max=2., detect_bifurcation=0)
    prob = Problem(fold_rhs, fold_jacobian, params=1.0, record_from_solution=lambda x, p: x[0])
    branch = continuation(prob, [x0], params, predictor=predictor())
    records = branch.records()
    # the branch turns around and continues on the other half of the parabola
    assert np.sign(records[-1]) == -np.sign(x0)
    assert branch.params()[-1] >= 2. - 1e-8
    np.testing.assert_allclose(records**2, branch.params(), atol=1e-8)
    folds = branch.folds()
    assert len(folds) == 1
    fold = folds[0]
    assert abs(fold.x[0]) < 0.1
    assert abs(fold.param) < 1e-6
    # the interval brackets the turning point at p = 0
    assert fold.interval[0] <= 0. <= fold.interval[1]
    assert fold.interval[1] - fold.interval[0] < 1e-4
    assert fold.status == "converged"
    assert fold.step_before == fold.step - 1
    assert len(branch.bifurcation_points()) == 0
