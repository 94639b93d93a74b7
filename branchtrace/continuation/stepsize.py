"""
Adaption of the step size ds and of the arclength weight theta.
"""
from __future__ import annotations

import numpy as np

from branchtrace.core.types import BorderedArray

from .parameters import ContinuationParameters


def arclength_scaling(theta: float, params: ContinuationParameters, tangent: BorderedArray,
                      verbosity: int = 0) -> float:
    """
    Rescale theta such that the parameter contribution g = |dp * theta| to the
    arclength constraint does not exceed g_max (heuristic from LOCA).
    """
    dp = abs(tangent.p)
    g = abs(dp * theta)
    if g <= params.g_max or dp == 0 or abs(1. - dp**2) == 0:
        return theta
    theta_new = params.g_goal / dp * np.sqrt(abs(1. - g**2) / abs(1. - dp**2))
    theta_new = float(np.clip(theta_new, params.theta_min, 1.))
    if verbosity > 1:
        print(f"Arclength scaling: theta {theta:.3e} -> {theta_new:.3e}")
    return theta_new


def step_size_control(ds: float, theta: float, params: ContinuationParameters, converged: bool,
                      newton_iterations: int, tangent: BorderedArray,
                      verbosity: int = 0) -> tuple[float, float, bool]:
    """
    Compute the new step size after a continuation step.
    On failure, ds is halved (but not below dsmin). If ds already was at dsmin,
    the continuation is stopped. On success, ds is adapted towards the desired
    number of Newton iterations. Returns (ds, theta, stop).
    """
    sign = float(np.sign(ds)) if ds != 0 else 1.
    if not converged:
        if abs(ds) <= params.dsmin:
            if verbosity > 0:
                print(f"Failure to converge with the minimal step size {params.dsmin:.3e}, stopping continuation.")
            return ds, theta, True
        ds_new = sign * max(abs(ds) / 2, params.dsmin)
        if verbosity > 0:
            print(f"Corrector did not converge, trying again with ds = {ds_new:.3e}")
        return ds_new, theta, False
    # the desired number of iterations and the Newton budget
    n_target = params.ndesired_newton_steps
    n_max = params.newton_solver.max_iterations
    it = newton_iterations
    ds_new = ds
    if it < n_target:
        ds_new = ds * (1 + params.a * ((n_target - it) / n_target)**2)
    elif it > n_target and n_max > n_target:
        ds_new = ds / (1 + params.a * ((it - n_target) / (n_max - n_target))**2)
    ds_new = sign * float(np.clip(abs(ds_new), params.dsmin, params.dsmax))
    theta_new = theta
    if params.do_arclength_scaling:
        theta_new = arclength_scaling(theta, params, tangent, verbosity)
    return ds_new, theta_new, False
