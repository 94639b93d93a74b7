"""Unit tests for the live plotting of a continuation."""

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from branchtrace.continuation.continuation_steppers import PseudoArclengthContinuation
from branchtrace.continuation.parameters import ContinuationParameters
from branchtrace.core.problem import Problem
from branchtrace.plotting import BranchPlotter

matplotlib.use("Agg")


def test_branch_plotter() -> None:
    fig, (ax, ax_sol) = plt.subplots(1, 2)
    plotted = []

    def plot_solution(ax, x, p):
        plotted.append(p)
        ax.plot(x)

    prob = Problem(lambda x, p: -x + p, lambda x, p: -np.eye(x.size), params=0.0, lens=None)
    params = ContinuationParameters(ds=0.1, dsmax=0.1, max_steps=4, detect_bifurcation=1)
    plotter = BranchPlotter(ax, plot_every=2, ax_solution=ax_sol, plot_solution=plot_solution, pause=1e-6)
    branch = PseudoArclengthContinuation(prob, [0.0], params, plot=plotter).run()
    # steps 2 and 4 and the final plot without a solution
    assert len(plotted) == 2
    assert ax.get_xlabel() == branch.parameter_name
    assert ax.get_title() == ""
    assert len(ax.lines) > 0
    plt.close(fig)
