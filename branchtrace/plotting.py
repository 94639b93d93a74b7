"""
Live plotting of a running continuation with matplotlib.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

import matplotlib.pyplot as plt

from branchtrace.continuation.continuation_steppers import PlotStrategy
from branchtrace.core.solution import Branch

if TYPE_CHECKING:
    from branchtrace.continuation.state import ContinuationState


class BranchPlotter(PlotStrategy):
    """
    Plots the branch into a matplotlib axes object every few steps. With a solution
    axes and a plot_solution(ax, x, p) function, the current solution is plotted too.
    """

    def __init__(self, ax=None, plot_every: int = 10, ax_solution=None,
                 plot_solution: Optional[Callable] = None, pause: float = 1e-4) -> None:
        if ax is None:
            _, ax = plt.subplots(1, 1)
        #: axes object for the branch
        self.ax = ax
        #: plotting frequency
        self.plot_every = plot_every
        #: axes object for the current solution
        self.ax_solution = ax_solution
        #: function (ax, x, p) that plots a solution
        self.plot_solution = plot_solution
        #: duration of the pause after each plot, allows for the GUI to refresh
        self.pause = pause
        plt.ion()

    def draw(self, branch: Branch, state: Optional[ContinuationState] = None) -> None:
        self.ax.clear()
        branch.plot(self.ax)
        self.ax.set_xlabel(branch.parameter_name)
        self.ax.set_ylabel(branch.record_name)
        if state is not None:
            self.ax.set_title(f"Branch #{branch.id}, step {state.step}, ds = {state.ds:.2e}")
            if self.ax_solution is not None and self.plot_solution is not None:
                self.ax_solution.clear()
                self.plot_solution(self.ax_solution, state.x, state.p)
        plt.show(block=False)
        plt.pause(self.pause)

    def update(self, branch: Branch, state: ContinuationState) -> None:
        if self.plot_every > 0 and state.step % self.plot_every == 0:
            self.draw(branch, state)

    def finish(self, branch: Branch) -> None:
        self.draw(branch)
