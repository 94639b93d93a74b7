"""
This file describes the data structures for the results of a continuation:
summaries of the points on a Branch, SpecialPoints and BifurcationDiagrams.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional

import numpy as np

from .types import Array, BorderedArray

#: the types of special points
SPECIAL_POINT_TYPES = ("fold", "hopf", "bp", "event", "none")
#: the provenance of a special point
SPECIAL_POINT_STATUS = ("guess", "converged")


@dataclass
class BranchPoint:
    """Summary of an accepted continuation step"""
    #: value of the continuation parameter
    param: float
    #: the user's scalar projection of the solution, see Problem.record_from_solution
    record: Any
    #: number of Newton iterations of the corrector
    newton_iterations: int = 0
    #: number of iterations of the linear solver
    linear_iterations: int = 0
    #: step size that led to this point
    ds: float = 0.
    #: arclength weight that led to this point
    theta: float = 0.
    #: number of unstable eigenvalues (-1: unknown)
    n_unstable: int = -1
    #: number of eigenvalues with non-negligible imaginary part (-1: unknown)
    n_imag: int = -1
    #: stability of the solution (None: unknown)
    stable: Optional[bool] = None
    #: the continuation step
    step: int = 0


@dataclass
class SpecialPoint:
    """
    A recorded qualitative change along a branch: a fold, a Hopf point, a branch
    point or a user event. The true location lies within the parameter interval.
    """
    #: one of "fold", "hopf", "bp", "event", "none"
    type: str = "none"
    #: continuation step just after the crossing
    step: int = 0
    #: continuation step just before the crossing, defaults to step - 1
    step_before: Optional[int] = None
    #: (located) value of the continuation parameter
    param: float = 0.
    #: parameter interval (p_lo, p_hi) bracketing the special point
    interval: tuple = (0., 0.)
    #: the state vector at (or near) the special point
    x: Optional[Array] = None
    #: the tangent at the special point
    tangent: Optional[BorderedArray] = None
    #: norm of the state vector
    norm: float = 0.
    #: the user's scalar projection of the state vector
    record: Any = None
    #: "guess" if found by a sign change only, "converged" if refined by bisection
    status: str = "guess"
    #: change of the number of (unstable, imaginary) eigenvalues across the point
    delta: tuple = (0, 0)
    #: width of the interval
    precision: float = -1.
    #: index of the eigenvalue that crossed the imaginary axis (-1: none)
    ind_ev: int = -1
    #: label of the event that fired
    label: str = ""

    def __post_init__(self) -> None:
        if self.type not in SPECIAL_POINT_TYPES:
            raise ValueError(f"Unknown type of special point '{self.type}', expected one of {SPECIAL_POINT_TYPES}")
        if self.status not in SPECIAL_POINT_STATUS:
            raise ValueError(f"Unknown status '{self.status}', expected one of {SPECIAL_POINT_STATUS}")
        if self.step_before is None:
            self.step_before = max(self.step - 1, 0)

    def __str__(self) -> str:
        name = self.type + (f"[{self.label}]" if self.label else "")
        return (f"{name:<12} at p ≈ {self.param:+.8f} ∈ [{self.interval[0]:+.8f}, {self.interval[1]:+.8f}], "
                f"|δp| = {self.precision:.0e}, step = {self.step:>4}, δ = {self.delta}, {self.status}")


class SavedSolution(NamedTuple):
    """A full solution vector stored on a branch"""
    x: Array
    p: float
    step: int


class EigenSnapshot(NamedTuple):
    """Eigenvalues (and optionally eigenvectors) stored on a branch"""
    eigenvalues: np.ndarray
    eigenvectors: Optional[np.ndarray]
    step: int


class Branch:
    """
    A branch is obtained from a parameter continuation. It stores the summaries of the
    accepted continuation steps, the special points found along the way and, optionally,
    a sample of the full solutions and of the eigenvalues.
    """

    # static variable counting the number of Branch instances
    _branch_count = 0

    def __init__(self, parameter_name: str = "p", record_name: str = "norm") -> None:
        # generate branch ID
        Branch._branch_count += 1
        #: unique identifier of the branch
        self.id = Branch._branch_count
        #: summaries of the accepted steps
        self.branch: list[BranchPoint] = []
        #: the special points along the branch
        self.special_points: list[SpecialPoint] = []
        #: sampled solution vectors
        self.solutions: list[SavedSolution] = []
        #: sampled eigenvalues
        self.eigen: list[EigenSnapshot] = []
        #: name of the continuation parameter
        self.parameter_name = parameter_name
        #: name of the recorded scalar projection
        self.record_name = record_name

    def __len__(self) -> int:
        return len(self.branch)

    def is_empty(self) -> bool:
        """Is the current branch empty?"""
        return len(self.branch) == 0

    def add_point(self, point: BranchPoint) -> None:
        """Append the summary of an accepted step"""
        self.branch.append(point)

    def add_special_point(self, point: SpecialPoint) -> None:
        """Append a special point, it must refer to an existing step"""
        if point.step not in self.steps():
            raise ValueError(f"Special point refers to step {point.step} that is not on the branch")
        self.special_points.append(point)

    def add_solution(self, x: Array, p: float, step: int) -> None:
        self.solutions.append(SavedSolution(np.array(x, copy=True), float(p), step))

    def add_eigen(self, eigenvalues: np.ndarray, eigenvectors: Optional[np.ndarray], step: int) -> None:
        self.eigen.append(EigenSnapshot(np.array(eigenvalues, copy=True),
                                        None if eigenvectors is None else np.array(eigenvectors, copy=True),
                                        step))

    def params(self) -> np.ndarray:
        """List of continuation parameter values along the branch"""
        return np.array([b.param for b in self.branch])

    def records(self) -> np.ndarray:
        """List of recorded values (e.g. norms) along the branch"""
        return np.array([b.record for b in self.branch])

    def steps(self) -> list[int]:
        return [b.step for b in self.branch]

    def stability(self) -> list[Optional[bool]]:
        """Stability of the points along the branch (None: unknown)"""
        return [b.stable for b in self.branch]

    def bifurcation_points(self) -> list[SpecialPoint]:
        """List all branch points and Hopf points on the branch"""
        return [s for s in self.special_points if s.type in ("bp", "hopf")]

    def folds(self) -> list[SpecialPoint]:
        return [s for s in self.special_points if s.type == "fold"]

    def events(self) -> list[SpecialPoint]:
        return [s for s in self.special_points if s.type == "event"]

    def data(self, only: Optional[str] = None) -> tuple[np.ndarray, np.ndarray]:
        """
        Returns the list of parameters and records of the branch
        optional argument only (str) may restrict the data to:
        - only="stable": stable parts only
        - only="unstable": unstable parts only
        """
        condition: Any = False
        if only == "stable":
            condition = [s is not True for s in self.stability()]
        elif only == "unstable":
            condition = [s is not False for s in self.stability()]
        # mask lists where condition is met and return
        pvals = np.ma.masked_where(condition, self.params())
        rvals = np.ma.masked_where(condition, self.records())
        return (pvals, rvals)

    def merge(self, other: Branch) -> Branch:
        """
        Merge with a branch that was computed from the same initial point in the
        opposite direction. The other branch is reversed, its initial point is dropped
        and the steps are renumbered along the merged branch.
        """
        merged = Branch(self.parameter_name, self.record_name)
        offset = len(other) - 1

        def renumber_other(step: int) -> int:
            return offset - step

        def renumber_self(step: int) -> int:
            return offset + step

        for b in reversed(other.branch[1:]):
            merged.add_point(dataclasses.replace(b, step=renumber_other(b.step)))
        for b in self.branch:
            merged.add_point(dataclasses.replace(b, step=renumber_self(b.step)))
        # along the reversed branch, the crossing is passed in the opposite order
        for sp in other.special_points:
            merged.special_points.append(dataclasses.replace(
                sp, step=renumber_other(sp.step_before), step_before=renumber_other(sp.step)))
        for sp in self.special_points:
            merged.special_points.append(dataclasses.replace(
                sp, step=renumber_self(sp.step), step_before=renumber_self(sp.step_before)))
        for sols, renumber in ((other.solutions[::-1], renumber_other), (self.solutions, renumber_self)):
            for sol in sols:
                if sol.step > 0 or renumber is renumber_self:
                    merged.solutions.append(sol._replace(step=renumber(sol.step)))
        for eigs, renumber in ((other.eigen[::-1], renumber_other), (self.eigen, renumber_self)):
            for eig in eigs:
                if eig.step > 0 or renumber is renumber_self:
                    merged.eigen.append(eig._replace(step=renumber(eig.step)))
        merged.special_points.sort(key=lambda s: s.step)
        return merged

    def save(self, filename: str) -> None:
        """Store the branch to the disk in a format that allows for restoring it later"""
        # dict of data to store
        data: dict[str, Any] = {}
        for f in dataclasses.fields(BranchPoint):
            data[f.name] = np.array([getattr(b, f.name) for b in self.branch], dtype=object)
        data["special_points"] = np.array([dataclasses.asdict(s) for s in self.special_points], dtype=object)
        data["solutions"] = np.array([tuple(s) for s in self.solutions] + [None], dtype=object)[:-1]
        data["eigen"] = np.array([tuple(e) for e in self.eigen] + [None], dtype=object)[:-1]
        data["names"] = np.array([self.parameter_name, self.record_name])
        # save everything to the file
        np.savez(filename, **data)

    @classmethod
    def load(cls, filename: str) -> Branch:
        """Load a branch from a file, that was stored with Branch.save(filename)"""
        data = np.load(filename, allow_pickle=True)
        branch = cls(*[str(n) for n in data["names"]])
        names = [f.name for f in dataclasses.fields(BranchPoint)]
        for i in range(len(data["param"])):
            branch.add_point(BranchPoint(**{n: data[n][i] for n in names}))
        for d in data["special_points"]:
            branch.special_points.append(SpecialPoint(**d))
        for s in data["solutions"]:
            branch.solutions.append(SavedSolution(*s))
        for e in data["eigen"]:
            branch.eigen.append(EigenSnapshot(*e))
        return branch

    def plot(self, ax, color: str = "C0") -> None:
        """Plot the branch into a matplotlib axis: thick lines for stable parts, stars for special points"""
        p, r = self.data()
        ax.plot(p, r, linewidth=0.7, color=color)
        p, r = self.data(only="stable")
        ax.plot(p, r, linewidth=1.8, color=color)
        records = self.records()
        steps = self.steps()
        for sp in self.special_points:
            rec = sp.record if sp.record is not None else records[steps.index(sp.step)]
            ax.plot(sp.param, rec, "*", color="C2")
            ax.annotate(" " + (sp.label or sp.type), (sp.param, rec))

    def __repr__(self) -> str:
        lines = [f"Branch #{self.id} with {len(self)} points, {self.parameter_name} ∈ "
                 f"[{self.params().min() if self.branch else np.nan:.4g}, "
                 f"{self.params().max() if self.branch else np.nan:.4g}]"]
        lines += [f"  - {s}" for s in self.special_points]
        return "\n".join(lines)


class BifurcationDiagram:
    """
    Basically just a list of branches and methods to act upon.
    Also: a fancy plotting method.
    """

    def __init__(self, branches: Optional[list[Branch]] = None) -> None:
        #: list of branches
        self.branches: list[Branch] = [] if branches is None else list(branches)
        #: x-limits of the diagram
        self.xlim = None
        #: y-limits of the diagram
        self.ylim = None

    def __len__(self) -> int:
        return len(self.branches)

    def __getitem__(self, i: int) -> Branch:
        return self.branches[i]

    def add_branch(self, branch: Branch) -> Branch:
        self.branches.append(branch)
        return branch

    def get_branch_by_ID(self, branch_id: int) -> Optional[Branch]:
        """Return a branch by its ID"""
        for branch in self.branches:
            if branch.id == branch_id:
                return branch
        return None

    def remove_branch_by_ID(self, branch_id: int) -> None:
        """Remove a branch from the BifurcationDiagram by its ID"""
        self.branches = [b for b in self.branches if b.id != branch_id]

    def special_points(self) -> list[SpecialPoint]:
        """All special points of all branches"""
        return [s for b in self.branches for s in b.special_points]

    def plot(self, ax) -> None:
        """Plot the bifurcation diagram"""
        if self.xlim is not None:
            ax.set_xlim(self.xlim)
        if self.ylim is not None:
            ax.set_ylim(self.ylim)
        # plot every branch separately
        for n, branch in enumerate(self.branches):
            branch.plot(ax, color=f"C{n % 10}")
        ax.plot(np.nan, np.nan, "*", color="C2", label="special points")
        if self.branches:
            ax.set_xlabel(self.branches[0].parameter_name)
            ax.set_ylabel(self.branches[0].record_name)
        ax.legend()

    def load_branch(self, filename: str) -> Branch:
        """Load a branch from a file into the diagram, that was stored with Branch.save(filename)"""
        return self.add_branch(Branch.load(filename))
