"""
The 'core' package contains all of branchtrace's basic functionality.
"""

from .lens import AttributeLens, ComposedLens, IdentityLens, IndexLens, Lens, as_lens
from .problem import Problem
from .profiling import Profiler, profile
from .solution import BifurcationDiagram, Branch, BranchPoint, SpecialPoint
from .solvers import (BorderedLinearSolver, BorderingBLS, DefaultLinearSolver, EigenSolver,
                      GMRESLinearSolver, LinearSolver, MatrixBLS, NewtonResult, NewtonSolver)
from .types import BorderedArray

__all__ = [
    'Problem', 'BorderedArray',
    'Lens', 'IdentityLens', 'AttributeLens', 'IndexLens', 'ComposedLens', 'as_lens',
    'BranchPoint', 'SpecialPoint', 'Branch', 'BifurcationDiagram',
    'LinearSolver', 'DefaultLinearSolver', 'GMRESLinearSolver',
    'BorderedLinearSolver', 'BorderingBLS', 'MatrixBLS',
    'NewtonSolver', 'NewtonResult', 'EigenSolver',
    'profile', 'Profiler'
]
