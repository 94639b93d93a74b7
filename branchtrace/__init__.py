from .continuation import (ContinuationParameters, DeflatedContinuation, DeflationOperator,
                           PseudoArclengthContinuation, continuation, deflated_continuation)
from .core import Branch, BifurcationDiagram, NewtonSolver, Problem

__all__ = ['Problem', 'NewtonSolver', 'Branch', 'BifurcationDiagram',
           'ContinuationParameters', 'PseudoArclengthContinuation', 'continuation',
           'DeflationOperator', 'DeflatedContinuation', 'deflated_continuation']
