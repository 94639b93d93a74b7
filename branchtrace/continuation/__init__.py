from .bifurcations import Crossing, bifurcation_type, compute_stability, locate_crossing
from .continuation_steppers import PlotStrategy, PseudoArclengthContinuation, continuation
from .deflated_continuation import (DCState, DeflatedContinuation, DeflatedContinuationResult,
                                    deflated_continuation)
from .deflation import (DeflatedJacobian, DeflatedLinearSolver, DeflatedProblem, DeflationOperator,
                        newton_from_two_guesses)
from .events import ContinuousEvent, DiscreteEvent, Event, PairOfEvents, SetOfEvents
from .parameters import ContinuationParameters
from .predictors import (BorderedPredictor, MultiplePredictor, NaturalPredictor, PolynomialPredictor,
                         SecantPredictor, TangentPredictor)
from .state import ContinuationState
from .stepsize import arclength_scaling, step_size_control

__all__ = [
    'PseudoArclengthContinuation', 'continuation', 'PlotStrategy',
    'ContinuationParameters', 'ContinuationState',
    'TangentPredictor', 'NaturalPredictor', 'SecantPredictor', 'BorderedPredictor',
    'PolynomialPredictor', 'MultiplePredictor',
    'step_size_control', 'arclength_scaling',
    'Event', 'ContinuousEvent', 'DiscreteEvent', 'PairOfEvents', 'SetOfEvents',
    'Crossing', 'compute_stability', 'bifurcation_type', 'locate_crossing',
    'DeflationOperator', 'DeflatedProblem', 'DeflatedJacobian', 'DeflatedLinearSolver',
    'newton_from_two_guesses',
    'DeflatedContinuation', 'DeflatedContinuationResult', 'DCState', 'deflated_continuation'
]
