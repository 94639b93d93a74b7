"""
The mutable state of a running continuation.
It is exclusively owned by one continuation run and mutated once per step.
"""
from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from branchtrace.core.types import BorderedArray


@dataclass
class ContinuationState:
    """
    State of the pseudo-arclength continuation. Pairs like n_unstable are stored
    as (current, previous), -1 means: unknown.
    """
    #: the last accepted point on the branch
    current: BorderedArray
    #: the predictor for the next point, its p also holds the previous accepted parameter
    predicted: BorderedArray
    #: the tangent at the current point, pointing in the direction of travel
    tangent: BorderedArray
    #: signed step size
    ds: float
    #: weight of the state vector in the arclength constraint
    theta: float
    #: the previous accepted point
    previous: Optional[BorderedArray] = None
    #: the continuation step, 0 after initialization
    step: int = 0
    #: outcome of the last corrector call
    converged: bool = True
    #: number of Newton iterations in the last corrector call
    newton_iterations: int = 0
    #: number of linear iterations in the last corrector call
    linear_iterations: int = 0
    #: number of unstable eigenvalues (current, previous)
    n_unstable: tuple[int, int] = (-1, -1)
    #: number of unstable eigenvalues with imaginary part (current, previous)
    n_imag: tuple[int, int] = (-1, -1)
    #: the latest eigenvalues
    eigenvalues: Optional[np.ndarray] = None
    #: the latest eigenvectors
    eigenvectors: Optional[np.ndarray] = None
    #: values of the event functions (current, previous)
    event_values: tuple[Any, Any] = (None, None)
    #: once True, the continuation terminates
    stop: bool = False
    #: the recently accepted points, used by the polynomial predictor
    history: deque = field(default_factory=lambda: deque(maxlen=10))

    def copy(self) -> ContinuationState:
        """an independent copy of the state"""
        return copy.deepcopy(self)

    def is_stable(self) -> Optional[bool]:
        """Is the current point stable? None if unknown."""
        if self.n_unstable[0] < 0:
            return None
        return self.n_unstable[0] == 0

    def update_stability(self, n_unstable: int, n_imag: int) -> None:
        self.n_unstable = (n_unstable, self.n_unstable[0])
        self.n_imag = (n_imag, self.n_imag[0])

    def update_event_values(self, values: Any) -> None:
        self.event_values = (values, self.event_values[0])

    def accept(self, z: BorderedArray) -> None:
        """move on to the new point z"""
        self.predicted.p = self.current.p
        self.previous = self.current
        self.current = z.copy()
        self.history.append(self.current)

    @property
    def x(self) -> np.ndarray:
        return self.current.u

    @property
    def p(self) -> float:
        return self.current.p

    def __repr__(self) -> str:
        return (f"ContinuationState(step={self.step}, p={self.current.p:.6g}, ds={self.ds:.3g}, "
                f"theta={self.theta:.3g}, n_unstable={self.n_unstable}, stop={self.stop})")
