"""
User defined events that are monitored along a branch.
An event is a (vector valued) function of the solution (x, p). A continuous event
fires when any of its components changes sign between two continuation steps, a
discrete event fires when any of its values changes.
"""
from __future__ import annotations

from typing import Any, Callable, Hashable, Sequence

import numpy as np

from branchtrace.core.types import Array


class Event:
    """
    Abstract base class for all events.
    """

    def __init__(self, label: str = "") -> None:
        #: label of the event, stored with the special points
        self.label = label

    def values(self, x: Array, p: float) -> Any:
        """evaluate the event function at (x, p)"""
        raise NotImplementedError(
            "'Event' is an abstract base class - do not use for actual event detection!")

    def crossed(self, current: Any, previous: Any) -> bool:
        """did the event fire between the previous and the current values?"""
        raise NotImplementedError(
            "'Event' is an abstract base class - do not use for actual event detection!")

    def criterion(self, current: Any, previous: Any) -> Callable[[Any], Hashable]:
        """
        The function of the event values that distinguishes the two sides of the
        crossing between previous and current, used for bisection.
        """
        raise NotImplementedError(
            "'Event' is an abstract base class - do not use for actual event detection!")

    def describe(self, current: Any, previous: Any) -> str:
        """label of the fired event"""
        return self.label


class ContinuousEvent(Event):
    """Fires when a component of condition(x, p) changes its sign"""

    def __init__(self, condition: Callable[[Array, float], Any], label: str = "userC") -> None:
        super().__init__(label)
        #: the event function
        self.condition = condition

    def values(self, x: Array, p: float) -> np.ndarray:
        return np.atleast_1d(np.asarray(self.condition(x, p), dtype=float))

    def crossed(self, current: Any, previous: Any) -> bool:
        if current is None or previous is None:
            return False
        return bool(np.any(np.asarray(current) * np.asarray(previous) < 0))

    def criterion(self, current: Any, previous: Any) -> Callable[[Any], Hashable]:
        return lambda values: tuple(np.sign(values).astype(int))


class DiscreteEvent(Event):
    """Fires when a value of condition(x, p) changes, e.g. an integer counter"""

    def __init__(self, condition: Callable[[Array, float], Any], label: str = "userD") -> None:
        super().__init__(label)
        #: the event function
        self.condition = condition

    def values(self, x: Array, p: float) -> tuple:
        return tuple(np.atleast_1d(np.asarray(self.condition(x, p))).tolist())

    def crossed(self, current: Any, previous: Any) -> bool:
        if current is None or previous is None:
            return False
        return tuple(current) != tuple(previous)

    def criterion(self, current: Any, previous: Any) -> Callable[[Any], Hashable]:
        return tuple


class SetOfEvents(Event):
    """
    A set of events, the values are the tuple of the sub-events' values.
    mode = "any": fires when any of the events fires,
    mode = "all": fires when all events fire simultaneously,
    mode = "first": fires when any of the events fires, but only the first one
                    that fired is located and reported.
    """

    def __init__(self, events: Sequence[Event], mode: str = "any", label: str = "") -> None:
        super().__init__(label)
        if mode not in ("any", "all", "first"):
            raise ValueError(f"Unknown mode '{mode}' of SetOfEvents, use 'any', 'all' or 'first'")
        if len(events) == 0:
            raise ValueError("SetOfEvents needs at least one event")
        #: the sub-events
        self.events = list(events)
        #: the aggregation mode
        self.mode = mode

    def values(self, x: Array, p: float) -> tuple:
        return tuple(e.values(x, p) for e in self.events)

    def fired(self, current: Any, previous: Any) -> list[int]:
        """indices of the sub-events that fired"""
        if current is None or previous is None:
            return []
        return [i for i, e in enumerate(self.events) if e.crossed(current[i], previous[i])]

    def crossed(self, current: Any, previous: Any) -> bool:
        fired = self.fired(current, previous)
        if self.mode == "all":
            return len(fired) == len(self.events)
        return len(fired) > 0

    def criterion(self, current: Any, previous: Any) -> Callable[[Any], Hashable]:
        fired = self.fired(current, previous)
        if self.mode == "first":
            fired = fired[:1]
        criteria = [(i, self.events[i].criterion(current[i], previous[i])) for i in fired]
        return lambda values: tuple(c(values[i]) for i, c in criteria)

    def describe(self, current: Any, previous: Any) -> str:
        fired = self.fired(current, previous)
        if self.mode == "first":
            fired = fired[:1]
        labels = [self.events[i].describe(current[i], previous[i]) for i in fired]
        return self.label or "+".join(labels)


class PairOfEvents(SetOfEvents):
    """A continuous and a discrete event, that fires when any of the two fires"""

    def __init__(self, continuous: ContinuousEvent, discrete: DiscreteEvent, label: str = "") -> None:
        super().__init__([continuous, discrete], mode="any", label=label)

    @property
    def continuous(self) -> ContinuousEvent:
        return self.events[0]

    @property
    def discrete(self) -> DiscreteEvent:
        return self.events[1]
