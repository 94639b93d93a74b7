"""
Parameter lenses.

A lens isolates one scalar coordinate (the continuation parameter) inside an
arbitrary parameter structure: a plain float, a list or array, a dict, a
namedtuple, a dataclass or any object with attributes.
``lens.get(params)`` returns the value, ``lens.set(params, value)`` returns a
new parameter structure and leaves the original untouched.
"""

from __future__ import annotations

import copy
import dataclasses
from typing import Any, Hashable, Union


class Lens:
    """Abstract base class for all lenses"""

    def get(self, params: Any) -> float:
        raise NotImplementedError(
            "'Lens' is an abstract base class - do not use for actual parameter access!")

    def set(self, params: Any, value: float) -> Any:
        raise NotImplementedError(
            "'Lens' is an abstract base class - do not use for actual parameter access!")

    @property
    def name(self) -> str:
        """a short name of the parameter, used for log messages and plots"""
        return "p"

    def __matmul__(self, other: Lens) -> ComposedLens:
        """compose lenses: (outer @ inner).get(params) == inner.get(outer.get(params))"""
        return ComposedLens(self, other)

    def check(self, params: Any) -> None:
        """raise a ValueError if the lens cannot access the given parameters"""
        try:
            value = self.get(params)
            self.set(params, value)
        except (AttributeError, KeyError, IndexError, TypeError) as err:
            raise ValueError(
                f"The lens {self!r} does not match the parameters {params!r}: {err}") from err
        try:
            float(value)
        except (TypeError, ValueError) as err:
            raise ValueError(
                f"The lens {self!r} does not point to a scalar, got {value!r}") from err


class IdentityLens(Lens):
    """The parameter structure is the scalar parameter itself"""

    def get(self, params: Any) -> float:
        return params

    def set(self, params: Any, value: float) -> Any:
        return value

    def __repr__(self) -> str:
        return "IdentityLens()"


class AttributeLens(Lens):
    """Access an attribute of an object, a namedtuple or a dataclass"""

    def __init__(self, attribute: str) -> None:
        self.attribute = attribute

    @property
    def name(self) -> str:
        return self.attribute

    def get(self, params: Any) -> float:
        return getattr(params, self.attribute)

    def set(self, params: Any, value: float) -> Any:
        # namedtuples and (frozen) dataclasses are replaced, other objects are copied
        if hasattr(params, "_replace"):
            return params._replace(**{self.attribute: value})
        if dataclasses.is_dataclass(params):
            return dataclasses.replace(params, **{self.attribute: value})
        new = copy.copy(params)
        setattr(new, self.attribute, value)
        return new

    def __repr__(self) -> str:
        return f"AttributeLens({self.attribute!r})"


class IndexLens(Lens):
    """Access an entry of a sequence, an array or a mapping"""

    def __init__(self, index: Hashable) -> None:
        self.index = index

    @property
    def name(self) -> str:
        return str(self.index)

    def get(self, params: Any) -> float:
        return params[self.index]

    def set(self, params: Any, value: float) -> Any:
        if isinstance(params, tuple) and not hasattr(params, "_replace"):
            new = list(params)
            new[self.index] = value
            return tuple(new)
        new = copy.copy(params)
        new[self.index] = value
        return new

    def __repr__(self) -> str:
        return f"IndexLens({self.index!r})"


class ComposedLens(Lens):
    """Access a parameter in a nested structure, e.g. params.physics["alpha"]"""

    def __init__(self, outer: Lens, inner: Lens) -> None:
        self.outer = outer
        self.inner = inner

    @property
    def name(self) -> str:
        return self.inner.name

    def get(self, params: Any) -> float:
        return self.inner.get(self.outer.get(params))

    def set(self, params: Any, value: float) -> Any:
        sub = self.inner.set(self.outer.get(params), value)
        return self.outer.set(params, sub)

    def __repr__(self) -> str:
        return f"({self.outer!r} @ {self.inner!r})"


LensLike = Union[Lens, str, int, tuple, None]


def as_lens(description: LensLike, params: Any = None) -> Lens:
    """
    Build a lens from a short description:
    None -> IdentityLens, int -> IndexLens, str -> key of a dict or attribute name,
    tuple -> composition of the entries, Lens -> itself.
    """
    if isinstance(description, Lens):
        return description
    if description is None:
        return IdentityLens()
    if isinstance(description, tuple):
        lenses = []
        sub = params
        for s in description:
            lens = as_lens(s, sub)
            lenses.append(lens)
            sub = lens.get(sub) if sub is not None else None
        result = lenses[0]
        for lens in lenses[1:]:
            result = ComposedLens(result, lens)
        return result
    if isinstance(description, int):
        return IndexLens(description)
    if isinstance(description, str):
        if isinstance(params, dict):
            return IndexLens(description)
        return AttributeLens(description)
    raise TypeError(f"Cannot create a lens from {description!r}")
