from __future__ import annotations

from typing import Any, Callable, Tuple, Union

import numpy as np
import numpy.typing
import scipy.sparse as sp
import scipy.sparse.linalg as spla

# common type for shapes
Shape = Union[int, Tuple[int, ...]]

# Common type for Arrays, e.g. the state vector x
Array = numpy.typing.NDArray[np.float64]

# Objects that can be coerced into an Array
ArrayLike = numpy.typing.ArrayLike

# Common type for dense and sparse matrices
Matrix = Union[np.ndarray, sp.spmatrix]

# A Jacobian may be a matrix, a matrix-free operator or something opaque
# that only a user supplied linear solver understands
Jacobian = Union[Matrix, spla.LinearOperator, Callable[[Array], Array], Any]


class BorderedArray:
    """
    A pair (u, p) of a state vector u and a scalar parameter p.
    Used for points on a branch, for predictors and for tangents.
    """

    __slots__ = ("u", "p")

    # numpy scalars defer to the operators below
    __array_ufunc__ = None

    def __init__(self, u: ArrayLike, p: float) -> None:
        #: the state vector
        self.u = np.array(u, dtype=float)
        #: the scalar parameter
        self.p = float(p)

    def copy(self) -> BorderedArray:
        return BorderedArray(self.u.copy(), self.p)

    def __add__(self, other: BorderedArray) -> BorderedArray:
        return BorderedArray(self.u + other.u, self.p + other.p)

    def __sub__(self, other: BorderedArray) -> BorderedArray:
        return BorderedArray(self.u - other.u, self.p - other.p)

    def __mul__(self, a: float) -> BorderedArray:
        return BorderedArray(a * self.u, a * self.p)

    __rmul__ = __mul__

    def __neg__(self) -> BorderedArray:
        return BorderedArray(-self.u, -self.p)

    def __repr__(self) -> str:
        return f"BorderedArray(u={self.u!r}, p={self.p!r})"


def apply(J: Jacobian, dx: Array) -> Array:
    """Apply the Jacobian J (matrix, operator or function) to the vector dx"""
    if callable(J) and not isinstance(J, spla.LinearOperator):
        return np.asarray(J(dx))
    return np.asarray(J @ dx).ravel()
