from __future__ import annotations

from typing import Any, Callable, Optional

import numdifftools as nd
import numpy as np

from .lens import Lens, LensLike, as_lens
from .profiling import profile
from .types import Array, Jacobian


class Problem:
    """
    A parametrized nonlinear problem F(x, par) = 0.
    It bundles the residual function F, optionally its Jacobian J = dF/dx, the
    parameter structure par and a lens that selects the scalar continuation
    parameter p inside of par.
    Custom problems may either pass the functions F and J to the constructor or
    inherit from this class and override the rhs(x, par) and jacobian(x, par) methods.
    If no Jacobian is given, it is computed with finite differences.
    """

    def __init__(self,
                 F: Optional[Callable[[Array, Any], Array]] = None,
                 J: Optional[Callable[[Array, Any], Jacobian]] = None,
                 params: Any = None,
                 lens: LensLike = None,
                 dFdp: Optional[Callable[[Array, Any], Array]] = None,
                 record_from_solution: Optional[Callable[[Array, float], Any]] = None) -> None:
        self._F = F
        self._J = J
        self._dFdp = dFdp
        self._record = record_from_solution
        #: the (possibly large) parameter structure passed to F and J
        self.params = params
        #: the lens selecting the continuation parameter within the params
        self.lens: Lens = as_lens(lens, params)
        #: step size of the finite difference parameter derivative dF/dp
        self.fd_epsilon = 1e-9

    def rhs(self, x: Array, par: Any) -> Array:
        """Calculate the residual F(x, par)"""
        if self._F is None:
            raise NotImplementedError(
                "No residual function F given and rhs(x, par) is not implemented for this problem!")
        return np.asarray(self._F(x, par), dtype=float)

    @profile
    def jacobian(self, x: Array, par: Any) -> Jacobian:
        """
        Calculate the Jacobian J = dF/dx at (x, par).
        It may be a dense or sparse matrix, a matrix-free operator or any object
        that the chosen linear solver understands.
        Defaults to a finite difference approximation of the full matrix.
        """
        if self._J is not None:
            return self._J(x, par)
        f0 = self.rhs(x, par)
        jac = nd.Jacobian(lambda z: self.rhs(z, par), method="central")(x)
        return np.asarray(jac, dtype=float).reshape(f0.size, x.size)

    def parameter_derivative(self, x: Array, par: Any, f0: Optional[Array] = None,
                             eps: Optional[float] = None) -> Array:
        """Calculate dF/dp with respect to the continuation parameter (forward differences)"""
        if self._dFdp is not None:
            return np.asarray(self._dFdp(x, par), dtype=float)
        if eps is None:
            eps = self.fd_epsilon
        p = self.get_continuation_parameter(par)
        if f0 is None:
            f0 = self.rhs(x, par)
        f1 = self.rhs(x, self.set_continuation_parameter(p + eps, par))
        return (f1 - f0) / eps

    def get_continuation_parameter(self, par: Any = None) -> float:
        """return the value of the continuation parameter"""
        if par is None:
            par = self.params
        return float(self.lens.get(par))

    def set_continuation_parameter(self, value: float, par: Any = None) -> Any:
        """return a new parameter structure with the continuation parameter set to value"""
        if par is None:
            par = self.params
        return self.lens.set(par, float(value))

    def residual(self, x: Array, p: float) -> Array:
        """Residual at the scalar continuation parameter p"""
        return self.rhs(x, self.set_continuation_parameter(p))

    def record_from_solution(self, x: Array, p: float) -> Any:
        """
        The scalar projection of a solution that is stored on the branch,
        defaults to the L2-norm of x
        """
        if self._record is not None:
            return self._record(x, p)
        return float(np.linalg.norm(x))

    def check(self) -> None:
        """make sure that the lens matches the parameters"""
        self.lens.check(self.params)

    def with_params(self, params: Any) -> Problem:
        """a shallow copy of this problem with different parameters"""
        new = object.__new__(type(self))
        new.__dict__.update(self.__dict__)
        new.params = params
        return new
