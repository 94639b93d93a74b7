"""Unit tests for the parameter lenses."""

from collections import namedtuple
from dataclasses import dataclass, field

import numpy as np
import pytest

from branchtrace.core.lens import AttributeLens, ComposedLens, IdentityLens, IndexLens, as_lens

Params = namedtuple("Params", ["alpha", "beta"])


@dataclass
class PhysicalParams:
    r: float = 0.5
    physics: dict = field(default_factory=lambda: {"alpha": 1.0, "beta": 2.0})


class PlainParams:
    def __init__(self) -> None:
        self.gamma = 3.0


def test_identity_lens() -> None:
    lens = IdentityLens()
    assert lens.get(1.5) == 1.5
    assert lens.set(1.5, 2.0) == 2.0


def test_attribute_lens_namedtuple() -> None:
    par = Params(alpha=1.0, beta=2.0)
    lens = AttributeLens("alpha")
    new = lens.set(par, 5.0)
    assert lens.get(new) == 5.0
    assert new.beta == 2.0
    # the original is untouched
    assert par.alpha == 1.0
    assert lens.name == "alpha"


def test_attribute_lens_dataclass_and_object() -> None:
    par = PhysicalParams()
    new = AttributeLens("r").set(par, -1.0)
    assert new.r == -1.0 and par.r == 0.5
    obj = PlainParams()
    new_obj = AttributeLens("gamma").set(obj, 4.0)
    assert new_obj.gamma == 4.0 and obj.gamma == 3.0


def test_index_lens() -> None:
    lens = IndexLens(1)
    assert lens.set([1.0, 2.0, 3.0], 5.0) == [1.0, 5.0, 3.0]
    assert lens.set((1.0, 2.0), 5.0) == (1.0, 5.0)
    arr = np.array([1.0, 2.0])
    new = lens.set(arr, 7.0)
    np.testing.assert_allclose(new, [1.0, 7.0])
    np.testing.assert_allclose(arr, [1.0, 2.0])
    d = {"p": 1.0, "q": 2.0}
    assert IndexLens("q").set(d, 0.0) == {"p": 1.0, "q": 0.0}
    assert d["q"] == 2.0


def test_composed_lens() -> None:
    par = PhysicalParams()
    lens = AttributeLens("physics") @ IndexLens("alpha")
    assert isinstance(lens, ComposedLens)
    assert lens.get(par) == 1.0
    new = lens.set(par, 3.0)
    assert new.physics == {"alpha": 3.0, "beta": 2.0}
    assert par.physics["alpha"] == 1.0
    assert lens.name == "alpha"


def test_as_lens() -> None:
    par = PhysicalParams()
    assert isinstance(as_lens(None), IdentityLens)
    assert isinstance(as_lens(0), IndexLens)
    assert isinstance(as_lens("r", par), AttributeLens)
    assert isinstance(as_lens("p", {"p": 1.0}), IndexLens)
    lens = as_lens(("physics", "beta"), par)
    assert lens.get(par) == 2.0
    assert lens.set(par, 4.0).physics["beta"] == 4.0
    with pytest.raises(TypeError):
        as_lens(1.5)


def test_lens_check() -> None:
    AttributeLens("alpha").check(Params(1.0, 2.0))
    with pytest.raises(ValueError):
        AttributeLens("delta").check(Params(1.0, 2.0))
    with pytest.raises(ValueError):
        IndexLens("physics").check({"physics": {"alpha": 1.0}})
