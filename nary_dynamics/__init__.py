# nary_dynamics/__init__.py

from .model import Empty, ModelMX, ModelSX, input_var, output_var, param, state, symbolic
from .nary_system import (
    CountMismatchError,
    InputCountMismatchError,
    NArySystem,
    StateCountMismatchError,
    UnitSystem,
)
from .nary_vector import NAryVector, nary_vector

__all__ = [
    "NArySystem",
    "NAryVector",
    "nary_vector",
    "UnitSystem",
    "CountMismatchError",
    "StateCountMismatchError",
    "InputCountMismatchError",
    "ModelSX",
    "ModelMX",
    "Empty",
    "symbolic",
    "state",
    "param",
    "input_var",
    "output_var",
]
