# Copyright 2025 CogniPilot Foundation
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Composite vectors: the concatenation of N unit vectors of one @symbolic type.

A composite vector is either sized, holding one unit instance per slot, or
unsized, wrapping a flat column whose partitioning into units is not known
yet. Unsized vectors report count() is None and are not count-checked by
NArySystem.

Example:
    StateVector = nary_vector(States)

    x = StateVector(3)                      # three default-valued units
    x.set(1, States(x=2.0))
    flat = StateVector.from_flat([1.0, 2.0, 3.0])   # unsized
    flat.get(2).x                           # 3.0
    StateVector.rows_from_unit_count(3)     # 3 * States.rows()
"""

from collections.abc import Sequence
import dataclasses
from functools import lru_cache
import logging
from typing import Any

from beartype import beartype
import casadi as ca
import numpy as np

__all__ = ["NAryVector", "nary_vector"]

_log = logging.getLogger(__name__)


def _copy_unit(unit):
    """Copy of a unit vector that shares no mutable numeric storage with it."""
    changes = {}
    for f in dataclasses.fields(unit):
        val = getattr(unit, f.name)
        if isinstance(val, np.ndarray):
            changes[f.name] = val.copy()
        elif isinstance(val, ca.DM):
            changes[f.name] = ca.DM(val)
    return dataclasses.replace(unit, **changes)


@beartype
class NAryVector:
    """Ordered concatenation of unit vectors.

    Concrete classes are created with nary_vector(unit_type); the base class
    only carries the behaviour.
    """

    unit_type = None

    def __init__(self, count: int = 0):
        """Sized vector with `count` default-valued unit slots."""
        self._require_unit_type()
        if count < 0:
            raise ValueError(f"Unit count must be non-negative, got {count}")
        self._units = [self.unit_type.numeric() for _ in range(count)]
        self._flat = None

    @classmethod
    def _require_unit_type(cls):
        if cls.unit_type is None:
            raise TypeError(
                "NAryVector has no unit type; create a concrete class with nary_vector()"
            )

    # Type-level dimension queries

    @classmethod
    def unit_rows(cls) -> int:
        """Scalar rows of a single unit."""
        cls._require_unit_type()
        return cls.unit_type.rows()

    @classmethod
    def rows_from_unit_count(cls, count: int) -> int:
        """Total scalar rows of `count` units, without building a vector."""
        if count < 0:
            raise ValueError(f"Unit count must be non-negative, got {count}")
        return count * cls.unit_rows()

    @classmethod
    def unit_count_from_rows(cls, rows: int) -> int | None:
        """Number of units in a flat buffer of `rows` rows.

        Returns None when units have zero rows, since any count would fit.
        """
        unit_rows = cls.unit_rows()
        if unit_rows == 0:
            return None
        if rows < 0 or rows % unit_rows != 0:
            raise ValueError(
                f"{rows} rows is not a whole number of {cls.unit_type.__name__} "
                f"units ({unit_rows} rows each)"
            )
        return rows // unit_rows

    # Construction

    @classmethod
    def from_units(cls, units: Sequence[Any]) -> "NAryVector":
        """Sized vector holding copies of `units`, in order."""
        vec = cls(len(units))
        for i, unit in enumerate(units):
            vec.set(i, unit)
        return vec

    @classmethod
    def from_flat(cls, buffer: Any, count: int | None = None) -> "NAryVector":
        """Wrap a flat column (list, numpy array, DM, SX or MX).

        Without `count` the result is unsized and unit slices are decoded on
        access. With `count` the buffer is partitioned into a sized vector and
        must have exactly rows_from_unit_count(count) rows.
        """
        cls._require_unit_type()
        if isinstance(buffer, ca.SX):
            column = ca.SX(buffer)
        elif isinstance(buffer, ca.MX):
            column = ca.MX(buffer)
        else:
            column = ca.DM(buffer)
        if column.size2() != 1 and column.size1() == 1:
            column = column.T
        if column.size2() > 1:
            raise ValueError(f"Expected a column vector, got shape {column.shape}")

        if count is None:
            vec = cls.__new__(cls)
            vec._units = None
            vec._flat = column
            return vec

        expected = cls.rows_from_unit_count(count)
        if column.size1() != expected:
            raise ValueError(
                f"Buffer has {column.size1()} rows, {count} {cls.unit_type.__name__} "
                f"units need {expected}"
            )
        unit_rows = cls.unit_rows()
        vec = cls(count)
        for i in range(count):
            chunk = column[i * unit_rows : (i + 1) * unit_rows]
            vec._units[i] = cls.unit_type.from_vec(chunk)
        return vec

    # Element access

    @property
    def sized(self) -> bool:
        """True when the unit partitioning is known."""
        return self._units is not None

    def count(self) -> int | None:
        """Number of unit slots, or None for an unsized vector."""
        if self._units is None:
            return None
        return len(self._units)

    def _check_index(self, i):
        if self._units is not None:
            if not 0 <= i < len(self._units):
                raise IndexError(
                    f"Unit index {i} out of range for {len(self._units)} units"
                )
            return
        unit_rows = self.unit_rows()
        if i < 0 or (i + 1) * unit_rows > self._flat.size1():
            raise IndexError(
                f"Unit index {i} out of range for a {self._flat.size1()}-row buffer"
            )

    def get(self, i: int) -> Any:
        """Copy of the i-th unit vector."""
        self._check_index(i)
        if self._units is not None:
            return _copy_unit(self._units[i])
        unit_rows = self.unit_rows()
        return self.unit_type.from_vec(self._flat[i * unit_rows : (i + 1) * unit_rows])

    def set(self, i: int, value: Any) -> None:
        """Replace the i-th unit vector with `value`."""
        self._check_index(i)
        if not isinstance(value, self.unit_type):
            raise TypeError(
                f"Expected {self.unit_type.__name__}, got {type(value).__name__}"
            )
        if value.size1() != self.unit_rows():
            raise ValueError(
                f"{self.unit_type.__name__} value has {value.size1()} rows, "
                f"expected {self.unit_rows()}"
            )
        if self._units is not None:
            self._units[i] = _copy_unit(value)
            return
        unit_rows = self.unit_rows()
        self._flat[i * unit_rows : (i + 1) * unit_rows] = value.as_vec()

    # Whole-vector views

    def rows(self) -> int:
        """Total scalar rows of this vector."""
        if self._units is None:
            return self._flat.size1()
        return self.rows_from_unit_count(len(self._units))

    def as_vec(self) -> Any:
        """Flat CasADi column of all units, in index order."""
        if self._units is None:
            return self._flat
        parts = [unit.as_vec() for unit in self._units]
        return ca.vertcat(*parts) if parts else ca.DM.zeros(0, 1)

    def partition(self) -> "NAryVector":
        """Sized copy, with the unit count inferred from the row count."""
        if self._units is not None:
            return type(self).from_units(self._units)
        count = self.unit_count_from_rows(self._flat.size1())
        if count is None:
            raise ValueError(
                f"Cannot infer a unit count for zero-row {self.unit_type.__name__} units"
            )
        return type(self).from_flat(self._flat, count)

    def __repr__(self):
        if self._units is None:
            return f"{type(self).__name__}(unsized, rows={self._flat.size1()})"
        return f"{type(self).__name__}({self._units!r})"


@lru_cache(maxsize=None)
def _vector_class(unit_type):
    _log.debug("creating composite vector class for %s", unit_type.__name__)
    return type(
        f"NAry{unit_type.__name__}",
        (NAryVector,),
        {"unit_type": unit_type, "__module__": __name__},
    )


@beartype
def nary_vector(unit_type: type) -> type[NAryVector]:
    """Composite vector class for units of `unit_type` (a @symbolic class).

    The class is cached, so nary_vector(States) is nary_vector(States).
    """
    if not hasattr(unit_type, "_field_info"):
        raise TypeError(f"{unit_type.__name__} is not decorated with @symbolic")
    return _vector_class(unit_type)
