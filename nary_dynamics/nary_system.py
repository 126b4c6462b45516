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
"""Aggregate of N homogeneous unit systems.

The aggregate state, input and output vectors are the concatenation of the
respective vectors of the unit systems, in registration order. Units are
independent: unit i only ever sees slice i of the composite state and input.

Example:
    fleet = NArySystem()
    for k in (1.0, 2.0, 3.0):
        fleet.add_system(model.with_params(k=k))

    x = fleet.StateVector.from_flat([1.0, 2.0, 3.0])
    u = fleet.InputVector(3)
    xdot = fleet.dynamics(0.0, x, u)
"""

import logging
from typing import Any, Generic, Protocol, runtime_checkable, TypeVar

from beartype import beartype
import casadi as ca

from .nary_vector import NAryVector
from .nary_vector import nary_vector

__all__ = [
    "UnitSystem",
    "NArySystem",
    "CountMismatchError",
    "StateCountMismatchError",
    "InputCountMismatchError",
]

_log = logging.getLogger(__name__)


@runtime_checkable
class UnitSystem(Protocol):
    """Capabilities NArySystem requires of each unit system."""

    state_type: type
    input_type: type
    output_type: type

    def dynamics(self, t, x, u): ...

    def output(self, t, x, u): ...

    def is_time_varying(self) -> bool: ...

    def is_direct_feedthrough(self) -> bool: ...


class CountMismatchError(ValueError):
    """A composite vector's known unit count differs from the registered systems."""


class StateCountMismatchError(CountMismatchError):
    """State vector count differs from the number of registered systems."""


class InputCountMismatchError(CountMismatchError):
    """Input vector count differs from the number of registered systems."""


TUnit = TypeVar("TUnit")


def _vector_types(unit):
    return (unit.state_type, unit.input_type, unit.output_type)


@beartype
class NArySystem(Generic[TUnit]):
    """System made of an ordered list of units sharing one set of vector types.

    Exposes the same dynamics/output/flag/dimension interface as its units,
    with composite vectors in place of the unit vectors.
    """

    def __init__(self, unit_type: Any = None):
        """Create an empty aggregate.

        Args:
            unit_type: Optional unit system (or any object with state_type,
                input_type and output_type) fixing the vector types before
                the first add_system() call.
        """
        self._systems = []
        self._types = None
        if unit_type is not None:
            self._types = _vector_types(unit_type)

    def add_system(self, system: UnitSystem) -> None:
        """Append `system` to the end of the list of units."""
        types = _vector_types(system)
        if self._types is None:
            self._types = types
        elif types != self._types:
            raise TypeError(
                "Unit vector types "
                f"{tuple(t.__name__ for t in types)} differ from aggregate types "
                f"{tuple(t.__name__ for t in self._types)}"
            )
        self._systems.append(system)
        _log.debug("added unit %d (%s)", len(self._systems) - 1, type(system).__name__)

    @property
    def systems(self) -> tuple:
        """Registered units, in index order."""
        return tuple(self._systems)

    # Composite vector types

    def _composite(self, which):
        if self._types is None:
            raise ValueError(
                "Vector types are unknown until a unit system is added"
            )
        return nary_vector(self._types[which])

    @property
    def state_type(self) -> type[NAryVector]:
        return self._composite(0)

    @property
    def input_type(self) -> type[NAryVector]:
        return self._composite(1)

    @property
    def output_type(self) -> type[NAryVector]:
        return self._composite(2)

    StateVector = state_type
    InputVector = input_type
    OutputVector = output_type

    # System interface

    def _check_counts(self, x, u):
        n = len(self._systems)
        state_count = x.count()
        if state_count is not None and state_count != n:
            _log.debug("state count %d, %d systems", state_count, n)
            raise StateCountMismatchError("State count differs from systems count.")
        input_count = u.count()
        if input_count is not None and input_count != n:
            _log.debug("input count %d, %d systems", input_count, n)
            raise InputCountMismatchError("Input count differs from systems count.")

    def dynamics(self, t: Any, x: NAryVector, u: NAryVector) -> NAryVector:
        """Composite state derivative; unit i gets slice i of `x` and `u`."""
        self._check_counts(x, u)
        xdot = self.StateVector(len(self._systems))
        for i, system in enumerate(self._systems):
            xdot.set(i, system.dynamics(t, x.get(i), u.get(i)))
        return xdot

    def output(self, t: Any, x: NAryVector, u: NAryVector) -> NAryVector:
        """Composite output; unit i gets slice i of `x` and `u`."""
        self._check_counts(x, u)
        y = self.OutputVector(len(self._systems))
        for i, system in enumerate(self._systems):
            y.set(i, system.output(t, x.get(i), u.get(i)))
        return y

    # Flags are taken from the first unit; units are assumed to be configured alike.
    def is_time_varying(self) -> bool:
        return len(self._systems) > 0 and bool(self._systems[0].is_time_varying())

    def is_direct_feedthrough(self) -> bool:
        return len(self._systems) > 0 and bool(self._systems[0].is_direct_feedthrough())

    def get_num_states(self) -> int:
        if self._types is None:
            return 0
        return self.StateVector.rows_from_unit_count(len(self._systems))

    def get_num_inputs(self) -> int:
        if self._types is None:
            return 0
        return self.InputVector.rows_from_unit_count(len(self._systems))

    def get_num_outputs(self) -> int:
        if self._types is None:
            return 0
        return self.OutputVector.rows_from_unit_count(len(self._systems))

    def build_function(self, kind: str = "dynamics", sym_type: Any = ca.SX) -> ca.Function:
        """Compile dynamics or output into a flat (t, x, u) CasADi function.

        Args:
            kind: "dynamics" (output dx_dt) or "output" (output y)
            sym_type: ca.SX or ca.MX; must be callable by every unit's functions

        Raises:
            ValueError: if `kind` is unknown, or if the aggregate has no units
                and no declared unit type, since its vector types are unknown
                ("Vector types are unknown until a unit system is added").
                Pass a prototype to NArySystem() to compile an empty aggregate.

        Example:
            f = fleet.build_function("dynamics")
            dx_dt = f(0.0, [1.0, 2.0, 3.0], [0.0, 0.0, 0.0])
        """
        if kind == "dynamics":
            evaluate, out = self.dynamics, "dx_dt"
        elif kind == "output":
            evaluate, out = self.output, "y"
        else:
            raise ValueError(f"Unknown function kind: {kind}")

        n = len(self._systems)
        t = sym_type.sym("t")
        x = sym_type.sym("x", self.get_num_states())
        u = sym_type.sym("u", self.get_num_inputs())
        result = evaluate(
            t, self.StateVector.from_flat(x, n), self.InputVector.from_flat(u, n)
        ).as_vec()
        # an aggregate without units yields an empty DM column
        result = sym_type(result)
        _log.debug("built %s function for %d units", kind, n)
        return ca.Function(f"nary_{kind}", [t, x, u], [result], ["t", "x", "u"], [out])

    def __len__(self):
        return len(self._systems)
