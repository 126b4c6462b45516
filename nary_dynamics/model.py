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
"""Typed CasADi leaf systems usable as units of an NArySystem.

A unit system is built from three (optionally four) @symbolic vector types
and a pair of expressions in the time symbol t, states x, inputs u and
parameters p:

- dx/dt = f_x(t, x, u, p)
- y = f_y(t, x, u, p)

Example:
    @symbolic
    class States:
        x: ca.SX = state(1, 0.0, "position (m)")

    @symbolic
    class Inputs:
        f: ca.SX = input_var(1, 0.0, "force (N)")

    @symbolic
    class Params:
        k: ca.SX = param(1.0, "decay rate (1/s)")

    @symbolic
    class Outputs:
        y: ca.SX = output_var(1, 0.0, "measured position (m)")

    model = ModelSX.create(States, Inputs, Params, output_type=Outputs)
    model.build(f_x=-model.p.k * model.x.x + model.u.f, f_y=model.x.x)

    xdot = model.dynamics(0.0, States.numeric(), Inputs.numeric())
"""

import copy
import dataclasses
from dataclasses import dataclass, field, fields
import logging
from typing import Any, Generic, TypeVar, Union

from beartype import beartype
import casadi as ca
import numpy as np

__all__ = [
    "symbolic",
    "state",
    "param",
    "input_var",
    "output_var",
    "Empty",
    "ModelSX",
    "ModelMX",
]

_log = logging.getLogger(__name__)

# ============================================================================
# Field Creation Helpers
# ============================================================================


def _expand_default(dim, default):
    if default is None:
        return 0.0 if dim == 1 else [0.0] * dim
    if isinstance(default, (int, float)) and dim > 1:
        return [float(default)] * dim
    return default


def state(dim: int = 1, default: Union[float, list, None] = None, desc: str = ""):
    """Create a continuous state variable field (dx/dt in equations).

    Args:
        dim: Dimension (1 for scalar, >1 for vector)
        default: Default value (scalar or list)
        desc: Description string

    Example:
        p: ca.SX = state(3, [0, 0, 10], "position (m)")
        w: ca.SX = state(3, desc="angular velocity")  # defaults to zeros
    """
    return field(
        default=None,
        metadata={"dim": dim, "default": _expand_default(dim, default), "desc": desc,
                  "type": "state"},
    )


def param(default: float, desc: str = ""):
    """Create a parameter field (time-independent constant)."""
    return field(
        default=None,
        metadata={"dim": 1, "default": float(default), "desc": desc, "type": "parameter"},
    )


def input_var(dim: int = 1, default: Union[float, list, None] = None, desc: str = ""):
    """Create an input variable field (control signal).

    Example:
        thrust: ca.SX = input_var(desc="thrust command (N)")
        torque: ca.SX = input_var(3, desc="torque command (N·m)")
    """
    return field(
        default=None,
        metadata={"dim": dim, "default": _expand_default(dim, default), "desc": desc,
                  "type": "input"},
    )


def output_var(dim: int = 1, default: Union[float, list, None] = None, desc: str = ""):
    """Create an output variable field (observable)."""
    return field(
        default=None,
        metadata={"dim": dim, "default": _expand_default(dim, default), "desc": desc,
                  "type": "output"},
    )


# ============================================================================
# Symbolic Dataclass Decorator
# ============================================================================


def symbolic(cls):
    """Combined decorator: applies @dataclass and adds CasADi vector methods.

    Adds methods:
        - cls.symbolic(sym_type=ca.SX) -> instance with symbolic variables
        - cls.numeric() -> instance with numeric defaults
        - cls.rows() -> fixed number of scalar rows of one instance
        - instance.as_vec() -> ca.SX/MX/DM column vector
        - cls.from_vec(vec) -> instance from vector
        - instance.size1() -> number of rows
        - instance.size2() -> number of columns (always 1)
    """
    if not hasattr(cls, "__dataclass_fields__"):
        cls = dataclass(cls)

    field_info = {}
    for f in fields(cls):
        meta = f.metadata or {}
        dim = meta.get("dim", 1)
        field_info[f.name] = {
            "dim": dim,
            "default": meta.get("default", 0.0 if dim == 1 else np.zeros(dim)),
            "desc": meta.get("desc", ""),
            "type": meta.get("type", "unknown"),
        }
    n_rows = sum(info["dim"] for info in field_info.values())

    @classmethod
    def create_symbolic(cls_obj, sym_type=ca.SX):
        """Create instance with symbolic CasADi variables."""
        kwargs = {}
        for name, info in field_info.items():
            dim = info["dim"]
            if dim == 1:
                kwargs[name] = sym_type.sym(name)
            else:
                kwargs[name] = sym_type.sym(name, dim)
        return cls_obj(**kwargs)

    @classmethod
    def create_numeric(cls_obj):
        """Create instance with numeric default values."""
        kwargs = {}
        for name, info in field_info.items():
            default = info["default"]
            if isinstance(default, (list, tuple, np.ndarray)):
                kwargs[name] = np.array(default, dtype=float)
            else:
                kwargs[name] = float(default)
        return cls_obj(**kwargs)

    @classmethod
    def rows(cls_obj):
        """Number of scalar rows of every instance."""
        return n_rows

    def as_vec(self):
        """Convert to CasADi column vector."""
        parts = [ca.vec(getattr(self, f.name)) for f in fields(self.__class__)]
        return ca.vertcat(*parts) if parts else ca.DM.zeros(0, 1)

    @classmethod
    def from_vec(cls_obj, vec):
        """Reconstruct from CasADi vector (works with both numeric and symbolic).

        For numeric vectors (DM), converts to float/numpy arrays.
        For symbolic vectors (SX/MX), preserves symbolic expressions.
        """
        if isinstance(vec, dict):
            if len(vec) == 1:
                vec = list(vec.values())[0]
            else:
                raise ValueError(
                    f"from_vec() received dict with multiple outputs: {list(vec.keys())}"
                )

        is_symbolic = isinstance(vec, (ca.SX, ca.MX))
        if not is_symbolic:
            vec = ca.DM(vec)

        # Ensure column vector
        if vec.size2() != 1 and vec.size1() == 1:
            vec = vec.T

        if vec.size1() != n_rows:
            raise ValueError(
                f"{cls_obj.__name__}.from_vec() expected {n_rows} rows, got {vec.size1()}"
            )

        kwargs = {}
        offset = 0
        for name, info in field_info.items():
            dim = info["dim"]
            if dim == 1:
                val = vec[offset]
                if not is_symbolic:
                    val = float(val)
            else:
                val = vec[offset : offset + dim]
                if not is_symbolic:
                    val = val.full().flatten()
            kwargs[name] = val
            offset += dim

        return cls_obj(**kwargs)

    def size1(self):
        """Get number of rows when converted to vector."""
        return self.as_vec().size1()

    def size2(self):
        """Get number of columns (always 1)."""
        return 1

    def custom_repr(self):
        """String representation with field descriptions."""
        parts = []
        for f in fields(self.__class__):
            val = getattr(self, f.name)
            desc = field_info[f.name].get("desc", "")
            if desc:
                parts.append(f"{f.name}={val!r}  # {desc}")
            else:
                parts.append(f"{f.name}={val!r}")
        return f"{cls.__name__}(" + ", ".join(parts) + ")"

    cls.symbolic = create_symbolic
    cls.numeric = create_numeric
    cls.rows = rows
    cls.as_vec = as_vec
    cls.from_vec = from_vec
    cls.size1 = size1
    cls.size2 = size2
    cls.__repr__ = custom_repr
    cls._field_info = field_info

    return cls


@symbolic
class Empty:
    """Vector type with no fields (systems without outputs)."""


# ============================================================================
# Type-Safe Leaf Model
# ============================================================================

TState = TypeVar("TState")
TInput = TypeVar("TInput")
TParam = TypeVar("TParam")
TOutput = TypeVar("TOutput")


@beartype
class ModelSX(Generic[TState, TInput, TParam]):
    """Leaf system with SX symbolics.

    Satisfies the unit system interface consumed by NArySystem:
    dynamics(), output(), is_time_varying(), is_direct_feedthrough() and the
    state_type/input_type/output_type vector types.

    Example:
        model = ModelSX.create(States, Inputs, Params)
        model.build(f_x=-model.p.k * model.x.x + model.u.f)
    """

    _sym = ca.SX

    def __init__(
        self,
        state_type: type,
        input_type: type,
        param_type: type,
        output_type: type | None = None,
    ):
        """Initialize typed leaf model.

        Prefer using ModelSX.create() for automatic type inference.
        """
        self.state_type = state_type
        self.input_type = input_type
        self.param_type = param_type
        self.output_type = output_type if output_type is not None else Empty
        self.name = state_type.__name__

        self.t = self._sym.sym("t")
        self.x = state_type.symbolic(self._sym)
        self.u = input_type.symbolic(self._sym)
        self.p = param_type.symbolic(self._sym)

        self.x0 = state_type.numeric()
        self.u0 = input_type.numeric()
        self.p0 = param_type.numeric()

        self._time_varying = False
        self._direct_feedthrough = False

    @classmethod
    def create(cls, state_type: type, input_type: type, param_type: type, **kwargs):
        """Create a model instance.

        Args:
            state_type: Dataclass decorated with @symbolic
            input_type: Dataclass decorated with @symbolic
            param_type: Dataclass decorated with @symbolic
            **kwargs: Optional output_type
        """
        return cls(state_type, input_type, param_type, **kwargs)

    def _vec(self, instance):
        if instance.rows() == 0:
            return self._sym(0, 1)
        return instance.as_vec()

    def build(self, f_x: ca.SX | ca.MX | ca.DM, f_y: ca.SX | ca.MX | ca.DM | None = None):
        """Build model functions.

        Args:
            f_x: Continuous dynamics dx/dt (required)
            f_y: Output expressions y = f_y(t, x, u, p)
        """
        x_vec = self._vec(self.x)
        u_vec = self._vec(self.u)
        p_vec = self._vec(self.p)
        inputs = [self.t, x_vec, u_vec, p_vec]
        names = ["t", "x", "u", "p"]

        f_x = self._sym(f_x)
        if f_x.size1() != self.state_type.rows():
            raise ValueError(
                f"f_x has {f_x.size1()} rows, expected {self.state_type.rows()}"
            )
        if f_y is None:
            f_y = self._sym(0, 1)
        f_y = self._sym(f_y)
        if f_y.size1() != self.output_type.rows():
            raise ValueError(
                f"f_y has {f_y.size1()} rows, expected {self.output_type.rows()}"
            )

        self.f_x = ca.Function("f_x", inputs, [f_x], names, ["dx_dt"])
        self.f_y = ca.Function("f_y", inputs, [f_y], names, ["y"])

        self._time_varying = bool(ca.depends_on(f_x, self.t) or ca.depends_on(f_y, self.t))
        self._direct_feedthrough = u_vec.numel() > 0 and bool(ca.depends_on(f_y, u_vec))

        _log.debug(
            "built %s: %d states, %d inputs, %d outputs, time_varying=%s, feedthrough=%s",
            self.name,
            self.state_type.rows(),
            self.input_type.rows(),
            self.output_type.rows(),
            self._time_varying,
            self._direct_feedthrough,
        )

    def _check_built(self):
        if not hasattr(self, "f_x"):
            raise ValueError("Model not built. Call build() first.")

    # Unit system interface

    def dynamics(self, t: Any, x: Any, u: Any) -> Any:
        """Evaluate dx/dt at (t, x, u) with the model parameters p0."""
        self._check_built()
        dx_dt = self.f_x(t, x.as_vec(), u.as_vec(), self.p0.as_vec())
        return self.state_type.from_vec(dx_dt)

    def output(self, t: Any, x: Any, u: Any) -> Any:
        """Evaluate y at (t, x, u) with the model parameters p0."""
        self._check_built()
        y = self.f_y(t, x.as_vec(), u.as_vec(), self.p0.as_vec())
        return self.output_type.from_vec(y)

    def is_time_varying(self) -> bool:
        return self._time_varying

    def is_direct_feedthrough(self) -> bool:
        return self._direct_feedthrough

    def get_num_states(self) -> int:
        return self.state_type.rows()

    def get_num_inputs(self) -> int:
        return self.input_type.rows()

    def get_num_outputs(self) -> int:
        return self.output_type.rows()

    def build_function(self, kind: str = "dynamics", sym_type: Any = None) -> ca.Function:
        """Flat (t, x, u) -> dx_dt or y function with p0 bound."""
        self._check_built()
        if kind == "dynamics":
            f, out = self.f_x, "dx_dt"
        elif kind == "output":
            f, out = self.f_y, "y"
        else:
            raise ValueError(f"Unknown function kind: {kind}")
        sym = self._sym if sym_type is None else sym_type
        t = sym.sym("t")
        x = sym.sym("x", self.get_num_states())
        u = sym.sym("u", self.get_num_inputs())
        return ca.Function(
            f"{self.name}_{kind}", [t, x, u], [f(t, x, u, self.p0.as_vec())],
            ["t", "x", "u"], [out],
        )

    def with_params(self, **overrides) -> "ModelSX":
        """Copy of this model sharing its functions, with different parameter values.

        Example:
            fast = model.with_params(k=10.0)
        """
        unknown = sorted(set(overrides) - set(self.param_type._field_info))
        if unknown:
            raise ValueError(f"Unknown parameter(s) for {self.param_type.__name__}: {unknown}")
        clone = copy.copy(self)
        clone.p0 = dataclasses.replace(
            self.p0, **{name: float(value) for name, value in overrides.items()}
        )
        return clone


@beartype
class ModelMX(ModelSX[TState, TInput, TParam]):
    """Leaf system with MX symbolics.

    Same API as ModelSX; use it when the unit expressions call MX-only
    functions (e.g. interpolants or nested integrators).
    """

    _sym = ca.MX
