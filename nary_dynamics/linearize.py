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
"""Linearization and modal analysis of leaf models and aggregates.

Works on anything with build_function(kind, sym_type) producing flat
(t, x, u) CasADi functions, i.e. ModelSX/ModelMX and NArySystem. For an
aggregate the resulting matrices are block diagonal, one block per unit.
"""

import logging

import casadi as ca
import numpy as np
from scipy import linalg

_log = logging.getLogger(__name__)


def _flat(value):
    if hasattr(value, "as_vec"):
        value = value.as_vec()
    return ca.DM(value).full().flatten()


def linearize(system, t=0.0, x=None, u=None, sym_type=ca.SX):
    """
    Linearize dynamics and outputs around an operating point.

    Args:
        system: ModelSX/MX or NArySystem
        t: Time of the operating point
        x: State (composite vector, unit instance or flat sequence); zeros if None
        u: Input, same forms as x; zeros if None
        sym_type: Symbolic type used to build the Jacobians

    Returns:
        A: State matrix (n_x × n_x)
        B: Input matrix (n_x × n_u)
        C: Output matrix (n_y × n_x)
        D: Feedthrough matrix (n_y × n_u)

    Raises:
        ValueError: if the operating point has the wrong length, or if
            `system` is an NArySystem with no units and no declared unit type.
    """
    n_x = system.get_num_states()
    n_u = system.get_num_inputs()

    x_op = np.zeros(n_x) if x is None else _flat(x)
    u_op = np.zeros(n_u) if u is None else _flat(u)
    if len(x_op) != n_x:
        raise ValueError(f"Operating state length {len(x_op)} != expected {n_x}")
    if len(u_op) != n_u:
        raise ValueError(f"Operating input length {len(u_op)} != expected {n_u}")

    f = system.build_function("dynamics", sym_type)
    g = system.build_function("output", sym_type)

    t_sym = sym_type.sym("t")
    x_sym = sym_type.sym("x", n_x)
    u_sym = sym_type.sym("u", n_u)
    dx = f(t_sym, x_sym, u_sym)
    y = g(t_sym, x_sym, u_sym)

    linearization = ca.Function(
        "linearization",
        [t_sym, x_sym, u_sym],
        [
            ca.jacobian(dx, x_sym),
            ca.jacobian(dx, u_sym),
            ca.jacobian(y, x_sym),
            ca.jacobian(y, u_sym),
        ],
    )
    A, B, C, D = (M.full() for M in linearization(float(t), x_op, u_op))
    _log.debug("linearized %s: A %s, B %s, C %s, D %s",
               type(system).__name__, A.shape, B.shape, C.shape, D.shape)
    return A, B, C, D


def analyze_modes(A, unit_states=None):
    """
    Eigenvalue analysis of a continuous-time state matrix.

    Args:
        A: State matrix
        unit_states: Rows per unit for aggregates; adds the dominant unit index

    Returns:
        modes: List of dicts with mode characteristics, one per eigenvalue
            (complex conjugate pairs reported once)
    """
    eigvals, eigvecs = linalg.eig(A)

    modes = []
    processed = set()

    for i, (lam, vec) in enumerate(zip(eigvals, eigvecs.T)):
        if i in processed:
            continue

        real_part = float(np.real(lam))
        imag_part = float(np.imag(lam))

        mode = {
            "index": i,
            "eigenvalue": lam,
            "real": real_part,
            "imag": imag_part,
            "stable": real_part < 0,
        }

        if abs(real_part) > 1e-9:
            mode["time_constant"] = 1.0 / abs(real_part)
            mode["damping_ratio"] = -real_part / np.hypot(real_part, imag_part)
        else:
            mode["time_constant"] = np.inf
            mode["damping_ratio"] = 0.0

        if abs(imag_part) > 1e-6:
            mode["frequency_hz"] = abs(imag_part) / (2 * np.pi)
            mode["is_oscillatory"] = True
            for j in range(i + 1, len(eigvals)):
                if np.abs(eigvals[j] - np.conj(lam)) < 1e-9:
                    processed.add(j)
                    break
        else:
            mode["frequency_hz"] = 0.0
            mode["is_oscillatory"] = False

        dominant = int(np.argmax(np.abs(vec)))
        mode["dominant_state"] = dominant
        if unit_states:
            mode["unit"] = dominant // unit_states

        modes.append(mode)

    return modes


def print_mode_summary(modes):
    """Print one line per mode."""
    print("\n" + "=" * 80)
    print("MODES")
    print("=" * 80)
    for mode in modes:
        unit = f" unit {mode['unit']}" if "unit" in mode else ""
        print(
            f"  {mode['eigenvalue']:.4f}  tau={mode['time_constant']:.3f} s  "
            f"zeta={mode['damping_ratio']:.3f}  "
            f"{'stable' if mode['stable'] else 'UNSTABLE'}{unit}"
        )
    print("=" * 80)
