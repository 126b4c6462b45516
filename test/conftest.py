"""Pytest fixtures: small CasADi unit systems for aggregation tests."""

import casadi as ca
from nary_dynamics.model import input_var, ModelSX, output_var, param, state, symbolic
import pytest


@symbolic
class LagStates:
    x: ca.SX = state(1, 0.0, "lag state")


@symbolic
class LagInputs:
    f: ca.SX = input_var(desc="forcing")


@symbolic
class LagParams:
    k: ca.SX = param(1.0, "decay rate (1/s)")


@symbolic
class LagOutputs:
    y: ca.SX = output_var(desc="measured state")


@symbolic
class CartStates:
    p: ca.SX = state(1, 0.0, "position (m)")
    v: ca.SX = state(1, 0.0, "velocity (m/s)")


@symbolic
class CartInputs:
    a: ca.SX = input_var(desc="acceleration command (m/s^2)")


@symbolic
class CartParams:
    c: ca.SX = param(0.5, "damping (1/s)")


@symbolic
class CartOutputs:
    p: ca.SX = output_var(desc="position (m)")
    pv: ca.SX = output_var(2, desc="position and velocity")


def _first_order(k=1.0, time_varying=False, feedthrough=False):
    """x' = -k x + f (+ sin t), y = x (+ f)."""
    model = ModelSX.create(LagStates, LagInputs, LagParams, output_type=LagOutputs)
    f_x = -model.p.k * model.x.x + model.u.f
    if time_varying:
        f_x = f_x + ca.sin(model.t)
    f_y = model.x.x + model.u.f if feedthrough else model.x.x
    model.build(f_x=f_x, f_y=f_y)
    return model.with_params(k=k)


def _cart():
    """Damped double integrator with a 3-row output."""
    model = ModelSX.create(CartStates, CartInputs, CartParams, output_type=CartOutputs)
    x = model.x
    model.build(
        f_x=ca.vertcat(x.v, model.u.a - model.p.c * x.v),
        f_y=ca.vertcat(x.p, x.p, x.v),
    )
    return model


@pytest.fixture
def first_order():
    """Factory for first-order lag units."""
    return _first_order


@pytest.fixture
def cart():
    """Factory for double-integrator units."""
    return _cart
