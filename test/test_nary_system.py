"""Tests for aggregating homogeneous unit systems."""

import casadi as ca
from nary_dynamics.nary_system import (
    CountMismatchError,
    InputCountMismatchError,
    NArySystem,
    StateCountMismatchError,
)
import numpy as np
import pytest


def _values(vec):
    return np.array(vec.as_vec(), dtype=float).flatten()


class _FlagUnit:
    """Unit with fixed flags and identity dynamics, sharing a real unit's types."""

    def __init__(self, like, time_varying, feedthrough):
        self.state_type = like.state_type
        self.input_type = like.input_type
        self.output_type = like.output_type
        self._time_varying = time_varying
        self._feedthrough = feedthrough

    def dynamics(self, t, x, u):
        return x

    def output(self, t, x, u):
        return self.output_type(y=x.x)

    def is_time_varying(self):
        return self._time_varying

    def is_direct_feedthrough(self):
        return self._feedthrough


class _ExplodingUnit(_FlagUnit):
    def __init__(self, like):
        super().__init__(like, False, False)

    def dynamics(self, t, x, u):
        raise RuntimeError("unit failure")


@pytest.fixture
def fleet(first_order):
    system = NArySystem()
    for _ in range(3):
        system.add_system(first_order())
    return system


class TestScenario:
    """Three identical x' = -x + u units."""

    def test_dynamics(self, fleet):
        x = fleet.StateVector.from_flat([1.0, 2.0, 3.0])
        u = fleet.InputVector.from_flat([0.0, 0.0, 0.0])
        for t in (0.0, 1.5, 100.0):
            xdot = fleet.dynamics(t, x, u)
            assert xdot.count() == 3
            np.testing.assert_allclose(_values(xdot), [-1.0, -2.0, -3.0])

    def test_output(self, fleet):
        x = fleet.StateVector.from_flat([1.0, 2.0, 3.0])
        u = fleet.InputVector(3)
        y = fleet.output(0.0, x, u)
        assert y.count() == 3
        np.testing.assert_allclose(_values(y), [1.0, 2.0, 3.0])

    def test_sized_vectors(self, fleet):
        x = fleet.StateVector(3)
        for i, value in enumerate([1.0, 2.0, 3.0]):
            x.set(i, fleet.state_type.unit_type(x=value))
        u = fleet.InputVector.from_flat([1.0, 1.0, 1.0], count=3)
        np.testing.assert_allclose(_values(fleet.dynamics(0.0, x, u)), [0.0, -1.0, -2.0])

    def test_dimensions(self, fleet):
        assert fleet.get_num_states() == 3
        assert fleet.get_num_inputs() == 3
        assert fleet.get_num_outputs() == 3
        assert len(fleet) == 3


class TestDimensions:
    """Aggregate dimensions match the sum of unit dimensions."""

    @pytest.mark.parametrize("n", [0, 1, 2, 5])
    def test_dimension_consistency(self, cart, n):
        units = [cart() for _ in range(n)]
        system = NArySystem(cart())
        for unit in units:
            system.add_system(unit)

        assert system.get_num_states() == sum(u.get_num_states() for u in units)
        assert system.get_num_inputs() == sum(u.get_num_inputs() for u in units)
        assert system.get_num_outputs() == sum(u.get_num_outputs() for u in units)
        assert system.get_num_states() == system.StateVector.rows_from_unit_count(n)
        assert system.get_num_outputs() == 3 * n

    def test_multi_row_units(self, cart):
        system = NArySystem()
        system.add_system(cart())
        system.add_system(cart())
        x = system.StateVector.from_flat([1.0, 2.0, 3.0, 4.0])
        u = system.InputVector.from_flat([0.0, 1.0])
        np.testing.assert_allclose(_values(system.dynamics(0.0, x, u)), [2.0, -1.0, 4.0, -1.0])
        np.testing.assert_allclose(
            _values(system.output(0.0, x, u)), [1.0, 1.0, 2.0, 3.0, 3.0, 4.0]
        )


class TestIndependence:
    """Changing unit i only changes entry i of the result."""

    @pytest.mark.parametrize("changed", [0, 1, 2])
    def test_state_change_is_local(self, fleet, changed):
        x = [1.0, 2.0, 3.0]
        u = fleet.InputVector.from_flat([0.5, -0.5, 0.0])
        base = _values(fleet.dynamics(0.0, fleet.StateVector.from_flat(x), u))

        x[changed] += 10.0
        moved = _values(fleet.dynamics(0.0, fleet.StateVector.from_flat(x), u))

        for i in range(3):
            if i == changed:
                assert moved[i] != base[i]
            else:
                assert moved[i] == base[i]

    @pytest.mark.parametrize("changed", [0, 2])
    def test_input_change_is_local(self, first_order, changed):
        system = NArySystem()
        for _ in range(3):
            system.add_system(first_order(feedthrough=True))
        x = system.StateVector.from_flat([1.0, 2.0, 3.0])
        u = [0.0, 0.0, 0.0]
        base = _values(system.output(0.0, x, system.InputVector.from_flat(u)))

        u[changed] = 4.0
        moved = _values(system.output(0.0, x, system.InputVector.from_flat(u)))

        np.testing.assert_allclose(moved - base, 4.0 * np.eye(3)[changed])


class TestCountValidation:
    """Known counts must equal the number of units; unknown counts are not checked."""

    def test_state_count_mismatch(self, fleet):
        with pytest.raises(StateCountMismatchError, match="State count differs"):
            fleet.dynamics(0.0, fleet.StateVector(2), fleet.InputVector(3))
        with pytest.raises(StateCountMismatchError):
            fleet.output(0.0, fleet.StateVector(4), fleet.InputVector(3))

    def test_input_count_mismatch(self, fleet):
        with pytest.raises(InputCountMismatchError, match="Input count differs"):
            fleet.dynamics(0.0, fleet.StateVector(3), fleet.InputVector(1))
        with pytest.raises(InputCountMismatchError):
            fleet.output(0.0, fleet.StateVector(3), fleet.InputVector(0))

    def test_state_checked_before_input(self, fleet):
        with pytest.raises(StateCountMismatchError):
            fleet.dynamics(0.0, fleet.StateVector(1), fleet.InputVector(1))

    def test_errors_are_value_errors(self):
        assert issubclass(StateCountMismatchError, CountMismatchError)
        assert issubclass(InputCountMismatchError, CountMismatchError)
        assert issubclass(CountMismatchError, ValueError)

    def test_unsized_skips_check(self, fleet):
        x = fleet.StateVector.from_flat([1.0, 2.0, 3.0])
        u = fleet.InputVector.from_flat([0.0, 0.0, 0.0])
        assert x.count() is None
        assert fleet.dynamics(0.0, x, u).count() == 3

    def test_unsized_mixed_with_sized(self, fleet):
        x = fleet.StateVector.from_flat([1.0, 2.0, 3.0])
        with pytest.raises(InputCountMismatchError):
            fleet.dynamics(0.0, x, fleet.InputVector(2))

    def test_unsized_too_short(self, fleet):
        x = fleet.StateVector.from_flat([1.0, 2.0])
        with pytest.raises(IndexError):
            fleet.dynamics(0.0, x, fleet.InputVector(3))


class TestEmpty:
    """Aggregates with no units."""

    def test_untyped_empty(self):
        system = NArySystem()
        assert system.get_num_states() == 0
        assert system.get_num_inputs() == 0
        assert system.get_num_outputs() == 0
        assert system.is_time_varying() is False
        assert system.is_direct_feedthrough() is False
        with pytest.raises(ValueError, match="Vector types are unknown"):
            system.StateVector

    def test_typed_empty(self, first_order):
        system = NArySystem(first_order(time_varying=True, feedthrough=True))
        assert system.get_num_states() == 0
        assert system.is_time_varying() is False
        assert system.is_direct_feedthrough() is False
        xdot = system.dynamics(0.0, system.StateVector(0), system.InputVector(0))
        assert xdot.count() == 0
        assert xdot.rows() == 0


class TestRegistration:
    """Units keep their registration index."""

    def test_order_preserved(self, first_order):
        a = first_order(k=1.0)
        b = first_order(k=10.0)
        system = NArySystem()
        system.add_system(a)
        system.add_system(b)

        assert system.systems == (a, b)
        x = system.StateVector.from_flat([1.0, 1.0])
        u = system.InputVector(2)
        np.testing.assert_allclose(_values(system.dynamics(0.0, x, u)), [-1.0, -10.0])
        np.testing.assert_allclose(_values(system.dynamics(0.0, x, u)), [-1.0, -10.0])

    def test_add_after_evaluation(self, fleet, first_order):
        x = fleet.StateVector.from_flat([1.0, 1.0, 1.0])
        assert fleet.dynamics(0.0, x, fleet.InputVector(3)).count() == 3

        fleet.add_system(first_order(k=5.0))
        assert fleet.get_num_states() == 4
        with pytest.raises(StateCountMismatchError):
            fleet.dynamics(0.0, fleet.StateVector(3), fleet.InputVector(4))
        xdot = fleet.dynamics(0.0, fleet.StateVector.from_flat([1.0] * 4), fleet.InputVector(4))
        np.testing.assert_allclose(_values(xdot), [-1.0, -1.0, -1.0, -5.0])

    def test_shared_unit(self, first_order):
        unit = first_order(k=2.0)
        left = NArySystem()
        right = NArySystem()
        left.add_system(unit)
        right.add_system(unit)
        right.add_system(unit)

        assert left.systems[0] is right.systems[1]
        x = right.StateVector.from_flat([1.0, 3.0])
        np.testing.assert_allclose(_values(right.dynamics(0.0, x, right.InputVector(2))), [-2.0, -6.0])

    def test_heterogeneous_rejected(self, first_order, cart):
        system = NArySystem()
        system.add_system(first_order())
        with pytest.raises(TypeError, match="differ from aggregate types"):
            system.add_system(cart())
        assert len(system) == 1

    def test_systems_is_read_only(self, fleet):
        assert isinstance(fleet.systems, tuple)


class TestFlags:
    """Flags come from the first unit only."""

    @pytest.mark.parametrize("first", [True, False])
    def test_first_unit_decides(self, first_order, first):
        like = first_order()
        system = NArySystem()
        system.add_system(_FlagUnit(like, time_varying=first, feedthrough=first))
        system.add_system(_FlagUnit(like, time_varying=not first, feedthrough=not first))

        assert system.is_time_varying() is first
        assert system.is_direct_feedthrough() is first

    def test_leaf_flags(self, first_order):
        system = NArySystem()
        system.add_system(first_order(time_varying=True, feedthrough=True))
        assert system.is_time_varying()
        assert system.is_direct_feedthrough()


class TestUnitFailure:
    """Unit exceptions reach the caller unchanged."""

    def test_propagates(self, first_order):
        like = first_order()
        system = NArySystem()
        system.add_system(like)
        system.add_system(_ExplodingUnit(like))

        x = system.StateVector.from_flat([1.0, 2.0])
        with pytest.raises(RuntimeError, match="unit failure"):
            system.dynamics(0.0, x, system.InputVector(2))
        assert system.output(0.0, x, system.InputVector(2)).count() == 2


class TestBuildFunction:
    """Flat CasADi functions of the aggregate."""

    def test_dynamics_function(self, fleet):
        f = fleet.build_function("dynamics")
        dx = np.array(f(0.0, [1.0, 2.0, 3.0], [0.0, 0.0, 0.0])).flatten()
        np.testing.assert_allclose(dx, [-1.0, -2.0, -3.0])

    def test_output_function(self, first_order):
        system = NArySystem()
        system.add_system(first_order(feedthrough=True))
        system.add_system(first_order(feedthrough=True))
        g = system.build_function("output")
        y = np.array(g(0.0, [1.0, 2.0], [0.5, 0.25])).flatten()
        np.testing.assert_allclose(y, [1.5, 2.25])

    def test_time_varying_function(self, first_order):
        system = NArySystem()
        system.add_system(first_order(time_varying=True))
        f = system.build_function("dynamics")
        assert float(f(np.pi / 2, [0.0], [0.0])) == pytest.approx(1.0)

    def test_mx_function(self, fleet):
        f = fleet.build_function("dynamics", ca.MX)
        assert f.is_a("MXFunction")
        np.testing.assert_allclose(np.array(f(0.0, [1.0, 1.0, 1.0], [1.0, 0.0, 0.0])).flatten(), [0.0, -1.0, -1.0])

    def test_unknown_kind(self, fleet):
        with pytest.raises(ValueError, match="Unknown function kind"):
            fleet.build_function("jacobian")

    def test_untyped_empty_cannot_compile(self):
        system = NArySystem()
        with pytest.raises(ValueError, match="Vector types are unknown"):
            system.build_function("dynamics")
        with pytest.raises(ValueError, match="Vector types are unknown"):
            system.build_function("output")

    def test_typed_empty_compiles(self, first_order):
        system = NArySystem(first_order())
        f = system.build_function("dynamics")
        assert f.size1_in(1) == 0
        assert f.size1_out(0) == 0
