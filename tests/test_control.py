import numpy as np
import pytest

from CONTROL import (
    ControlSet,
    InstDEPulseControl,
    InstPulseControl,
    build_callback,
    build_control_set_callback,
    check_de_data_error,
    control_tstops,
    init_aux_state,
    pulse_on_density,
    pulse_on_state,
    reset_control,
)
from INTEGRATOR import Integrator
from UTILITIES import AuxDataArray, UnitTime, mat2vec

X = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.complex128)
HADAMARD = np.array([[1.0, 1.0], [1.0, -1.0]], dtype=np.complex128) / np.sqrt(2.0)


def test_pulse_on_state():
    c = np.array([1.0, 0.0], dtype=np.complex128)
    pulse_on_state(c, X)
    np.testing.assert_allclose(c, [0.0, 1.0])


def test_pulse_on_density_square_and_vectorized_agree():
    rho = np.array([[0.7, 0.1 - 0.2j], [0.1 + 0.2j, 0.3]], dtype=np.complex128)
    expected = HADAMARD @ rho @ HADAMARD.conj().T

    square = rho.copy()
    pulse_on_density(square, HADAMARD)
    np.testing.assert_allclose(square, expected)
    assert np.trace(square).real == pytest.approx(1.0)

    vec = mat2vec(rho).copy()
    pulse_on_density(vec, HADAMARD)
    np.testing.assert_allclose(vec, mat2vec(expected))


def test_inst_pulse_control_validation():
    with pytest.raises(ValueError):
        InstPulseControl([0.5, 0.2], [X, X])
    with pytest.raises(ValueError):
        InstPulseControl([0.2, 0.5], [X])
    control = InstPulseControl([0.2, 0.5], lambda i: X)
    np.testing.assert_array_equal(control.pulse(1), X)


def test_callback_advances_and_reset_restarts():
    control = InstPulseControl([0.2, 0.5], [X, HADAMARD])
    cb = build_callback(control, pulse_on_state)
    np.testing.assert_allclose(cb.times, [0.2, 0.5])

    integ = Integrator(np.array([1.0, 0.0], dtype=np.complex128), 0.2, None, None)
    cb.affect(integ)
    assert control.state == 1
    np.testing.assert_allclose(integ.u, [0.0, 1.0])

    reset_control(control)
    assert control.state == 0


def test_callback_times_scale_in_physical_mode():
    control = InstPulseControl([0.2, 0.5], [X, X])
    cb = build_callback(control, pulse_on_state, UnitTime(10.0))
    np.testing.assert_allclose(cb.times, [2.0, 5.0])


def test_extra_pulse_warns_without_touching_state():
    control = InstPulseControl([0.5], [X])
    control.state = 1
    cb = build_callback(control, pulse_on_state)
    integ = Integrator(np.array([1.0, 0.0], dtype=np.complex128), 0.5, None, None)
    with pytest.warns(RuntimeWarning):
        cb.affect(integ)
    np.testing.assert_allclose(integ.u, [1.0, 0.0])


def test_de_pulse_control_uses_aux_state():
    control = InstDEPulseControl([0.5], [X])
    cb = build_callback(control, pulse_on_state)
    aux = AuxDataArray(np.array([1.0, 0.0], dtype=np.complex128))
    integ = Integrator(aux.data, 0.5, None, aux)
    cb.affect(integ)
    assert aux.state == 1
    assert control.state == 0


def test_control_set_tstops_and_reset():
    a = InstPulseControl([0.2], [X])
    b = InstPulseControl([0.2, 0.7], [X, X])
    cs = ControlSet(a, None, b)
    assert len(cs) == 2
    np.testing.assert_allclose(cs.tstops, [0.2, 0.7])
    a.state, b.state = 1, 2
    reset_control(cs)
    assert (a.state, b.state) == (0, 0)
    assert control_tstops(None).size == 0


def test_check_de_data_error():
    plain = np.array([1.0, 0.0], dtype=np.complex128)
    wrapped = AuxDataArray(plain)
    check_de_data_error(plain, None, None)
    check_de_data_error(plain, InstPulseControl([0.5], [X]), None)
    check_de_data_error(wrapped, InstDEPulseControl([0.5], [X]), AuxDataArray)

    with pytest.raises(ValueError):
        check_de_data_error(wrapped, InstPulseControl([0.5], [X]), AuxDataArray)
    with pytest.raises(ValueError):
        check_de_data_error(wrapped, None, AuxDataArray)
    with pytest.raises(ValueError):
        check_de_data_error(plain, InstDEPulseControl([0.5], [X]), None)
    with pytest.raises(ValueError):
        check_de_data_error(plain, None, lambda u: u)


def test_de_members_of_a_control_set_keep_separate_counters():
    first = InstDEPulseControl([0.25], [X])
    second = InstDEPulseControl([0.5, 0.75], [HADAMARD, X])
    cs = ControlSet(first, InstPulseControl([0.4], [X]), second)
    aux = AuxDataArray(np.array([1.0, 0.0], dtype=np.complex128))
    init_aux_state(aux, cs)
    assert aux.state == (0, 0)

    callbacks = build_control_set_callback(cs, pulse_on_state).preset
    integ = Integrator(aux.data, 0.25, None, aux)
    callbacks[0].affect(integ)
    callbacks[2].affect(integ)
    assert aux.state == (1, 1)
    np.testing.assert_allclose(integ.u, HADAMARD @ X @ [1.0, 0.0])


def test_init_aux_state_leaves_single_controls_alone():
    aux = AuxDataArray(np.array([1.0, 0.0], dtype=np.complex128))
    init_aux_state(aux, InstDEPulseControl([0.5], [X]))
    assert aux.state == 0
    init_aux_state(aux, ControlSet(InstPulseControl([0.5], [X])))
    assert aux.state == 0
