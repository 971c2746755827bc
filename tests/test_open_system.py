import numpy as np
import pytest

from HAMILTONIAN import DenseHamiltonian
from OPEN_SYSTEM import (
    ConstantCouplings,
    CustomBath,
    CustomCouplings,
    Interaction,
    InteractionSet,
    QuadratureConfig,
    RedfieldGenerator,
    SpectralBath,
    create_redfield,
)
from UTILITIES import UnitTime, mat2vec

SIGMA_X = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.complex128)
SIGMA_Z = np.array([[1.0, 0.0], [0.0, -1.0]], dtype=np.complex128)
RHO = np.array([[0.6, 0.2 - 0.1j], [0.2 + 0.1j, 0.4]], dtype=np.complex128)


def identity_unitary(s):
    return np.eye(2, dtype=np.complex128)


def test_lambda_for_constant_correlation_and_trivial_unitary():
    bath = CustomBath(lambda tau: 0.3)
    gen = create_redfield(ConstantCouplings([SIGMA_Z]), identity_unitary, 2.0, bath)
    (S, lam), = gen.operators(0.5)
    np.testing.assert_allclose(S, SIGMA_Z)
    np.testing.assert_allclose(lam, 2.0 * 0.5 * 0.3 * SIGMA_Z, atol=1e-10)


def test_lambda_vanishes_at_start():
    gen = create_redfield(
        ConstantCouplings([SIGMA_Z]), identity_unitary, 2.0, CustomBath(lambda tau: 1.0)
    )
    (_, lam), = gen.operators(0.0)
    np.testing.assert_array_equal(lam, np.zeros((2, 2)))


def test_vectorized_cache_matches_direct_action():
    H = DenseHamiltonian([lambda s: 1.0 - s, lambda s: s], [SIGMA_X, SIGMA_Z], unit="hbar")

    def unitary(s):
        w, v = np.linalg.eigh(H(0.0))
        return v @ np.diag(np.exp(-1j * 3.0 * s * w)) @ v.conj().T

    bath = CustomBath(lambda tau: 0.05 * np.exp(-abs(tau)) * (1.0 - 0.3j * np.sign(tau)))
    gen = create_redfield(ConstantCouplings([SIGMA_Z, SIGMA_X]), unitary, 3.0, bath)

    du = np.zeros((2, 2), dtype=np.complex128)
    gen(du, RHO, 3.0, 0.4)

    A = np.zeros((4, 4), dtype=np.complex128)
    gen.update_vectorized_cache(A, 3.0, 0.4)
    np.testing.assert_allclose(A @ mat2vec(RHO), mat2vec(du), atol=1e-12)
    assert np.trace(du) == pytest.approx(0.0, abs=1e-12)


def test_physical_time_uses_unit_scale():
    bath = CustomBath(lambda tau: 0.3)
    couplings = ConstantCouplings([SIGMA_Z])
    gen_s = create_redfield(couplings, identity_unitary, 2.0, bath)
    gen_t = create_redfield(couplings, identity_unitary, UnitTime(2.0), bath)

    du_s = np.zeros((2, 2), dtype=np.complex128)
    du_t = np.zeros((2, 2), dtype=np.complex128)
    gen_s(du_s, RHO, 2.0, 0.5)
    gen_t(du_t, RHO, UnitTime(2.0), 1.0)
    np.testing.assert_allclose(du_s, 2.0 * du_t, atol=1e-12)


def test_custom_couplings_evaluate_at_s():
    couplings = CustomCouplings([lambda s: s * SIGMA_Z])
    assert len(couplings) == 1
    np.testing.assert_allclose(couplings(0.5)[0], 0.5 * SIGMA_Z)
    with pytest.raises(ValueError):
        CustomCouplings([])
    with pytest.raises(ValueError):
        ConstantCouplings([])


def test_create_redfield_argument_forms():
    bath = CustomBath(lambda tau: 1.0)
    interactions = InteractionSet(
        Interaction(ConstantCouplings([SIGMA_Z]), bath),
        Interaction(ConstantCouplings([SIGMA_X]), bath),
    )
    gen = create_redfield(interactions, identity_unitary, 1.0)
    assert isinstance(gen, RedfieldGenerator)
    assert len(gen.operators(0.5)) == 2

    with pytest.raises(ValueError):
        create_redfield(interactions, identity_unitary, 1.0, bath)
    with pytest.raises(ValueError):
        create_redfield(ConstantCouplings([SIGMA_Z]), identity_unitary, 1.0)
    with pytest.raises(ValueError):
        InteractionSet()


def test_spectral_bath_correlation():
    def ohmic(w):
        return 0.1 * w * np.exp(-w / 5.0)

    bath = SpectralBath(ohmic, temperature=1.0, omega_range=(1e-4, 60.0))
    c0 = bath.correlation(0.0)
    assert c0.imag == 0.0
    assert c0.real > 0.0
    c1 = bath.correlation(0.7)
    assert np.isfinite(c1.real) and np.isfinite(c1.imag)
    assert abs(c1) < abs(c0)


def test_spectral_bath_zero_temperature_and_validation():
    bath = SpectralBath(lambda w: np.exp(-w), temperature=0.0, omega_range=(1e-6, 50.0),
                        config=QuadratureConfig(epsabs=1e-10, epsrel=1e-8))
    # ∫ e^{-ω} dω over (0, ∞) = 1
    assert bath.correlation(0.0).real == pytest.approx(1.0, rel=1e-5)
    with pytest.raises(ValueError):
        SpectralBath(lambda w: w, temperature=-1.0)
    with pytest.raises(ValueError):
        SpectralBath(lambda w: w, temperature=1.0, omega_range=(0.0, 1.0))
