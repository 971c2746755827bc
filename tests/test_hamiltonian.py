import numpy as np
import pytest

from HAMILTONIAN import DenseHamiltonian
from UTILITIES import UnitTime, mat2vec

SIGMA_X = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.complex128)
SIGMA_Z = np.array([[1.0, 0.0], [0.0, -1.0]], dtype=np.complex128)


def test_evaluation_and_units():
    H = DenseHamiltonian([lambda s: 1.0 - s, lambda s: s], [SIGMA_X, SIGMA_Z])
    np.testing.assert_allclose(H(0.25), 2.0 * np.pi * (0.75 * SIGMA_X + 0.25 * SIGMA_Z))
    H_bar = DenseHamiltonian([lambda s: 1.0], [SIGMA_Z], unit="hbar")
    np.testing.assert_allclose(H_bar(0.3), SIGMA_Z)
    assert H_bar.size == (2, 2)


def test_constructor_validation():
    with pytest.raises(ValueError):
        DenseHamiltonian([lambda s: 1.0], [SIGMA_X, SIGMA_Z])
    with pytest.raises(ValueError):
        DenseHamiltonian([lambda s: 1.0], [SIGMA_X], unit="eV")
    with pytest.raises(ValueError):
        DenseHamiltonian([lambda s: 1.0, lambda s: 1.0], [SIGMA_X, np.eye(3)])


def test_cache_updates_match_apply():
    H = DenseHamiltonian([lambda s: 1.0 - s, lambda s: s], [SIGMA_X, SIGMA_Z], unit="hbar")
    psi = np.array([0.6, 0.8j])
    rho = np.outer(psi, psi.conj())

    A = H.get_cache()
    H.update_cache(A, 2.0, 0.3)
    du = np.empty(2, dtype=np.complex128)
    H.apply(du, psi, 2.0, 0.3)
    np.testing.assert_allclose(A @ psi, du)

    Av = H.get_cache(vectorize=True)
    assert Av.shape == (4, 4)
    H.update_vectorized_cache(Av, 2.0, 0.3)
    drho = np.empty((2, 2), dtype=np.complex128)
    H.apply(drho, rho, 2.0, 0.3)
    np.testing.assert_allclose(Av @ mat2vec(rho), mat2vec(drho), atol=1e-12)


def test_physical_time_evaluates_at_rescaled_time():
    H = DenseHamiltonian([lambda s: s], [SIGMA_Z], unit="hbar")
    A = H.get_cache()
    H.update_cache(A, UnitTime(4.0), 2.0)
    np.testing.assert_allclose(A, -1j * 0.5 * SIGMA_Z)
