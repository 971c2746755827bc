import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from HAMILTONIAN import DenseHamiltonian
from OPEN_SYSTEM import CustomBath

SIGMA_X = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.complex128)
SIGMA_Z = np.array([[1.0, 0.0], [0.0, -1.0]], dtype=np.complex128)
KET_0 = np.array([1.0, 0.0], dtype=np.complex128)
KET_1 = np.array([0.0, 1.0], dtype=np.complex128)
KET_PLUS = np.array([1.0, 1.0], dtype=np.complex128) / np.sqrt(2.0)


@pytest.fixture
def two_level_H():
    """H(s) = -(1 - s) σx / 2 - s σz / 2 in angular units."""
    return DenseHamiltonian(
        [lambda s: 1.0 - s, lambda s: s],
        [-0.5 * SIGMA_X, -0.5 * SIGMA_Z],
        unit="hbar",
    )


@pytest.fixture
def idle_H():
    """Zero Hamiltonian: the state only changes through pulses."""
    return DenseHamiltonian([lambda s: 1.0], [np.zeros((2, 2))], unit="hbar")


@pytest.fixture
def exp_bath():
    return CustomBath(lambda tau: 0.01 * 2.0 * np.exp(-2.0 * abs(tau)))
