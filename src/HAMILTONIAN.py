"""Dense schedule-weighted Hamiltonian H(s) = Σ_i f_i(s) M_i."""

from __future__ import annotations

from typing import Callable, Sequence, Tuple

import numpy as np

from UTILITIES import time_scale


class DenseHamiltonian:
    """
    Time-dependent Hamiltonian given by scalar schedules and dense matrices.

    Parameters
    ----------
    funcs:
        Schedules f_i(s) of the dimensionless annealing parameter s.
    mats:
        Matrices M_i, all square and of the same size.
    unit:
        - "h": matrices are energies in units of h (e.g. GHz); they are
          multiplied by 2π to obtain angular frequencies.
        - "hbar": matrices are already angular frequencies.
    """

    def __init__(
        self,
        funcs: Sequence[Callable[[float], float]],
        mats: Sequence[np.ndarray],
        unit: str = "h",
    ) -> None:
        if len(funcs) != len(mats):
            raise ValueError("funcs and mats must have the same length.")
        if len(mats) == 0:
            raise ValueError("At least one (schedule, matrix) pair is required.")
        if unit == "h":
            factor = 2.0 * np.pi
        elif unit == "hbar":
            factor = 1.0
        else:
            raise ValueError(f"unit must be 'h' or 'hbar'; got {unit!r}.")

        self.funcs = list(funcs)
        self.mats = [factor * np.asarray(m, dtype=np.complex128) for m in mats]
        n = self.mats[0].shape[0]
        for m in self.mats:
            if m.shape != (n, n):
                raise ValueError("All Hamiltonian matrices must be square and of equal size.")
        self._n = n

    @property
    def size(self) -> Tuple[int, int]:
        return (self._n, self._n)

    def __call__(self, s: float) -> np.ndarray:
        """Evaluate H(s)."""
        out = np.zeros((self._n, self._n), dtype=np.complex128)
        for f, m in zip(self.funcs, self.mats):
            out += f(s) * m
        return out

    def get_cache(self, vectorize: bool = False) -> np.ndarray:
        """Zero buffer for `update_cache` (or `update_vectorized_cache`)."""
        n = self._n * self._n if vectorize else self._n
        return np.zeros((n, n), dtype=np.complex128)

    def update_cache(self, A: np.ndarray, tf: float, t: float) -> None:
        """Overwrite `A` with -i * scale * H(s)."""
        scale, s = time_scale(tf, t)
        A[:] = -1j * scale * self(s)

    def update_vectorized_cache(self, A: np.ndarray, tf: float, t: float) -> None:
        """Overwrite `A` with the superoperator of ρ ↦ -i * scale * [H(s), ρ]."""
        scale, s = time_scale(tf, t)
        hmat = self(s)
        iden = np.eye(self._n, dtype=np.complex128)
        A[:] = -1j * scale * (np.kron(iden, hmat) - np.kron(hmat.T, iden))

    def apply(self, du: np.ndarray, u: np.ndarray, tf: float, t: float) -> None:
        """
        Overwrite `du` with the closed-system derivative of `u`.

        A state vector evolves as -i H ψ, a density matrix as -i [H, ρ].
        """
        scale, s = time_scale(tf, t)
        hmat = self(s)
        if u.ndim == 1:
            du[:] = -1j * scale * (hmat @ u)
        else:
            du[:] = -1j * scale * (hmat @ u - u @ hmat)
