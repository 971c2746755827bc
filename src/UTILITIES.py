from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Tuple, Union

import numpy as np


# =============================================================================
# Time preprocessing
# =============================================================================

class UnitTime(float):
    """
    Total evolution time for an integrator that runs in physical time units.

    A plain float `tf` means the integrator runs in dimensionless time
    s ∈ sspan and every derivative is multiplied by `tf`. A `UnitTime` means
    the integrator time is t = tf * s and schedules are evaluated at t / tf.
    """

    def __repr__(self) -> str:
        return f"UnitTime({float(self)!r})"


def time_scale(tf: float, t: float) -> Tuple[float, float]:
    """
    Return the derivative prefactor and the dimensionless schedule time.

    Returns
    -------
    scale:
        `tf` in dimensionless mode, 1 in physical mode.
    s:
        Schedule time: `t` in dimensionless mode, `t / tf` in physical mode.
    """
    if isinstance(tf, UnitTime):
        return 1.0, t / float(tf)
    return float(tf), t


def preprocessing_time(
    tf: float,
    tstops: Sequence[float],
    annealing_tstops: Sequence[float],
    dimensionless_time: bool,
) -> Tuple[float, np.ndarray]:
    """
    Convert the requested total time and stop-times into integrator units.

    Parameters
    ----------
    tf:
        Total evolution time (physical units).
    tstops:
        Extra stop-times requested by the caller, already in integrator units.
    annealing_tstops:
        Stop-times defined by the annealing (dimensionless units).
    dimensionless_time:
        If False, `tf` is wrapped in `UnitTime` and the annealing stop-times are
        scaled by `tf`.

    Returns
    -------
    tf:
        The (possibly wrapped) total time.
    tstops:
        Sorted, deduplicated array of mandatory stop-times.
    """
    tf_val = float(tf)
    if not np.isfinite(tf_val) or tf_val <= 0.0:
        raise ValueError(f"tf must be a positive finite number; got {tf!r}.")

    user = np.asarray(tstops, dtype=np.float64).reshape(-1)
    own = np.asarray(annealing_tstops, dtype=np.float64).reshape(-1)
    if np.any(user < 0.0) or np.any(own < 0.0):
        raise ValueError("Stop-times must be non-negative.")

    if dimensionless_time:
        tf_out: float = tf_val
    else:
        tf_out = UnitTime(tf_val)
        own = tf_val * own

    return tf_out, np.unique(np.concatenate([user, own]))


def scaling_tspan(tf: float, sspan: Sequence[float]) -> Tuple[float, float]:
    """Integration interval in integrator units for the annealing interval `sspan`."""
    s0, s1 = (float(x) for x in sspan)
    if isinstance(tf, UnitTime):
        return float(tf) * s0, float(tf) * s1
    return s0, s1


# =============================================================================
# Vectorization (column stacking)
# =============================================================================

def mat2vec(M: np.ndarray) -> np.ndarray:
    """Matrix -> vector by stacking columns (Fortran order)."""
    M = np.asarray(M)
    return np.reshape(M, (M.size,), order="F")


def vec2mat(v: np.ndarray) -> np.ndarray:
    """Inverse of `mat2vec` for a square matrix."""
    v = np.asarray(v)
    n = int(round(np.sqrt(v.size)))
    if n * n != v.size:
        raise ValueError(f"Vector of length {v.size} is not a vectorized square matrix.")
    return np.reshape(v, (n, n), order="F")


# =============================================================================
# Initial state
# =============================================================================

@dataclass
class AuxDataArray:
    """
    State array carrying auxiliary per-solve data.

    `state` is the pulse counter advanced by `InstDEPulseControl` callbacks,
    or a tuple with one counter per DE member of a `ControlSet`;
    the integrator only evolves `data`.
    """

    data: np.ndarray
    state: Union[int, Tuple[int, ...]] = 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuxDataArray):
            return NotImplemented
        return self.state == other.state and np.array_equal(self.data, other.data)


def build_u0(
    raw_u0: Any,
    mode: str,
    *,
    vectorize: bool = False,
    de_array_constructor: Optional[Callable[[np.ndarray], Any]] = None,
) -> Any:
    """
    Build the initial state in the layout expected by the right-hand side.

    Parameters
    ----------
    raw_u0:
        State vector or density matrix.
    mode:
        - "v": state vector, returned as a complex 1-D array.
        - "m": density matrix; a state vector ψ is promoted to |ψ⟩⟨ψ|.
    vectorize:
        In "m" mode, flatten the density matrix column-wise.
    de_array_constructor:
        Optional wrapper applied last (e.g. `AuxDataArray`).

    Returns
    -------
    u0:
        A fresh array (never aliasing `raw_u0`), possibly wrapped.
    """
    arr = np.array(raw_u0, dtype=np.complex128, copy=True)

    if mode == "v":
        if arr.ndim != 1:
            raise ValueError(f"Mode 'v' expects a state vector; got shape {arr.shape}.")
        u0 = arr
    elif mode == "m":
        if arr.ndim == 1:
            arr = np.outer(arr, arr.conj())
        elif arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            raise ValueError(f"Mode 'm' expects a square density matrix; got shape {arr.shape}.")
        u0 = mat2vec(arr).copy() if vectorize else arr
    else:
        raise ValueError(f"Unknown initial state mode {mode!r}; expected 'v' or 'm'.")

    if de_array_constructor is not None:
        u0 = de_array_constructor(u0)
    return u0


# =============================================================================
# Density matrix diagnostics
# =============================================================================

def check_positivity(rho: np.ndarray, atol: float = 1e-10) -> bool:
    """
    Return True if the Hermitian part of `rho` is positive semidefinite.

    `rho` may be a square matrix or its column-stacked vectorization.
    """
    rho = np.asarray(rho)
    if rho.ndim == 1:
        rho = vec2mat(rho)
    herm = 0.5 * (rho + rho.conj().T)
    return bool(np.linalg.eigvalsh(herm).min() >= -atol)
