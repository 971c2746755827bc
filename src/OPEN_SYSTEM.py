"""Couplings, baths and the time-dependent Redfield generator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.integrate import quad, quad_vec

from UTILITIES import time_scale


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class QuadratureConfig:
    """Tolerances of the adaptive quadratures used by baths and the Redfield kernel."""

    epsabs: float = 1e-8
    epsrel: float = 1e-6
    limit: int = 1000


# =============================================================================
# System-bath couplings
# =============================================================================

class ConstantCouplings:
    """Time-independent coupling operators S_a."""

    def __init__(self, mats: Sequence[np.ndarray]) -> None:
        if len(mats) == 0:
            raise ValueError("At least one coupling operator is required.")
        self.mats = [np.asarray(m, dtype=np.complex128) for m in mats]

    def __len__(self) -> int:
        return len(self.mats)

    def __call__(self, s: float) -> List[np.ndarray]:
        return self.mats


class CustomCouplings:
    """Coupling operators S_a(s) given as functions of the dimensionless time."""

    def __init__(self, funcs: Sequence[Callable[[float], np.ndarray]]) -> None:
        if len(funcs) == 0:
            raise ValueError("At least one coupling function is required.")
        self.funcs = list(funcs)

    def __len__(self) -> int:
        return len(self.funcs)

    def __call__(self, s: float) -> List[np.ndarray]:
        return [np.asarray(f(s), dtype=np.complex128) for f in self.funcs]


# =============================================================================
# Baths
# =============================================================================

class CustomBath:
    """Bath defined directly by its correlation function C(τ) (physical time)."""

    def __init__(self, correlation: Callable[[float], complex]) -> None:
        self._correlation = correlation

    def correlation(self, tau: float) -> complex:
        return complex(self._correlation(tau))


class SpectralBath:
    """
    Bath defined by a spectral density J(ω) at temperature T (ħ = k_B = 1).

    The correlation function is

        C(τ) = ∫ J(ω) [coth(βω/2) cos(ωτ) − i sin(ωτ)] dω

    over `omega_range`, evaluated with oscillatory-weight quadrature.
    """

    def __init__(
        self,
        spectral_density: Callable[[float], float],
        temperature: float,
        omega_range: Tuple[float, float] = (1e-3, 100.0),
        config: QuadratureConfig = QuadratureConfig(),
    ) -> None:
        if temperature < 0.0:
            raise ValueError("temperature must be >= 0.")
        wmin, wmax = (float(w) for w in omega_range)
        if not 0.0 < wmin < wmax:
            raise ValueError("omega_range must satisfy 0 < wmin < wmax.")
        self.J = spectral_density
        self.temperature = float(temperature)
        self.omega_range = (wmin, wmax)
        self.config = config

    def _coth_factor(self, w: float) -> float:
        if self.temperature == 0.0:
            return 1.0
        x = 0.5 * w / self.temperature
        if abs(x) < 1e-8:
            return 1.0 / x
        return 1.0 / np.tanh(x)

    def correlation(self, tau: float) -> complex:
        tau = float(tau)
        wmin, wmax = self.omega_range
        cfg = self.config

        def f_re(w: float) -> float:
            return self.J(w) * self._coth_factor(w)

        if tau == 0.0:
            Cr, _ = quad(f_re, wmin, wmax, epsabs=cfg.epsabs, epsrel=cfg.epsrel, limit=cfg.limit)
            return complex(Cr, 0.0)

        Cr, _ = quad(
            f_re, wmin, wmax, weight="cos", wvar=tau,
            epsabs=cfg.epsabs, epsrel=cfg.epsrel, limit=cfg.limit,
        )
        Ci, _ = quad(
            self.J, wmin, wmax, weight="sin", wvar=tau,
            epsabs=cfg.epsabs, epsrel=cfg.epsrel, limit=cfg.limit,
        )
        return complex(Cr, -Ci)


@dataclass
class Interaction:
    """One coupling together with the bath it couples to."""

    coupling: Any
    bath: Any


class InteractionSet:
    """Collection of independent system-bath interactions."""

    def __init__(self, *interactions: Interaction) -> None:
        if not interactions:
            raise ValueError("InteractionSet needs at least one Interaction.")
        self.interactions = list(interactions)

    def __iter__(self):
        return iter(self.interactions)

    def __len__(self) -> int:
        return len(self.interactions)


# =============================================================================
# Redfield generator
# =============================================================================

class RedfieldGenerator:
    """
    Time-dependent Redfield dissipator.

    For every coupling operator S_a with bath correlation C_a,

        Λ_a(s) = tf ∫_0^s C_a(tf (s − s')) W S_a(s') W† ds',   W = U(s) U(s')†,

    and the dissipative contribution to dρ/dt is

        −scale · Σ_a (S_a Λ_a ρ − Λ_a ρ S_a + ρ Λ_a† S_a − S_a ρ Λ_a†).

    Parameters
    ----------
    terms:
        Pairs (coupling, correlation) where `coupling(s)` returns a list of
        Hermitian operators and `correlation(τ)` is the bath correlation function.
    unitary:
        Closed-system propagator U(s) (callable of the dimensionless time).
    tf:
        Total annealing time (float, or `UnitTime` for physical integrator time).
    config:
        Quadrature tolerances for Λ.
    """

    def __init__(
        self,
        terms: Sequence[Tuple[Any, Callable[[float], complex]]],
        unitary: Callable[[float], np.ndarray],
        tf: float,
        config: Optional[QuadratureConfig] = None,
    ) -> None:
        if not terms:
            raise ValueError("RedfieldGenerator needs at least one coupling term.")
        self.terms = list(terms)
        self.unitary = unitary
        self.tf = tf
        self.config = config if config is not None else QuadratureConfig()
        self._cache_s: Optional[float] = None
        self._cache: List[Tuple[np.ndarray, np.ndarray]] = []

    def _integrate_lambda(self, coupling: Any, correlation: Callable, s: float, n: int) -> np.ndarray:
        tf = float(self.tf)
        U_s = np.asarray(self.unitary(s))
        n_ops = len(coupling)

        def integrand(x: float) -> np.ndarray:
            W = U_s @ np.asarray(self.unitary(x)).conj().T
            c = correlation(tf * (s - x))
            vals = np.stack([c * (W @ S @ W.conj().T) for S in coupling(x)])
            # real/imaginary parts stacked for the real-valued quadrature
            return np.concatenate([vals.real.ravel(), vals.imag.ravel()])

        cfg = self.config
        res, _ = quad_vec(integrand, 0.0, s, epsabs=cfg.epsabs, epsrel=cfg.epsrel, limit=cfg.limit)
        half = res.size // 2
        lam = (res[:half] + 1j * res[half:]).reshape(n_ops, n, n)
        return tf * lam

    def operators(self, s: float) -> List[Tuple[np.ndarray, np.ndarray]]:
        """Pairs (S_a(s), Λ_a(s)) for all coupling operators, cached per time."""
        if self._cache_s == s:
            return self._cache
        pairs: List[Tuple[np.ndarray, np.ndarray]] = []
        for coupling, correlation in self.terms:
            ops = coupling(s)
            n = ops[0].shape[0]
            if s <= 0.0:
                lams = np.zeros((len(ops), n, n), dtype=np.complex128)
            else:
                lams = self._integrate_lambda(coupling, correlation, s, n)
            pairs.extend(zip(ops, lams))
        self._cache_s = s
        self._cache = pairs
        return pairs

    def __call__(self, du: np.ndarray, u: np.ndarray, tf: float, t: float) -> None:
        """Add the dissipative derivative of the density matrix `u` to `du`."""
        scale, s = time_scale(tf, t)
        for S, lam in self.operators(s):
            lam_d = lam.conj().T
            du -= scale * (S @ lam @ u - lam @ u @ S + u @ lam_d @ S - S @ u @ lam_d)

    def update_vectorized_cache(self, A: np.ndarray, tf: float, t: float) -> None:
        """Add the dissipator superoperator (column-stacking convention) to `A`."""
        scale, s = time_scale(tf, t)
        for S, lam in self.operators(s):
            iden = np.eye(S.shape[0], dtype=np.complex128)
            A -= scale * (
                np.kron(iden, S @ lam)
                - np.kron(S.T, lam)
                + np.kron((lam.conj().T @ S).T, iden)
                - np.kron(lam.conj(), S)
            )


def create_redfield(
    coupling: Any,
    unitary: Callable[[float], np.ndarray],
    tf: float,
    bath: Any = None,
    config: Optional[QuadratureConfig] = None,
) -> RedfieldGenerator:
    """
    Build the Redfield generator for one solve.

    Parameters
    ----------
    coupling:
        Couplings (with `bath`), or an `InteractionSet` (then `bath` must be None).
    unitary:
        Closed-system propagator U(s).
    tf:
        Total time as returned by `preprocessing_time`.
    bath:
        Bath exposing `correlation(tau)`.
    config:
        Quadrature tolerances for Λ.
    """
    if isinstance(coupling, InteractionSet):
        if bath is not None:
            raise ValueError("bath must be None when an InteractionSet is given.")
        terms = [(i.coupling, i.bath.correlation) for i in coupling]
    else:
        if bath is None:
            raise ValueError("A bath is required to build the Redfield generator.")
        terms = [(coupling, bath.correlation)]
    return RedfieldGenerator(terms, unitary, tf, config=config)
