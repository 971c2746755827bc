from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from ANNEALING import Annealing, ODEParams
from INTEGRATOR import ODEProblem, ODESolution, solve
from UTILITIES import UnitTime, preprocessing_time, scaling_tspan


class UnitaryPropagator:
    """
    Closed-system propagator U(s) interpolated from a unitary solve.

    Calling the propagator with a dimensionless time s returns the (n, n)
    matrix U(s), whatever time units the underlying solve used.
    """

    def __init__(self, solution: ODESolution, tf: float) -> None:
        self.solution = solution
        self.tf = tf

    def __call__(self, s: float) -> np.ndarray:
        t = float(self.tf) * s if isinstance(self.tf, UnitTime) else s
        return self.solution(t)


def solve_unitary(
    A: Annealing,
    tf: float,
    *,
    dimensionless_time: bool = True,
    tstops: Sequence[float] = (),
    **kwargs: Any,
) -> UnitaryPropagator:
    """
    Solve dU/dt = -i H U from the identity for the annealing `A`.

    Parameters
    ----------
    A:
        The annealing; only `A.H`, `A.sspan` and `A.tstops` are used.
    tf:
        Total annealing time.
    dimensionless_time:
        Integrate in dimensionless time s (True) or physical time t = tf * s.
    tstops:
        Extra stop-times in integrator units.
    **kwargs:
        Forwarded to `INTEGRATOR.solve` (rtol, atol, method, ...).

    Returns
    -------
    UnitaryPropagator
        Callable s -> U(s), usable as the precomputed unitary of `solve_redfield`.
    """
    tf, tstops = preprocessing_time(tf, tstops, A.tstops, dimensionless_time)
    u0 = np.eye(A.H.size[0], dtype=np.complex128)
    cache = A.H.get_cache()

    def unitary_f(du: np.ndarray, u: np.ndarray, p: ODEParams, t: float) -> None:
        p.H.update_cache(cache, p.tf, t)
        du[:] = cache @ u

    p = ODEParams(A.H, tf)
    prob = ODEProblem(unitary_f, u0, lambda p: scaling_tspan(p.tf, A.sspan), p)
    kwargs.setdefault("dense", True)
    sol = solve(prob, alg_hints=["nonstiff"], tstops=tstops, **kwargs)
    return UnitaryPropagator(sol, tf)
