from __future__ import annotations

from typing import Any, Callable, Optional, Sequence

import numpy as np

from ANNEALING import Annealing, ODEParams
from CONTROL import (
    ControlSet,
    InstPulseControl,
    build_callback,
    check_de_data_error,
    pulse_on_state,
    reset_control,
)
from INTEGRATOR import ArrayOperator, ODEFunction, ODEProblem, ODESolution, PresetTimeCallback, solve
from UTILITIES import build_u0, preprocessing_time, scaling_tspan


def solve_schrodinger(
    A: Annealing,
    tf: float,
    *,
    dimensionless_time: bool = True,
    tstops: Sequence[float] = (),
    de_array_constructor: Optional[Callable[[np.ndarray], Any]] = None,
    **kwargs: Any,
) -> ODESolution:
    """
    Solve the Schrödinger equation for the annealing `A` with total time `tf`.

    Parameters
    ----------
    A:
        The annealing; `A.u0` must be a state vector.
    tf:
        Total annealing time.
    dimensionless_time:
        If True the integrator runs in dimensionless time s ∈ A.sspan,
        otherwise in physical time t = tf * s.
    tstops:
        Extra times (integrator units) the stepper must hit exactly.
    de_array_constructor:
        Wrapper for states carrying auxiliary data (`AuxDataArray`); required by
        `InstDEPulseControl`.
    **kwargs:
        Forwarded verbatim to `INTEGRATOR.solve` (rtol, atol, saveat, method, ...).

    Returns
    -------
    ODESolution
        The state-vector trajectory.

    Raises
    ------
    NotImplementedError
        If `A.control` is a `ControlSet`.
    ValueError
        For an incompatible auxiliary-data / control combination.
    """
    tf, tstops = preprocessing_time(tf, tstops, A.tstops, dimensionless_time)
    u0 = build_u0(A.u0, "v", de_array_constructor=de_array_constructor)
    check_de_data_error(u0, A.control, de_array_constructor)
    reset_control(A.control)
    callback = schrodinger_build_callback(A.control, tf)
    p = ODEParams(A.H, tf, control=A.control)

    cache = A.H.get_cache()
    diff_op = ArrayOperator(cache, update_func=_schrodinger_update)
    jac_op = ArrayOperator(np.empty_like(cache), update_func=_schrodinger_update)
    ff = ODEFunction(diff_op, jac_prototype=jac_op)

    prob = ODEProblem(ff, u0, lambda p: scaling_tspan(p.tf, A.sspan), p)
    return solve(
        prob,
        alg_hints=["nonstiff"],
        callback=callback,
        tstops=tstops,
        **kwargs,
    )


def _schrodinger_update(A: np.ndarray, u: np.ndarray, p: ODEParams, t: float) -> None:
    p.H.update_cache(A, p.tf, t)


def schrodinger_build_callback(control: Any, tf: float = 1.0) -> Optional[PresetTimeCallback]:
    """Pulse callback (c ← P c) for pulse controls, None otherwise."""
    if isinstance(control, ControlSet):
        raise NotImplementedError("Control set is not currently supported for the Schrodinger solver.")
    if isinstance(control, InstPulseControl):
        return build_callback(control, pulse_on_state, tf)
    return None
