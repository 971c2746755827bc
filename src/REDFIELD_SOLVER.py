from __future__ import annotations

import warnings
from typing import Any, Callable, Optional, Sequence

import numpy as np

from ANNEALING import Annealing, ODEParams
from CONTROL import (
    ControlSet,
    InstPulseControl,
    build_callback,
    build_control_set_callback,
    check_de_data_error,
    init_aux_state,
    pulse_on_density,
    reset_control,
)
from INTEGRATOR import (
    ArrayOperator,
    CallbackSet,
    FunctionCallingCallback,
    Integrator,
    ODEFunction,
    ODEProblem,
    ODESolution,
    solve,
)
from OPEN_SYSTEM import QuadratureConfig, create_redfield
from UTILITIES import build_u0, check_positivity, preprocessing_time, scaling_tspan


def solve_redfield(
    A: Annealing,
    tf: float,
    unitary: Callable[[float], np.ndarray],
    *,
    vectorize: bool = False,
    dimensionless_time: bool = True,
    tstops: Sequence[float] = (),
    positivity_check: bool = False,
    de_array_constructor: Optional[Callable[[np.ndarray], Any]] = None,
    quadrature: Optional[QuadratureConfig] = None,
    **kwargs: Any,
) -> ODESolution:
    """
    Solve the time-dependent Redfield equation for the annealing `A` with total time `tf`.

    Parameters
    ----------
    A:
        The annealing; needs `coupling` and `bath`, or `interactions`.
    tf:
        Total annealing time.
    unitary:
        Precomputed closed-system propagator U(s) (e.g. from `solve_unitary`).
    vectorize:
        Integrate the column-stacked density matrix with a cached
        superoperator (also handed to implicit methods as Jacobian).
    dimensionless_time:
        If True the integrator runs in dimensionless time s ∈ A.sspan,
        otherwise in physical time t = tf * s.
    tstops:
        Extra times (integrator units) the stepper must hit exactly.
    positivity_check:
        Warn whenever the density matrix loses positivity after a step.
    de_array_constructor:
        Wrapper for states carrying auxiliary data (`AuxDataArray`).
    quadrature:
        Tolerances for the Redfield kernel integral.
    **kwargs:
        Forwarded verbatim to `INTEGRATOR.solve`.

    Returns
    -------
    ODESolution
        The density-matrix trajectory (vectorized if `vectorize`).
    """
    tf, tstops = preprocessing_time(tf, tstops, A.tstops, dimensionless_time)
    u0 = build_u0(A.u0, "m", vectorize=vectorize, de_array_constructor=de_array_constructor)
    check_de_data_error(u0, A.control, de_array_constructor)
    init_aux_state(u0, A.control)
    ff = redfield_construct_ode_function(A.H, vectorize)
    if A.interactions is None:
        opensys = create_redfield(A.coupling, unitary, tf, A.bath, config=quadrature)
    else:
        opensys = create_redfield(A.interactions, unitary, tf, config=quadrature)
    reset_control(A.control)
    callback = redfield_build_callback(A.control, tf)
    p = ODEParams(A.H, tf, opensys=opensys, control=A.control)
    if positivity_check:
        positivity_check_callback = FunctionCallingCallback(
            positivity_check_affect,
            func_everystep=True,
            func_start=False,
        )
        callback = CallbackSet(callback, positivity_check_callback)

    prob = ODEProblem(ff, u0, lambda p: scaling_tspan(p.tf, A.sspan), p)
    return solve(
        prob,
        alg_hints=["nonstiff"],
        tstops=tstops,
        callback=callback,
        **kwargs,
    )


def redfield_build_callback(control: Any, tf: float = 1.0) -> Any:
    """Pulse callback (ρ ← P ρ P†) for pulse controls and control sets, None otherwise."""
    if isinstance(control, InstPulseControl):
        return build_callback(control, pulse_on_density, tf)
    if isinstance(control, ControlSet):
        return build_control_set_callback(control, pulse_on_density, tf)
    return None


def redfield_construct_ode_function(H: Any, vectorize: bool) -> Any:
    """Direct right-hand side, or a cached superoperator when `vectorize`."""
    if not vectorize:
        return redfield_f
    cache = H.get_cache(vectorize)
    diff_op = ArrayOperator(cache, update_func=redfield_vectorize_update)
    jac_cache = np.empty_like(cache)
    jac_op = ArrayOperator(jac_cache, update_func=redfield_vectorize_update)
    return ODEFunction(diff_op, jac_prototype=jac_op)


def redfield_f(du: np.ndarray, u: np.ndarray, p: ODEParams, t: float) -> None:
    p.H.apply(du, u, p.tf, t)
    p.opensys(du, u, p.tf, t)


def redfield_vectorize_update(A: np.ndarray, u: np.ndarray, p: ODEParams, t: float) -> None:
    # the Hamiltonian part overwrites A, the dissipator accumulates on top
    p.H.update_vectorized_cache(A, p.tf, t)
    p.opensys.update_vectorized_cache(A, p.tf, t)


def positivity_check_affect(u: np.ndarray, t: float, integrator: Integrator) -> None:
    """Warn if the density matrix is not positive; the state is left untouched."""
    if not check_positivity(u):
        warnings.warn(
            f"The density matrix becomes non-positive at t={t:.6g}.",
            RuntimeWarning,
            stacklevel=2,
        )
