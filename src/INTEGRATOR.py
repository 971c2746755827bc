"""
Problem, callback and solution layer around the adaptive steppers of `scipy.integrate`.

The numerical work (step-size control, error estimation, dense output,
Newton iterations of implicit methods) is done entirely by scipy's
`OdeSolver` classes. This module adds what the annealing drivers need on top
of them:

- in-place right-hand sides `f(du, u, p, t)` with an opaque parameter object;
- cached linear operators whose matrix is refreshed at every evaluation and
  that double as the Jacobian of implicit methods;
- mandatory stop-times, reached exactly by restarting the stepper;
- preset-time callbacks that may modify the state, and every-step callbacks
  that only observe it;
- states of arbitrary shape (integrated as flat vectors).
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.integrate import BDF, DOP853, RK23, RK45, Radau

from UTILITIES import AuxDataArray

# =============================================================================
# Configuration
# =============================================================================

METHODS: Dict[str, type] = {
    "RK45": RK45,
    "RK23": RK23,
    "DOP853": DOP853,
    "Radau": Radau,
    "BDF": BDF,
}

# Algorithm hints -> default scipy method.
ALG_HINT_METHODS: Dict[str, str] = {
    "nonstiff": "RK45",
    "stiff": "Radau",
}

# Methods that consume a Jacobian.
IMPLICIT_METHODS: Tuple[str, ...] = ("Radau", "BDF")

_TIME_ATOL: float = 1e-12


# =============================================================================
# Operators and problem definition
# =============================================================================

class ArrayOperator:
    """
    Linear operator u ↦ A(t) u backed by a cached matrix.

    `update_func(A, u, p, t)` refreshes the cache in place before each use, so
    the matrix buffer is allocated once per solve.
    """

    def __init__(
        self,
        A: np.ndarray,
        update_func: Optional[Callable[[np.ndarray, np.ndarray, Any, float], None]] = None,
    ) -> None:
        self.A = A
        self.update_func = update_func

    def update_coefficients(self, u: np.ndarray, p: Any, t: float) -> None:
        if self.update_func is not None:
            self.update_func(self.A, u, p, t)

    def __call__(self, du: np.ndarray, u: np.ndarray, p: Any, t: float) -> None:
        self.update_coefficients(u, p, t)
        du[:] = self.A @ u


class ODEFunction:
    """In-place right-hand side `f(du, u, p, t)` with an optional Jacobian prototype."""

    def __init__(self, f: Callable, jac_prototype: Optional[ArrayOperator] = None) -> None:
        self.f = f
        self.jac_prototype = jac_prototype

    def __call__(self, du: np.ndarray, u: np.ndarray, p: Any, t: float) -> None:
        self.f(du, u, p, t)

    @property
    def has_jac(self) -> bool:
        return isinstance(self.jac_prototype, ArrayOperator)

    def jac(self, u: np.ndarray, p: Any, t: float) -> np.ndarray:
        self.jac_prototype.update_coefficients(u, p, t)
        return self.jac_prototype.A.copy()


class ODEProblem:
    """
    Initial value problem du/dt = f(u, p, t), u(t0) = u0.

    Parameters
    ----------
    f:
        `ODEFunction` or in-place callable `f(du, u, p, t)`.
    u0:
        Initial state (array of any shape, or `AuxDataArray`).
    tspan:
        Pair (t0, t1), or a callable of `p` returning it.
    p:
        Parameter object forwarded to every evaluation.
    """

    def __init__(self, f: Any, u0: Any, tspan: Any, p: Any = None) -> None:
        self.f = f if isinstance(f, ODEFunction) else ODEFunction(f)
        self.u0 = u0
        self.p = p
        if callable(tspan):
            tspan = tspan(p)
        t0, t1 = (float(x) for x in tspan)
        if not t1 > t0:
            raise ValueError(f"tspan must be increasing; got ({t0}, {t1}).")
        self.tspan = (t0, t1)


# =============================================================================
# Callbacks
# =============================================================================

@dataclass
class PresetTimeCallback:
    """Call `affect(integrator)` when the integrator reaches one of `times`."""

    times: Sequence[float]
    affect: Callable[["Integrator"], None]
    save_positions: Tuple[bool, bool] = (True, True)

    def __post_init__(self) -> None:
        self.times = np.unique(np.asarray(self.times, dtype=np.float64).reshape(-1))

    def fires_at(self, t: float) -> bool:
        return bool(np.any(np.abs(self.times - t) <= _TIME_ATOL * max(1.0, abs(t))))


@dataclass
class FunctionCallingCallback:
    """Call `func(u, t, integrator)` after accepted steps; must not modify `u`."""

    func: Callable[[np.ndarray, float, "Integrator"], None]
    func_everystep: bool = True
    func_start: bool = False


class CallbackSet:
    """Flat collection of callbacks; `None` entries are dropped."""

    def __init__(self, *callbacks: Any) -> None:
        flat: List[Any] = []
        for cb in callbacks:
            if cb is None:
                continue
            if isinstance(cb, CallbackSet):
                flat.extend(cb.callbacks)
            else:
                flat.append(cb)
        self.callbacks: Tuple[Any, ...] = tuple(flat)

    def __len__(self) -> int:
        return len(self.callbacks)

    @property
    def preset(self) -> List[PresetTimeCallback]:
        return [cb for cb in self.callbacks if isinstance(cb, PresetTimeCallback)]

    @property
    def everystep(self) -> List[FunctionCallingCallback]:
        return [cb for cb in self.callbacks if isinstance(cb, FunctionCallingCallback)]


class Integrator:
    """Mutable integrator view handed to callbacks."""

    def __init__(self, u: np.ndarray, t: float, p: Any, aux: Optional[AuxDataArray]) -> None:
        self.u = u
        self.t = t
        self.p = p
        self.aux = aux


# =============================================================================
# Solution
# =============================================================================

class ODESolution:
    """
    Saved trajectory plus dense interpolation.

    Attributes
    ----------
    t:
        Saved times.
    u:
        Saved states, each with the shape of the initial state.
    status:
        "finished" or "failed".
    message:
        Termination message of the scipy stepper.
    aux:
        Final auxiliary data (`AuxDataArray`) or None.
    """

    def __init__(
        self,
        prob: ODEProblem,
        t: np.ndarray,
        u: List[np.ndarray],
        interpolants: List[Tuple[float, float, Any]],
        status: str,
        message: str,
        nfev: int,
        njev: int,
        aux: Optional[AuxDataArray],
    ) -> None:
        self.prob = prob
        self.t = t
        self.u = u
        self._interpolants = interpolants
        self.status = status
        self.message = message
        self.nfev = nfev
        self.njev = njev
        self.aux = aux
        self._shape = u[0].shape if u else np.shape(prob.u0)

    @property
    def success(self) -> bool:
        return self.status == "finished"

    def __len__(self) -> int:
        return len(self.u)

    def __getitem__(self, i: int) -> np.ndarray:
        return self.u[i]

    def _interpolate(self, t: float) -> np.ndarray:
        # The latest segment wins at a shared boundary, i.e. the state after
        # a callback at that time.
        for t_old, t_new, interp in reversed(self._interpolants):
            lo, hi = min(t_old, t_new), max(t_old, t_new)
            if lo - _TIME_ATOL <= t <= hi + _TIME_ATOL:
                return np.asarray(interp(t)).reshape(self._shape)
        if self.u and abs(t - self.t[0]) <= _TIME_ATOL:
            return self.u[0].copy()
        raise ValueError(f"t={t} is outside the integrated interval or dense output is disabled.")

    def __call__(self, t: Any) -> Any:
        if np.ndim(t) == 0:
            return self._interpolate(float(t))
        return [self._interpolate(float(ti)) for ti in np.asarray(t).reshape(-1)]


# =============================================================================
# Driver
# =============================================================================

def _select_method(method: Optional[str], alg_hints: Sequence[str]) -> str:
    if method is not None:
        if method not in METHODS:
            raise ValueError(f"Unknown method {method!r}; available: {sorted(METHODS)}.")
        return method
    for hint in alg_hints:
        if hint not in ALG_HINT_METHODS:
            raise NotImplementedError(f"Algorithm hint {hint!r} is not supported.")
        return ALG_HINT_METHODS[hint]
    return ALG_HINT_METHODS["nonstiff"]


def solve(
    prob: ODEProblem,
    *,
    alg_hints: Sequence[str] = ("nonstiff",),
    tstops: Sequence[float] = (),
    callback: Any = None,
    method: Optional[str] = None,
    saveat: Optional[Sequence[float]] = None,
    save_everystep: bool = True,
    save_start: bool = True,
    dense: bool = True,
    **solver_options: Any,
) -> ODESolution:
    """
    Integrate `prob` with a scipy adaptive stepper.

    Parameters
    ----------
    prob:
        The problem to integrate.
    alg_hints:
        Hints used to pick a method when `method` is None ("nonstiff", "stiff").
    tstops:
        Times the stepper must hit exactly. Preset callback times are added.
    callback:
        A callback, a `CallbackSet`, or None.
    method:
        Explicit scipy method name; overrides `alg_hints`.
    saveat:
        If given, only these times are saved (from dense output).
    save_everystep:
        Save the state after every accepted step (ignored with `saveat`).
    save_start:
        Save the initial state.
    dense:
        Keep the dense output of every step for `sol(t)`.
    **solver_options:
        Forwarded verbatim to the scipy solver (rtol, atol, max_step, first_step, ...).

    Returns
    -------
    ODESolution
        Integration failures are reported through `status` and `message` with a
        `RuntimeWarning`; they are not raised.
    """
    method = _select_method(method, alg_hints)
    solver_cls = METHODS[method]
    callbacks = CallbackSet(callback)
    preset = callbacks.preset
    everystep = callbacks.everystep
    t0, t1 = prob.tspan

    if isinstance(prob.u0, AuxDataArray):
        aux: Optional[AuxDataArray] = AuxDataArray(
            np.array(prob.u0.data, dtype=np.complex128, copy=True), prob.u0.state
        )
        u = aux.data
    else:
        aux = None
        u = np.array(prob.u0, dtype=np.complex128, copy=True)
    shape = u.shape

    def fun(t: float, y: np.ndarray) -> np.ndarray:
        du = np.empty(shape, dtype=np.complex128)
        prob.f(du, y.reshape(shape), prob.p, t)
        return du.reshape(-1)

    options = dict(solver_options)
    if method in IMPLICIT_METHODS and prob.f.has_jac:
        options["jac"] = lambda t, y: prob.f.jac(y.reshape(shape), prob.p, t)

    stop_arrays = [np.asarray(tstops, dtype=np.float64).reshape(-1)]
    stop_arrays.extend(np.asarray(cb.times) for cb in preset)
    stops = np.unique(np.concatenate(stop_arrays + [np.array([t1])]))
    stops = stops[(stops > t0) & (stops <= t1)]

    if saveat is not None:
        save_times = np.unique(np.asarray(saveat, dtype=np.float64).reshape(-1))
        save_times = save_times[(save_times >= t0) & (save_times <= t1)]
        save_everystep = False
    else:
        save_times = None
    k_save = 0

    ts: List[float] = []
    us: List[np.ndarray] = []
    interpolants: List[Tuple[float, float, Any]] = []
    integ = Integrator(u, t0, prob.p, aux)

    def record(t: float, state: np.ndarray) -> None:
        ts.append(float(t))
        us.append(np.array(state, copy=True))

    def apply_preset(t: float) -> None:
        fired = [cb for cb in preset if cb.fires_at(t)]
        if not fired:
            return
        keep_positions = save_times is None
        if keep_positions and any(cb.save_positions[0] for cb in fired):
            if not ts or ts[-1] != t:
                record(t, integ.u)
        for cb in fired:
            cb.affect(integ)
        if keep_positions and any(cb.save_positions[1] for cb in fired):
            record(t, integ.u)

    if save_times is not None:
        if len(save_times) and save_times[0] == t0:
            record(t0, integ.u)
            k_save = 1
    elif save_start:
        record(t0, integ.u)

    for cb in everystep:
        if cb.func_start:
            cb.func(integ.u, integ.t, integ)
    apply_preset(t0)

    status = "finished"
    message = "The solver successfully reached the end of the integration interval."
    nfev = 0
    njev = 0

    for t_end in stops:
        solver = solver_cls(fun, integ.t, integ.u.reshape(-1), float(t_end), **options)
        while solver.status == "running":
            step_message = solver.step()
            if solver.status == "failed":
                status = "failed"
                message = str(step_message)
                break
            t_new = solver.t
            interp = None
            if (dense or save_times is not None) and solver.t_old != t_new:
                interp = solver.dense_output()
                if dense:
                    interpolants.append((solver.t_old, t_new, interp))

            integ.u = np.array(solver.y, copy=True).reshape(shape)
            integ.t = t_new
            if aux is not None:
                aux.data = integ.u

            if save_times is not None:
                while k_save < len(save_times) and save_times[k_save] <= t_new:
                    ts_k = save_times[k_save]
                    state = interp(ts_k).reshape(shape) if interp is not None else integ.u
                    record(ts_k, state)
                    k_save += 1
            elif save_everystep:
                record(t_new, integ.u)

            for cb in everystep:
                if cb.func_everystep:
                    cb.func(integ.u, integ.t, integ)

        nfev += int(solver.nfev)
        njev += int(getattr(solver, "njev", 0))
        if status == "failed":
            break

        if save_times is None and not save_everystep and t_end == stops[-1]:
            record(integ.t, integ.u)
        apply_preset(float(t_end))
        if aux is not None:
            aux.data = integ.u

    if status == "failed":
        warnings.warn(
            f"Integration stopped at t={integ.t:.6g} with method {method}: {message}",
            RuntimeWarning,
            stacklevel=2,
        )

    return ODESolution(
        prob,
        np.asarray(ts, dtype=np.float64),
        us,
        interpolants,
        status,
        message,
        nfev,
        njev,
        aux,
    )
