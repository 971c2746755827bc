from __future__ import annotations

import warnings
from typing import Any, Callable, List, Optional, Sequence, Union

import numpy as np

from INTEGRATOR import CallbackSet, Integrator, PresetTimeCallback
from UTILITIES import AuxDataArray, UnitTime, mat2vec, vec2mat

PulseOps = Union[Sequence[np.ndarray], Callable[[int], np.ndarray]]


# =============================================================================
# Control variants
# =============================================================================

class InstPulseControl:
    """
    Instantaneous pulses applied at dimensionless times `tstops`.

    Parameters
    ----------
    tstops:
        Pulse times in dimensionless units s.
    ops:
        Pulse unitaries: one matrix per time, or a callable `i -> matrix`.

    Notes
    -----
    `state` is the index of the next pulse. It is advanced by the callback
    built in `build_callback` and must be reset before every solve.
    """

    def __init__(self, tstops: Sequence[float], ops: PulseOps) -> None:
        self.tstops = np.asarray(tstops, dtype=np.float64).reshape(-1)
        if np.any(np.diff(self.tstops) <= 0.0):
            raise ValueError("Pulse times must be strictly increasing.")
        if not callable(ops):
            ops = [np.asarray(op, dtype=np.complex128) for op in ops]
            if len(ops) != len(self.tstops):
                raise ValueError(
                    f"Got {len(ops)} pulse operators for {len(self.tstops)} pulse times."
                )
        self.ops = ops
        self.state = 0

    def __len__(self) -> int:
        return len(self.tstops)

    def pulse(self, i: int) -> np.ndarray:
        if callable(self.ops):
            return np.asarray(self.ops(i), dtype=np.complex128)
        return self.ops[i]

    def reset(self) -> None:
        self.state = 0


class InstDEPulseControl(InstPulseControl):
    """
    Instantaneous pulses whose progress lives in the state's `AuxDataArray.state`.

    Requires a `de_array_constructor` producing `AuxDataArray` states; the
    counter restarts with the initial state built for every solve.
    """


class ControlSet:
    """Composite of several controls acting on the same evolution."""

    def __init__(self, *controls: Any) -> None:
        self.controls: List[Any] = [c for c in controls if c is not None]

    def __iter__(self):
        return iter(self.controls)

    def __len__(self) -> int:
        return len(self.controls)

    @property
    def tstops(self) -> np.ndarray:
        return control_tstops(self)

    def reset(self) -> None:
        for c in self.controls:
            c.reset()


def control_tstops(control: Any) -> np.ndarray:
    """Dimensionless times at which `control` must be stepped to exactly."""
    if control is None:
        return np.empty(0, dtype=np.float64)
    if isinstance(control, ControlSet):
        parts = [control_tstops(c) for c in control.controls]
        if not parts:
            return np.empty(0, dtype=np.float64)
        return np.unique(np.concatenate(parts))
    return np.asarray(getattr(control, "tstops", ()), dtype=np.float64).reshape(-1)


def reset_control(control: Any) -> None:
    """Reset the progress pointer of `control` (no-op for no control)."""
    if control is not None and hasattr(control, "reset"):
        control.reset()


# =============================================================================
# Pulse transforms
# =============================================================================

def pulse_on_state(c: np.ndarray, pulse: np.ndarray) -> None:
    """Apply `pulse` to a state vector in place: c ← P c."""
    c[:] = pulse @ c


def pulse_on_density(rho: np.ndarray, pulse: np.ndarray) -> None:
    """Apply `pulse` to a density matrix in place: ρ ← P ρ P†.

    A vectorized (column-stacked) density matrix is accepted as well.
    """
    if rho.ndim == 1:
        m = vec2mat(rho)
        rho[:] = mat2vec(pulse @ m @ pulse.conj().T)
    else:
        rho[:] = pulse @ rho @ pulse.conj().T


# =============================================================================
# Callback builder
# =============================================================================

def _callback_times(control: InstPulseControl, tf: float) -> np.ndarray:
    if isinstance(tf, UnitTime):
        return float(tf) * control.tstops
    return control.tstops


def build_callback(
    control: InstPulseControl,
    pulse_func: Callable[[np.ndarray, np.ndarray], None],
    tf: float = 1.0,
    slot: Optional[int] = None,
) -> PresetTimeCallback:
    """
    Build the callback applying the pulses of `control`.

    At every pulse time the current pulse is applied to the integrator state
    with `pulse_func(u, pulse)` and the progress pointer is advanced. For an
    `InstDEPulseControl` the pointer is `integrator.aux.state`, or its entry
    `slot` when the state holds one counter per DE member of a `ControlSet`
    (see `init_aux_state`).
    """
    if isinstance(control, InstDEPulseControl):

        def affect(integrator: Integrator) -> None:
            counters = integrator.aux.state
            i = counters if slot is None else counters[slot]
            if i >= len(control):
                warnings.warn(
                    f"Pulse index {i} exceeds the {len(control)} scheduled pulses; skipping.",
                    RuntimeWarning,
                    stacklevel=2,
                )
                return
            pulse_func(integrator.u, control.pulse(i))
            if slot is None:
                integrator.aux.state = i + 1
            else:
                integrator.aux.state = counters[:slot] + (i + 1,) + counters[slot + 1:]

    else:

        def affect(integrator: Integrator) -> None:
            i = control.state
            if i >= len(control):
                warnings.warn(
                    f"Pulse index {i} exceeds the {len(control)} scheduled pulses; skipping.",
                    RuntimeWarning,
                    stacklevel=2,
                )
                return
            pulse_func(integrator.u, control.pulse(i))
            control.state = i + 1

    return PresetTimeCallback(_callback_times(control, tf), affect)


def build_control_set_callback(
    control: ControlSet,
    pulse_func: Callable[[np.ndarray, np.ndarray], None],
    tf: float = 1.0,
) -> Optional[CallbackSet]:
    """
    Combine the pulse callbacks of the members of a `ControlSet`.

    The k-th `InstDEPulseControl` member advances entry k of the counter tuple
    installed by `init_aux_state`.
    """
    callbacks = []
    slot = 0
    for c in control.controls:
        if isinstance(c, InstDEPulseControl):
            callbacks.append(build_callback(c, pulse_func, tf, slot=slot))
            slot += 1
        elif isinstance(c, InstPulseControl):
            callbacks.append(build_callback(c, pulse_func, tf))
    return CallbackSet(*callbacks) if callbacks else None


# =============================================================================
# Auxiliary data validation
# =============================================================================

def _uses_aux_data(control: Any) -> bool:
    if isinstance(control, ControlSet):
        return any(_uses_aux_data(c) for c in control.controls)
    return isinstance(control, InstDEPulseControl)


def init_aux_state(u0: Any, control: Any) -> None:
    """
    Give every DE member of a `ControlSet` its own pulse counter.

    The state of `u0` becomes a tuple of zeros, one entry per
    `InstDEPulseControl` in the set. A single DE control keeps the integer
    counter.
    """
    if not isinstance(u0, AuxDataArray) or not isinstance(control, ControlSet):
        return
    n_de = sum(isinstance(c, InstDEPulseControl) for c in control.controls)
    if n_de:
        u0.state = (0,) * n_de


def check_de_data_error(
    u0: Any,
    control: Any,
    de_array_constructor: Optional[Callable[[np.ndarray], Any]],
) -> None:
    """
    Reject incompatible auxiliary-data / control combinations before integration.

    Raises
    ------
    ValueError
        If an auxiliary-data state is combined with a control that does not
        use it, or a DE pulse control is used without one.
    """
    has_aux = isinstance(u0, AuxDataArray)
    if de_array_constructor is not None and not has_aux:
        raise ValueError("de_array_constructor must return an AuxDataArray.")
    needs_aux = _uses_aux_data(control)
    if has_aux and not needs_aux:
        raise ValueError(
            "An auxiliary data array is only supported with DE pulse controls "
            f"(InstDEPulseControl); got control of type {type(control).__name__}."
        )
    if needs_aux and not has_aux:
        raise ValueError(
            "InstDEPulseControl requires an auxiliary data array: "
            "pass de_array_constructor (e.g. AuxDataArray)."
        )
