from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from CONTROL import control_tstops


@dataclass
class Annealing:
    """
    Physical setup of one annealing process.

    Parameters
    ----------
    H:
        Hamiltonian provider (e.g. `DenseHamiltonian`).
    u0:
        Initial state vector or density matrix.
    coupling:
        System operators coupled to `bath` (e.g. `ConstantCouplings`).
    bath:
        Bath exposing `correlation(tau)`.
    interactions:
        `InteractionSet` used instead of `coupling`/`bath` when given.
    control:
        None, `InstPulseControl`, `InstDEPulseControl` or `ControlSet`.
    sspan:
        Dimensionless annealing interval.
    tstops:
        Extra dimensionless stop-times. The pulse times of `control` are merged in.
    """

    H: Any
    u0: Any
    coupling: Any = None
    bath: Any = None
    interactions: Any = None
    control: Any = None
    sspan: Tuple[float, float] = (0.0, 1.0)
    tstops: Sequence[float] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.sspan = (float(self.sspan[0]), float(self.sspan[1]))
        pulses = control_tstops(self.control)
        # a pulse outside sspan never fires and would shift every later pulse
        if np.any(pulses < self.sspan[0]) or np.any(pulses > self.sspan[1]):
            raise ValueError(
                f"Control pulse times must lie within sspan={self.sspan}; got {pulses}."
            )
        own = np.asarray(self.tstops, dtype=np.float64).reshape(-1)
        self.tstops = np.unique(np.concatenate([own, pulses]))


@dataclass
class ODEParams:
    """Parameters handed to every right-hand-side evaluation."""

    H: Any
    tf: float
    opensys: Optional[Any] = None
    control: Optional[Any] = None
