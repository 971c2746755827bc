"""
Batch runner for two-level annealing simulations.

Key features
------------
- Annealing schedules defined once as mathematical functions: A(s), B(s).
- Transverse-field two-level Hamiltonian H(s) = -A(s) σx / 2 - B(s) σz / 2.
- Closed-system (Schrödinger) or open-system (Redfield) runs; the Redfield runs
  precompute the closed-system unitary with `solve_unitary`.
- Batch generation via `itertools.product`.

Notes
-----
This module is intentionally "thin": it wires together the solver drivers,
optional data persistence and the population plots.
"""

from __future__ import annotations

import itertools as it
from time import perf_counter
from typing import Any, Callable, Dict, Iterable, Tuple

import numpy as np

from ANNEALING import Annealing
from HAMILTONIAN import DenseHamiltonian
from OPEN_SYSTEM import ConstantCouplings, CustomBath
from PLOTMAKER import plot_populations
from REDFIELD_SOLVER import solve_redfield
from SAVES import trajectory_save
from SCHRODINGER_SOLVER import solve_schrodinger
from UNITARY_SOLVER import solve_unitary

SIGMA_X = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.complex128)
SIGMA_Z = np.array([[1.0, 0.0], [0.0, -1.0]], dtype=np.complex128)


# ======================================================================
# Global schedules and models
# ======================================================================


def build_schedule_callables() -> Tuple[Callable[[float], float], Callable[[float], float]]:
    """Linear annealing schedules A(s) = 1 - s and B(s) = s."""

    def a_fun(s: float) -> float:
        return 1.0 - s

    def b_fun(s: float) -> float:
        return s

    return a_fun, b_fun


def build_hamiltonian() -> DenseHamiltonian:
    a_fun, b_fun = build_schedule_callables()
    return DenseHamiltonian([a_fun, b_fun], [-0.5 * SIGMA_X, -0.5 * SIGMA_Z], unit="hbar")


def build_bath(eta: float, gamma: float) -> CustomBath:
    """Exponentially decaying correlation C(τ) = η γ exp(-γ |τ|)."""

    def correlation(tau: float) -> complex:
        return eta * gamma * np.exp(-gamma * abs(tau))

    return CustomBath(correlation)


def build_initial_state() -> np.ndarray:
    """Ground state of -σx / 2, i.e. |+⟩."""
    return np.array([1.0, 1.0], dtype=np.complex128) / np.sqrt(2.0)


# ======================================================================
# Single run
# ======================================================================


def run_single_simulation(
    *,
    solver: str,
    tf: float,
    eta: float = 1e-3,
    gamma: float = 5.0,
    vectorize: bool = False,
    save: bool = False,
    plot: bool = False,
) -> Dict[str, Any]:
    """
    Run one annealing simulation and return its final populations.

    Parameters
    ----------
    solver:
        "schrodinger" or "redfield".
    tf:
        Total annealing time.
    eta, gamma:
        Coupling strength and inverse correlation time of the bath (Redfield only).
    vectorize:
        Integrate the vectorized density matrix (Redfield only).
    save:
        If True, persist the trajectory via `trajectory_save`.
    plot:
        If True, return the population figure under the key "figure".
    """
    H = build_hamiltonian()
    u0 = build_initial_state()
    meta: Dict[str, Any] = {
        "solver": solver,
        "tf": float(tf),
        "name": "two_level",
        "eta": eta,
        "gamma": gamma,
        "vectorize": vectorize,
    }

    t_start = perf_counter()
    if solver == "schrodinger":
        annealing = Annealing(H, u0)
        sol = solve_schrodinger(annealing, tf, rtol=1e-6, atol=1e-8)
        final = np.abs(sol.u[-1]) ** 2
    elif solver == "redfield":
        annealing = Annealing(
            H,
            u0,
            coupling=ConstantCouplings([SIGMA_Z]),
            bath=build_bath(eta, gamma),
        )
        U = solve_unitary(annealing, tf, rtol=1e-8, atol=1e-8)
        sol = solve_redfield(annealing, tf, U, vectorize=vectorize, rtol=1e-6, atol=1e-8)
        rho = sol.u[-1]
        rho = rho.reshape(2, 2, order="F") if rho.ndim == 1 else rho
        final = np.real(np.diag(rho))
    else:
        raise ValueError("solver must be 'schrodinger' or 'redfield'.")
    elapsed = perf_counter() - t_start

    print(f"[{solver}] tf={tf:g}: final populations={np.round(final, 6)} ({elapsed:.3f} s)")

    if save:
        trajectory_save(sol, meta)

    out: Dict[str, Any] = {"meta": meta, "populations": final, "elapsed": elapsed}
    if plot:
        out["figure"] = plot_populations(sol, title=f"{solver}, tf={tf:g}")
    return out


# ======================================================================
# Batch runner
# ======================================================================


def run_batch_simulations(
    *,
    solver_list: Iterable[str],
    tf_list: Iterable[float],
    vectorize_list: Iterable[bool] = (False,),
    save: bool = False,
) -> Dict[Tuple[str, float, bool], Dict[str, Any]]:
    """Run the Cartesian product of solvers, total times and vectorization flags."""
    results: Dict[Tuple[str, float, bool], Dict[str, Any]] = {}
    for solver, tf, vectorize in it.product(solver_list, tf_list, vectorize_list):
        if solver == "schrodinger" and vectorize:
            continue
        print(f"\n=== Simulation: solver={solver}, tf={tf}, vectorize={vectorize} ===")
        results[(solver, float(tf), bool(vectorize))] = run_single_simulation(
            solver=solver,
            tf=float(tf),
            vectorize=bool(vectorize),
            save=save,
        )
    return results


if __name__ == "__main__":
    # Default batch configuration (edit as needed).
    solver_list = ["schrodinger", "redfield"]
    tf_list = [5.0, 20.0]
    vectorize_list = [False]
    save = False

    run_batch_simulations(
        solver_list=solver_list,
        tf_list=tf_list,
        vectorize_list=vectorize_list,
        save=save,
    )
