from typing import Optional, Sequence

import matplotlib as mpl
import matplotlib.pyplot as plt
import numpy as np

from INTEGRATOR import ODESolution
from UTILITIES import vec2mat

# Keep math parsing enabled for labels like r"$|0\rangle$", without forcing TeX.
mpl.rcParams["text.parse_math"] = True
mpl.rcParams["text.usetex"] = False


def populations(sol: ODESolution) -> np.ndarray:
    """
    Computational-basis populations of every saved state.

    Returns
    -------
    pops:
        Real array of shape (K, n): |c_i|^2 for state vectors, ρ_ii for density
        matrices (square or column-stacked).
    """
    # a flat state is a vectorized density matrix only for open-system solves
    density = getattr(sol.prob.p, "opensys", None) is not None
    rows = []
    for u in sol.u:
        u = np.asarray(u)
        if u.ndim == 2:
            rows.append(np.real(np.diag(u)))
        elif density:
            rows.append(np.real(np.diag(vec2mat(u))))
        else:
            rows.append(np.abs(u) ** 2)
    return np.asarray(rows, dtype=np.float64)


def plot_populations(
    sol: ODESolution,
    labels: Optional[Sequence[str]] = None,
    ax=None,
    title: Optional[str] = None,
):
    """
    Plot the basis populations of a trajectory against the integrator time.

    Parameters
    ----------
    sol:
        Trajectory from `solve_schrodinger` or `solve_redfield`.
    labels:
        Optional legend labels, one per basis state.
    ax:
        Matplotlib axis; a new figure is created when None.
    title:
        Optional axis title.

    Returns
    -------
    fig:
        The Matplotlib figure holding the axis.
    """
    pops = populations(sol)
    if ax is None:
        fig, ax = plt.subplots(figsize=(6.0, 4.0))
    else:
        fig = ax.figure

    n = pops.shape[1]
    if labels is None:
        width = max(1, int(np.ceil(np.log2(n)))) if n > 1 else 1
        labels = [rf"$|{format(i, f'0{width}b')}\rangle$" for i in range(n)]
    if len(labels) != n:
        raise ValueError(f"Expected {n} labels; got {len(labels)}.")

    for i in range(n):
        ax.plot(sol.t, pops[:, i], label=labels[i])
    ax.set_xlabel("t")
    ax.set_ylabel("population")
    ax.set_ylim(-0.02, 1.02)
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best", fontsize=8)
    if title is not None:
        ax.set_title(title)
    return fig
