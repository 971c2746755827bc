from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Tuple

import numpy as np

from INTEGRATOR import ODESolution


def _sanitize_filename_token(s: str) -> str:
    """Restrict filename tokens to safe characters."""
    return re.sub(r"[^A-Za-z0-9_.-]+", "", s)


def trajectory_save(
    sol: ODESolution,
    meta: Dict[str, Any],
    out_dir: Path | str = Path("./ANNEALING_data") / "Raw_data",
    compressed: bool = False,
) -> Path:
    """
    Save a solver trajectory to a single NPZ archive.

    - Stores: `times`, `states` (stacked, shape (K, ...)), `status` and `meta_json`.
    - The filename encodes only the identity fields (solver, tf, name).
      All other configuration is persisted inside `meta_json`.
    - Never overwrites: if the base name already exists, suffixes `-(1)`, `-(2)`, ...
      are appended.

    Parameters
    ----------
    sol:
        Trajectory returned by `solve_schrodinger` / `solve_redfield`.
    meta:
        Metadata dictionary. Must contain at least "solver" and "tf"; the key
        "name" is used for filename generation if present.
    out_dir:
        Output directory (created if missing).
    compressed:
        If True, uses `np.savez_compressed`; otherwise uses `np.savez`.

    Returns
    -------
    Path
        Path to the saved `.npz` file.

    Raises
    ------
    ValueError
        If the trajectory is empty.
    KeyError
        If required fields are missing from `meta`.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    solver = str(meta["solver"])
    tf = float(meta["tf"])
    name = meta.get("name", "")

    base_name = (
        f"{_sanitize_filename_token(solver)}_tf{tf:.6g}_"
        f"{_sanitize_filename_token(str(name))}"
    ).rstrip("_")

    if len(sol) == 0:
        raise ValueError("Cannot save an empty trajectory.")
    times = np.asarray(sol.t, dtype=np.float64).reshape(-1)
    states = np.ascontiguousarray(np.stack(sol.u, axis=0))

    # ---- Unique output path (no overwrite) ----
    ext = ".npz"
    path = out_dir / f"{base_name}{ext}"
    if path.exists():
        k = 1
        while (out_dir / f"{base_name}-({k}){ext}").exists():
            k += 1
        path = out_dir / f"{base_name}-({k}){ext}"

    meta_json = json.dumps(dict(meta), ensure_ascii=False)

    save_kwargs = dict(
        times=times,
        states=states,
        status=np.array(sol.status),
        meta_json=np.array(meta_json),
    )
    if compressed:
        np.savez_compressed(path, **save_kwargs)
    else:
        np.savez(path, **save_kwargs)

    print(f"[trajectory_save] Saved ({'compressed' if compressed else 'raw'}) -> {path}")
    return path


def trajectory_load(path: Path | str) -> Tuple[np.ndarray, np.ndarray, Dict[str, Any]]:
    """Load `(times, states, meta)` from an archive written by `trajectory_save`."""
    with np.load(Path(path), allow_pickle=False) as data:
        times = data["times"]
        states = data["states"]
        meta = json.loads(str(data["meta_json"]))
    return times, states, meta
