from __future__ import annotations

import argparse
import logging
import os

import numpy as np

from ..core.projector import SparseMatrixProjector2D
from ..data.io_hdf5 import load_sparse_geometry
from ..recon.sirt import backprojection, sirt
from ..utils.config import load_config
from ..utils.logging import log_jax_env, setup_logging


def build_projector(path: str) -> SparseMatrixProjector2D:
    """Projector from a saved geometry (.h5/.hdf5/.nxs) or a JSON/YAML config."""
    if path.endswith((".h5", ".hdf5", ".nxs")):
        proj_geom, vol_geom = load_sparse_geometry(path)
        return SparseMatrixProjector2D(proj_geom, vol_geom)
    return SparseMatrixProjector2D.from_config(load_config(path))


def main() -> None:
    p = argparse.ArgumentParser(description="Reconstruct a 2D slice from a sinogram with a sparse-matrix projector")
    p.add_argument("--geometry", required=True, help="Geometry file (.h5/.hdf5/.nxs) or projector config (.json/.yaml)")
    p.add_argument("--sino", required=True, help="Sinogram .npy of shape (n_projections, n_detectors)")
    p.add_argument("--algo", choices=["sirt", "bp"], default="sirt")
    p.add_argument("--iters", type=int, default=100, help="SIRT iterations")
    p.add_argument("--min-constraint", type=float, default=None)
    p.add_argument("--max-constraint", type=float, default=None)
    p.add_argument("--rel-tol", type=float, default=None, help="Early-stop tolerance on the SIRT residual")
    p.add_argument("--out", required=True, help="Output .npy for the reconstructed (n_rows, n_cols) image")
    p.add_argument("--progress", action="store_true", help="Show progress bars")
    p.add_argument("--log-level", default="INFO")
    args = p.parse_args()

    setup_logging(args.log_level); log_jax_env()
    if args.progress:
        os.environ["TOMOSPARSE_PROGRESS"] = "1"

    projector = build_projector(args.geometry)
    logging.info("Projector: %r", projector)
    sino = np.load(args.sino)

    if args.algo == "sirt":
        x, info = sirt(
            projector,
            sino,
            iters=args.iters,
            min_constraint=args.min_constraint,
            max_constraint=args.max_constraint,
            rel_tol=args.rel_tol,
        )
        if info["loss"]:
            logging.info("SIRT loss: first=%.4g last=%.4g", info["loss"][0], info["loss"][-1])
    else:
        x = backprojection(projector, sino)

    parent = os.path.dirname(args.out)
    if parent:
        os.makedirs(parent, exist_ok=True)
    np.save(args.out, np.asarray(x, dtype=np.float32))
    logging.info("Saved reconstruction to %s", args.out)


if __name__ == "__main__":  # pragma: no cover
    main()
