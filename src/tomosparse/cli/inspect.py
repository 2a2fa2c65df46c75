"""CLI: validate a sparse-matrix geometry and summarise its weights.

Usage examples:

  python -m tomosparse.cli.inspect --geometry data/geom.h5
  python -m tomosparse.cli.inspect --geometry projector.json --pixel 10 12
"""

from __future__ import annotations

import argparse
import sys

import numpy as np

from ..core.errors import ProjectorError
from ..utils.logging import setup_logging
from .recon import build_projector


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Validate a sparse-matrix projector geometry")
    p.add_argument("--geometry", required=True, help="Geometry file (.h5/.hdf5/.nxs) or projector config (.json/.yaml)")
    p.add_argument("--pixel", type=int, nargs=2, metavar=("ROW", "COL"), default=None,
                   help="Also list the rays that see this pixel")
    args = p.parse_args(argv)

    setup_logging("WARNING")
    try:
        projector = build_projector(args.geometry)
    except ProjectorError as exc:
        print(f"INVALID: {type(exc).__name__}: {exc}")
        return 1

    pg, vg = projector.projection_geometry, projector.volume_geometry
    counts = np.array([projector.weight_count(i) for i in range(pg.n_projections)])
    print(f"OK: {projector!r}")
    print(f"rays: {pg.n_projections} x {pg.n_detectors}, grid: {vg.n_rows} x {vg.n_cols}")
    print(f"weights per projection: min={counts.min()} max={counts.max()} total={counts.sum()}")
    lengths = projector.matrix.row_lengths()
    print(f"empty rays: {int(np.count_nonzero(lengths == 0))}, longest ray: {int(lengths.max())}")
    if args.pixel is not None:
        row, col = args.pixel
        try:
            hits = projector.detectors_affected_by(row, col)
        except ProjectorError as exc:
            print(f"pixel ({row}, {col}): {exc}")
            return 1
        print(f"pixel ({row}, {col}) seen by {len(hits)} rays: " + ", ".join(f"({h.projection},{h.detector})" for h in hits))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
