"""tomosparse main package.

2D projector driven by an explicit sparse ray/pixel weight matrix, with
policy-based traversal, JAX operators, SIRT reconstruction and HDF5 IO.
Install from the repo root and use via `tomosparse.*` and `python -m tomosparse.cli.*`.
"""

__all__ = [
    "__version__",
]

__version__ = "0.1.0"
