from __future__ import annotations

import logging
import os
from typing import Iterable, Iterator, Optional

from tqdm import tqdm


def setup_logging(level: str = "INFO") -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=lvl, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")


def log_jax_env() -> None:
    import jax

    logging.info("JAX %s on %s: %s", jax.__version__, jax.default_backend(), jax.devices())


def progress_iter(iterable: Iterable, *, total: Optional[int] = None, desc: str = "") -> Iterator:
    """Wrap an iteration loop in a tqdm bar when ``TOMOSPARSE_PROGRESS`` is set.

    The recon CLI sets the variable for ``--progress``.
    """
    if os.environ.get("TOMOSPARSE_PROGRESS", "0").lower() not in ("1", "true", "yes", "on"):
        return iter(iterable)
    return iter(tqdm(iterable, total=total, desc=desc, dynamic_ncols=True, leave=False))


def format_duration(seconds: float) -> str:
    """Wall-clock time as ``850ms``, ``12.3s`` or ``4m05.0s``."""
    seconds = max(float(seconds), 0.0)
    if seconds < 1.0:
        return f"{seconds * 1e3:.0f}ms"
    if seconds < 60.0:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(seconds, 60.0)
    return f"{int(minutes)}m{rest:04.1f}s"
