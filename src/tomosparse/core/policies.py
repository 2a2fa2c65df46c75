"""Traversal policies for :class:`~tomosparse.core.projector.SparseMatrixProjector2D`.

Each policy accumulates into flat numpy arrays: volumes have ``n_pixels``
entries (row-major), sinograms ``n_projections * n_detectors`` entries indexed by
the ray index. Arrays of other shapes are accepted as long as they are
C-contiguous; they are written through a flat view.
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

import numpy as np

from .projector import RayContext


def _flat(a: np.ndarray, name: str) -> np.ndarray:
    if not isinstance(a, np.ndarray):
        raise TypeError(f"{name} must be a numpy array, got {type(a).__name__}")
    flat = a.reshape(-1)
    if not np.shares_memory(flat, a):
        raise ValueError(f"{name} must be C-contiguous so it can be updated in place")
    return flat


class ForwardProjectionPolicy:
    """sinogram[ray] += scale * weight * volume[pixel]."""

    def __init__(self, volume: np.ndarray, sinogram: np.ndarray, scale: float = 1.0):
        self.volume = _flat(volume, "volume")
        self.sinogram = _flat(sinogram, "sinogram")
        self.scale = float(scale)
        self._acc = 0.0

    def prior(self, ray: RayContext) -> bool:
        self._acc = 0.0
        return True

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        self._acc += weight * float(self.volume[pixel_index])

    def posterior(self, ray: RayContext) -> None:
        self.sinogram[ray.index] += self.scale * self._acc


class BackProjectionPolicy:
    """volume[pixel] += scale * weight * sinogram[ray]."""

    def __init__(self, sinogram: np.ndarray, volume: np.ndarray, scale: float = 1.0):
        self.sinogram = _flat(sinogram, "sinogram")
        self.volume = _flat(volume, "volume")
        self.scale = float(scale)
        self._value = 0.0

    def prior(self, ray: RayContext) -> bool:
        self._value = self.scale * float(self.sinogram[ray.index])
        # Zero-valued rays contribute nothing
        return self._value != 0.0

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        self.volume[pixel_index] += weight * self._value

    def posterior(self, ray: RayContext) -> None:
        pass


class TotalRayLengthPolicy:
    """Row sums: sinogram[ray] += weight."""

    def __init__(self, sinogram: np.ndarray):
        self.sinogram = _flat(sinogram, "sinogram")

    def prior(self, ray: RayContext) -> bool:
        return True

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        self.sinogram[ray.index] += weight

    def posterior(self, ray: RayContext) -> None:
        pass


class TotalPixelWeightPolicy:
    """Column sums: volume[pixel] += weight."""

    def __init__(self, volume: np.ndarray):
        self.volume = _flat(volume, "volume")

    def prior(self, ray: RayContext) -> bool:
        return True

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        self.volume[pixel_index] += weight

    def posterior(self, ray: RayContext) -> None:
        pass


class RayMaskPolicy:
    """Forward to ``inner`` only for rays whose mask entry is nonzero."""

    def __init__(self, mask: np.ndarray, inner):
        self.mask = np.asarray(mask).reshape(-1)
        self.inner = inner

    def prior(self, ray: RayContext) -> bool:
        if not self.mask[ray.index]:
            return False
        return self.inner.prior(ray) is not False

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        self.inner.add_weight(ray, pixel_index, weight)

    def posterior(self, ray: RayContext) -> None:
        self.inner.posterior(ray)


class CombinePolicy:
    """Drive several policies in one traversal.

    A ray is visited if at least one child accepts it in ``prior``; weights and
    the posterior are then delivered only to the children that accepted.
    """

    def __init__(self, policies: Iterable):
        self.policies = list(policies)
        self._active: List = []

    def prior(self, ray: RayContext) -> bool:
        self._active = [p for p in self.policies if p.prior(ray) is not False]
        return bool(self._active)

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        for p in self._active:
            p.add_weight(ray, pixel_index, weight)

    def posterior(self, ray: RayContext) -> None:
        for p in self._active:
            p.posterior(ray)


class StorePixelWeightsPolicy:
    """Record every visited (ray, pixel, weight) and the prior/posterior call order."""

    def __init__(self):
        self.weights: List[Tuple[int, int, float]] = []
        self.calls: List[Tuple] = []

    def prior(self, ray: RayContext) -> bool:
        self.calls.append(("prior", ray))
        return True

    def add_weight(self, ray: RayContext, pixel_index: int, weight: float) -> None:
        self.weights.append((ray.index, pixel_index, weight))
        self.calls.append(("add_weight", ray, pixel_index, weight))

    def posterior(self, ray: RayContext) -> None:
        self.calls.append(("posterior", ray))
