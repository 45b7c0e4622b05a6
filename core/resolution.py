"""
Spectral resolution of the plane layer: Chebyshev modes in z, Fourier indices in (x, y).

The backend only reads from this object:
- dimensions(space, eigs) -> per-direction mode counts at an index tuple,
- wavenumbers(eigs)       -> physical horizontal wavenumbers (kx, ky),
- index_tuples()          -> every (k1, k2) for which a matrix is built.

Index convention: k1 runs over 0..n_k1-1 (real-to-complex direction), k2 over the
FFT ordering 0..n_k2/2, -(n_k2-1)/2..-1 of the complex direction.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from core.types import CaseResolution, IntArray, Space

# 3/2-rule padding used for the physical grid
DEALIAS_FACTOR = 1.5


@dataclass(frozen=True, slots=True)
class Resolution:
    nz: int
    n_k1: int
    n_k2: int
    box_scale: Tuple[float, float] = (1.0, 1.0)

    def __post_init__(self) -> None:
        if self.nz <= 0 or self.n_k1 <= 0 or self.n_k2 <= 0:
            raise ValueError(f"Resolution must be positive, got ({self.nz}, {self.n_k1}, {self.n_k2})")

    @classmethod
    def from_config(cls, res_cfg: CaseResolution) -> "Resolution":
        return cls(
            nz=int(res_cfg.nz),
            n_k1=int(res_cfg.n_k1),
            n_k2=int(res_cfg.n_k2),
            box_scale=(float(res_cfg.box_scale[0]), float(res_cfg.box_scale[1])),
        )

    def _check_eigs(self, eigs: Sequence[int]) -> Tuple[int, int]:
        if len(eigs) != 2:
            raise ValueError(f"Index tuple must have two entries (k1, k2), got {tuple(eigs)}")
        k1, k2 = int(eigs[0]), int(eigs[1])
        if not 0 <= k1 < self.n_k1:
            raise IndexError(f"k1 index {k1} out of range [0,{self.n_k1})")
        if k2 not in self._k2_indices():
            raise IndexError(f"k2 index {k2} is not a retained mode of n_k2={self.n_k2}")
        return k1, k2

    def _k2_indices(self) -> List[int]:
        return [int(k) for k in np.fft.fftfreq(self.n_k2, d=1.0 / self.n_k2)]

    def dimensions(self, space: Space, eigs: Sequence[int]) -> IntArray:
        """Mode counts (z, k1, k2) at the given index tuple."""
        self._check_eigs(eigs)
        if space == Space.SPECTRAL:
            return np.array([self.nz, self.n_k1, self.n_k2], dtype=np.int64)
        if space == Space.PHYSICAL:
            return np.array(
                [
                    int(math.ceil(DEALIAS_FACTOR * self.nz)),
                    int(math.ceil(DEALIAS_FACTOR * 2 * self.n_k1)),
                    int(math.ceil(DEALIAS_FACTOR * self.n_k2)),
                ],
                dtype=np.int64,
            )
        raise ValueError(f"Unknown space '{space}'")

    def wavenumbers(self, eigs: Sequence[int]) -> Tuple[float, float]:
        k1, k2 = self._check_eigs(eigs)
        return self.box_scale[0] * k1, self.box_scale[1] * k2

    def index_tuples(self) -> List[Tuple[int, int]]:
        return [(k1, k2) for k1 in range(self.n_k1) for k2 in self._k2_indices()]
