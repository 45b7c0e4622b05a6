"""
Coupled-system layout and equation coupling.

Principles:
- Block order of a coupled matrix follows the order of the coupled field list.
- Row/column offsets of a field block must come from CoupledLayout helpers (no hand-rolled math).
- A Coupling maps the framework's matrix index to the horizontal index tuple it is built at;
  every field of the coupling shares that index tuple.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, Sequence, Tuple

import logging

from core.resolution import Resolution
from core.types import FieldId

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BlockEntry:
    """One field block of the coupled system."""

    fid: FieldId
    start: int
    size: int


@dataclass(slots=True)
class CoupledLayout:
    """Layout of a coupled matrix: field -> contiguous slice of rows (or columns)."""

    size: int
    entries: List[BlockEntry]
    block_slices: Dict[FieldId, slice] = field(init=False)

    def __post_init__(self) -> None:
        self.block_slices = self._build_block_slices_from_entries()

    def _build_block_slices_from_entries(self) -> Dict[FieldId, slice]:
        """
        Build contiguous slices for each entry.
        Requires: entries tile [0, size) without gaps or overlap.
        """
        out: Dict[FieldId, slice] = {}
        cursor = 0
        for entry in sorted(self.entries, key=lambda e: e.start):
            if entry.fid in out:
                raise RuntimeError(f"Layout block '{entry.fid}' appears twice.")
            if entry.start != cursor or entry.size < 0:
                raise RuntimeError(
                    f"Layout block '{entry.fid}' is not contiguous: start={entry.start}, "
                    f"expected={cursor}, size={entry.size}"
                )
            out[entry.fid] = slice(entry.start, entry.start + entry.size)
            cursor += entry.size
        if cursor != self.size:
            raise RuntimeError(f"Layout blocks cover {cursor} entries, expected size={self.size}")
        return out

    def has_block(self, fid: FieldId) -> bool:
        return fid in self.block_slices

    def require_block(self, fid: FieldId) -> slice:
        if fid not in self.block_slices:
            raise ValueError(f"Field block '{fid}' not present in layout.")
        return self.block_slices[fid]

    def block_slice(self, fid: FieldId) -> slice:
        if fid not in self.block_slices:
            raise KeyError(f"Unknown block '{fid}'. Available: {[str(f) for f in self.block_slices]}")
        return self.block_slices[fid]

    def block_size(self, fid: FieldId) -> int:
        sl = self.block_slice(fid)
        return int(sl.stop - sl.start)

    def block_range(self, fid: FieldId) -> Tuple[int, int]:
        """Return (start, end_exclusive) for a field block."""
        sl = self.block_slice(fid)
        return int(sl.start), int(sl.stop)

    def iter_blocks(self) -> Iterator[Tuple[FieldId, slice]]:
        """Iterate field blocks in layout order (by slice.start)."""
        items = list(self.block_slices.items())
        items.sort(key=lambda kv: int(kv[1].start))
        for fid, sl in items:
            yield fid, sl

    @property
    def fields(self) -> List[FieldId]:
        return [fid for fid, _ in self.iter_blocks()]


def build_coupled_layout(fields: Sequence[FieldId], sizes: Mapping[FieldId, int]) -> CoupledLayout:
    """Stack field blocks in the given order; sizes[fid] is the block extent."""
    entries: List[BlockEntry] = []
    cursor = 0
    for fid in fields:
        if fid not in sizes:
            raise ValueError(f"No block size given for field '{fid}'.")
        n = int(sizes[fid])
        entries.append(BlockEntry(fid=fid, start=cursor, size=n))
        cursor += n
    return CoupledLayout(size=cursor, entries=entries)


@dataclass(frozen=True, slots=True)
class Coupling:
    """Fields solved together and the index tuple of each matrix index."""

    fields: Tuple[FieldId, ...]
    index_tuples: Tuple[Tuple[int, int], ...]

    def __post_init__(self) -> None:
        if not self.fields:
            raise ValueError("Coupling requires at least one field.")
        if len(set(self.fields)) != len(self.fields):
            raise ValueError(f"Coupling lists a field twice: {[str(f) for f in self.fields]}")

    @property
    def n_matrices(self) -> int:
        return len(self.index_tuples)

    def get_indexes(self, res: Resolution, matrix_idx: int) -> Tuple[int, int]:
        """Index tuple (k1, k2) of matrix `matrix_idx`."""
        if not 0 <= matrix_idx < self.n_matrices:
            raise IndexError(f"Matrix index {matrix_idx} out of range [0,{self.n_matrices})")
        eigs = self.index_tuples[matrix_idx]
        # validates the tuple against the resolution
        res.wavenumbers(eigs)
        return eigs

    def __iter__(self) -> Iterator[Tuple[int, Tuple[int, int]]]:
        return iter(enumerate(self.index_tuples))

    def __len__(self) -> int:
        return self.n_matrices


def build_coupling(fields: Sequence[FieldId], res: Resolution) -> Coupling:
    """Coupling over every horizontal index tuple retained by `res`."""
    coupling = Coupling(fields=tuple(fields), index_tuples=tuple(res.index_tuples()))
    logger.debug(
        "Coupling fields=%s n_matrices=%d", [str(f) for f in coupling.fields], coupling.n_matrices
    )
    return coupling
