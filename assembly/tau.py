"""
Tau method: boundary rows added to diagonal blocks.

Contract:
- Rows are *added* to the leading rows of the block, which the quasi-inverse operators leave
  zero; existing entries are never overwritten.
- Only diagonal blocks (row field == column field) receive rows; off-diagonal blocks are
  returned unchanged.
- Row content and order come from physics.boundary_conditions.TAU_TABLE.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from core.chebyshev import BoundaryOperator
from core.params import as_bc_map, as_nd_map, domain_bounds
from core.resolution import Resolution
from core.types import BackendOptions, DecoupledZSparse, FieldId
from assembly.block_size import block_size
from physics.boundary_conditions import formulation_for, tau_rows

logger = logging.getLogger(__name__)


def boundary_operator(
    fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    bcs: Mapping,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
    is_split_operator: bool = False,
) -> BoundaryOperator:
    """Collect the Tau rows of `fid` at `eigs` (not yet rendered)."""
    options = options or BackendOptions()
    bc_map = as_bc_map(bcs)
    bc = bc_map.lookup(fid.name)
    lower, upper = domain_bounds(as_nd_map(nds))
    n = block_size(fid, res, eigs, bc_map, options).tau_n

    formulation = formulation_for(fid, eigs, options.split_equation, is_split_operator)
    op = BoundaryOperator(n, n, lower, upper)
    for kind, position in tau_rows(fid, bc, formulation):
        op.add_row(kind, position)
    logger.debug(
        "tau rows field=%s eigs=%s bc=%s formulation=%s rows=%d",
        fid, tuple(eigs), bc.value, formulation.value, op.n_rows,
    )
    return op


def apply_tau(
    mat: DecoupledZSparse,
    row_fid: FieldId,
    col_fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    bcs: Mapping,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
    is_split_operator: bool = False,
) -> DecoupledZSparse:
    """Return `mat` plus the Tau rows of `row_fid` when row_fid == col_fid, else `mat` unchanged."""
    if row_fid != col_fid:
        return mat
    op = boundary_operator(row_fid, eigs, res, bcs, nds, options, is_split_operator)
    rows = op.mat()
    if rows.shape != mat.shape:
        raise ValueError(
            f"Tau rows for '{row_fid}' have shape {rows.shape}, block has shape {mat.shape}"
        )
    return DecoupledZSparse(real=(mat.real + rows).tocsr(), imag=mat.imag.copy())
