"""
Galerkin method: stencil basis change and row truncation.

Contract:
- stencil(fid, ...) maps Galerkin coefficients (gal_n) to raw Chebyshev coefficients (tau_n);
  with make_square the first gal_n rows are kept, giving a gal_n x gal_n operator.
- apply_galerkin_stencil right-multiplies a raw block by the column field's stencil and drops
  the n_bc(row field) leading rows. The dropped rows are those the Tau method fills, so both
  methods eliminate the same number of rows.
- The split poloidal equation has no Galerkin basis.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

import scipy.sparse as sp

from core.chebyshev import make_operator, identity
from core.params import as_bc_map, as_nd_map, domain_bounds
from core.resolution import Resolution
from core.types import VELOCITY_POL, BackendOptions, DecoupledZSparse, FieldId
from assembly.block_size import block_size
from physics.boundary_conditions import stencil_kind
from physics.rbc_model import ModelConfigurationError

logger = logging.getLogger(__name__)


def _require_galerkin_available(fid: FieldId, options: BackendOptions) -> None:
    if options.split_equation and fid == VELOCITY_POL:
        logger.error("Galerkin basis requested for the split poloidal equation.")
        raise ModelConfigurationError("Galerkin method is not available for the split poloidal equation")


def stencil(
    fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    make_square: bool,
    bcs: Mapping,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
) -> sp.csr_matrix:
    """Galerkin stencil of `fid` at `eigs`: tau_n x gal_n, or gal_n x gal_n when make_square."""
    options = options or BackendOptions()
    _require_galerkin_available(fid, options)
    bc_map = as_bc_map(bcs)
    lower, upper = domain_bounds(as_nd_map(nds))
    size = block_size(fid, res, eigs, bc_map, options)
    kind = stencil_kind(fid, bc_map.lookup(fid.name))

    mat = make_operator(f"stencil_{kind.value}", size.tau_n, size.gal_n, lower, upper)
    if make_square:
        mat = (make_operator("id", size.tau_n, size.gal_n, lower, upper) @ mat).tocsr()
    return mat


def row_truncation(
    fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    bcs: Mapping,
    options: Optional[BackendOptions] = None,
) -> sp.csr_matrix:
    """gal_n x tau_n operator dropping the n_bc leading rows of `fid`."""
    size = block_size(fid, res, eigs, bcs, options)
    return identity(size.gal_n, size.tau_n, s=size.shift[0])


def truncate_rows(
    mat: DecoupledZSparse,
    row_fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    bcs: Mapping,
    options: Optional[BackendOptions] = None,
) -> DecoupledZSparse:
    options = options or BackendOptions()
    _require_galerkin_available(row_fid, options)
    T = row_truncation(row_fid, eigs, res, bcs, options)
    return DecoupledZSparse(real=(T @ mat.real).tocsr(), imag=(T @ mat.imag).tocsr())


def apply_galerkin_stencil(
    mat: DecoupledZSparse,
    row_fid: FieldId,
    col_fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    bcs: Mapping,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
) -> DecoupledZSparse:
    """Transform a raw (row_fid, col_fid) block into Galerkin coordinates."""
    options = options or BackendOptions()
    _require_galerkin_available(row_fid, options)
    S = stencil(col_fid, eigs, res, False, bcs, nds, options)
    if mat.shape[1] != S.shape[0]:
        raise ValueError(f"Block has {mat.shape[1]} columns, stencil of '{col_fid}' has {S.shape[0]} rows")
    out = DecoupledZSparse(real=(mat.real @ S).tocsr(), imag=(mat.imag @ S).tocsr())
    return truncate_rows(out, row_fid, eigs, res, bcs, options)
