"""
Block sizing of field blocks and per-matrix operator info.

Contract:
- tau_n is read from the resolution at the index tuple (spectral z dimension).
- gal_n = tau_n - n_bc(field); shift = (n_bc, 0, 0) records the leading modes dropped by
  the Galerkin basis so that blocks of fields with different n_bc align in a coupled system.
- rhs_cols = 2 for the poloidal velocity under the split formulation, 1 otherwise.
- Results are derived on demand and never cached.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence

from core.layout import Coupling, build_coupled_layout
from core.params import as_bc_map
from core.resolution import Resolution
from core.types import VELOCITY_POL, BackendOptions, BlockSize, FieldId, OperatorInfo, Space
from physics.boundary_conditions import check_allowed
from physics.rbc_model import is_declared, n_bc

logger = logging.getLogger(__name__)


def block_size(
    fid: FieldId,
    res: Resolution,
    eigs: Sequence[int],
    bcs: Mapping,
    options: Optional[BackendOptions] = None,
) -> BlockSize:
    """Tau/Galerkin sizes, shift and right-hand-side width of the block of `fid` at `eigs`."""
    if not is_declared(fid):
        logger.error("Block size requested for undeclared field '%s'.", fid)
        raise ValueError(f"Block size requested for undeclared field '{fid}'")
    options = options or BackendOptions()
    bc = as_bc_map(bcs).lookup(fid.name)
    check_allowed(fid, bc)

    tau_n = int(res.dimensions(Space.SPECTRAL, eigs)[0])
    s = n_bc(fid)
    gal_n = tau_n - s
    if gal_n < 0:
        raise ValueError(f"Field '{fid}' needs {s} boundary conditions but only {tau_n} modes are retained")
    rhs_cols = 2 if (options.split_equation and fid == VELOCITY_POL) else 1
    return BlockSize(tau_n=tau_n, gal_n=gal_n, shift=(s, 0, 0), rhs_cols=rhs_cols)


def system_sizes(
    fields: Sequence[FieldId],
    res: Resolution,
    eigs: Sequence[int],
    bcs: Mapping,
    options: Optional[BackendOptions] = None,
) -> tuple[int, int]:
    """(sum tau_n, sum gal_n) over the coupled fields."""
    sizes = [block_size(f, res, eigs, bcs, options) for f in fields]
    tau_layout = build_coupled_layout(fields, {f: s.tau_n for f, s in zip(fields, sizes)})
    gal_layout = build_coupled_layout(fields, {f: s.gal_n for f, s in zip(fields, sizes)})
    return tau_layout.size, gal_layout.size


def operator_info(
    fid: FieldId,
    res: Resolution,
    coupling: Coupling,
    bcs: Mapping,
    options: Optional[BackendOptions] = None,
) -> OperatorInfo:
    """Fill per-matrix sizing of the equation of `fid` over every matrix index of `coupling`."""
    if fid not in coupling.fields:
        raise ValueError(f"Field '{fid}' is not part of the coupling {[str(f) for f in coupling.fields]}")
    info = OperatorInfo.allocate(coupling.n_matrices)
    for idx, _ in coupling:
        eigs = coupling.get_indexes(res, idx)
        size = block_size(fid, res, eigs, bcs, options)
        info.tau_n[idx] = size.tau_n
        info.gal_n[idx] = size.gal_n
        info.gal_shift[idx, :] = size.shift
        info.rhs_cols[idx] = size.rhs_cols
        info.sys_tau_n[idx], info.sys_gal_n[idx] = system_sizes(coupling.fields, res, eigs, bcs, options)
    logger.debug("operator_info field=%s n_matrices=%d", fid, coupling.n_matrices)
    return info
