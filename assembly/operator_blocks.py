"""
Raw (Tau-basis) operator blocks of the plane-layer Rayleigh-Benard equations.

Equations (viscous time scale, z in [lower1d, upper1d], k^2 = kx^2 + ky^2, Laplacian D2 - k^2):
- toroidal:    d/dt T          = lap T
- poloidal:    d/dt lap P      = lap^2 P - (Ra/Pr) theta
- temperature: d/dt theta      = (1/Pr) lap theta + k^2 P
Each equation is multiplied by the quasi-inverse of its order (I2 or I4), which leaves the
leading rows free for boundary conditions. The buoyancy coupling is explicit.

Split formulation of the poloidal equation: both halves are second order (I2D2 - k^2 I2)
with time operator I2; `is_split_operator` selects the half, which only changes the boundary rows.

Mean mode (0, 0) of the poloidal field: implicit I2, time and explicit blocks zero.

This module MUST NOT:
- add boundary rows or apply stencils (see assembly.tau and assembly.galerkin).
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional, Sequence, Tuple

import scipy.sparse as sp

from core import chebyshev as cheb
from core.chebyshev import BoundaryOperator
from core.params import as_bc_map, as_nd_map, domain_bounds
from core.resolution import Resolution
from core.types import (
    TEMPERATURE,
    VELOCITY_POL,
    VELOCITY_TOR,
    BackendOptions,
    DecoupledZSparse,
    FieldId,
    ModelOperator,
    NonDimensional,
    Space,
)
from physics.boundary_conditions import MEAN_MODE_EIGS, Formulation, tau_rows
from physics.rbc_model import (
    ModelConfigurationError,
    explicit_linear_fields,
    explicit_nextstep_fields,
    explicit_nonlinear_fields,
    require_declared,
)

logger = logging.getLogger(__name__)


def _nz(res: Resolution, eigs: Sequence[int]) -> int:
    return int(res.dimensions(Space.SPECTRAL, eigs)[0])


def _k2(res: Resolution, eigs: Sequence[int]) -> float:
    kx, ky = res.wavenumbers(eigs)
    return float(kx * kx + ky * ky)


def _is_mean_mode(eigs: Sequence[int]) -> bool:
    return tuple(int(e) for e in eigs) == MEAN_MODE_EIGS


def _unsupported(row_fid: FieldId, op: ModelOperator, col_fid: FieldId) -> ModelConfigurationError:
    logger.error("No '%s' block for row '%s' and column '%s'.", op.value, row_fid, col_fid)
    return ModelConfigurationError(f"No '{op.value}' block for row '{row_fid}' and column '{col_fid}'")


def _laplacian_i2(n: int, k2: float, lower: float, upper: float) -> sp.csr_matrix:
    return (cheb.i2d2(n, lower, upper) - k2 * cheb.i2(n, lower, upper)).tocsr()


def _setup(res: Resolution, eigs: Sequence[int], nds: Mapping) -> Tuple[int, float, float, float]:
    lower, upper = domain_bounds(as_nd_map(nds))
    return _nz(res, eigs), _k2(res, eigs), lower, upper


def implicit_block(
    row_fid: FieldId,
    col_fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
    is_split_operator: bool = False,
) -> DecoupledZSparse:
    """Implicit linear block of equation `row_fid` acting on `col_fid`."""
    options = options or BackendOptions()
    require_declared(row_fid)
    if row_fid != col_fid:
        raise _unsupported(row_fid, ModelOperator.IMPLICIT_LINEAR, col_fid)
    nd_map = as_nd_map(nds)
    n, k2, lower, upper = _setup(res, eigs, nd_map)

    if row_fid == VELOCITY_TOR:
        mat = _laplacian_i2(n, k2, lower, upper)
    elif row_fid == VELOCITY_POL:
        if _is_mean_mode(eigs):
            mat = cheb.i2(n, lower, upper)
        elif options.split_equation:
            mat = _laplacian_i2(n, k2, lower, upper)
        else:
            mat = (
                cheb.i4d4(n, lower, upper)
                - 2.0 * k2 * cheb.i4d2(n, lower, upper)
                + k2 * k2 * cheb.i4(n, lower, upper)
            ).tocsr()
    elif row_fid == TEMPERATURE:
        inv_pr = 1.0 / nd_map.lookup(NonDimensional.PRANDTL)
        mat = (inv_pr * _laplacian_i2(n, k2, lower, upper)).tocsr()
    else:  # pragma: no cover - guarded by require_declared
        raise _unsupported(row_fid, ModelOperator.IMPLICIT_LINEAR, col_fid)

    logger.debug("implicit block %s eigs=%s split=%s nnz=%d", row_fid, tuple(eigs), is_split_operator, mat.nnz)
    return DecoupledZSparse.from_real(mat)


def time_block(
    fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
    is_split_operator: bool = False,
) -> DecoupledZSparse:
    """Operator multiplying the time derivative in the equation of `fid`."""
    options = options or BackendOptions()
    require_declared(fid)
    n, k2, lower, upper = _setup(res, eigs, nds)

    if fid == VELOCITY_POL:
        if _is_mean_mode(eigs):
            return DecoupledZSparse.zeros(n, n)
        if options.split_equation:
            mat = cheb.i2(n, lower, upper)
        else:
            mat = (cheb.i4d2(n, lower, upper) - k2 * cheb.i4(n, lower, upper)).tocsr()
    else:
        mat = cheb.i2(n, lower, upper)
    return DecoupledZSparse.from_real(mat)


def explicit_block(
    row_fid: FieldId,
    op: ModelOperator,
    col_fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
) -> DecoupledZSparse:
    """Explicit block of kind `op` in the equation of `row_fid` acting on `col_fid`."""
    options = options or BackendOptions()
    require_declared(row_fid)
    op = ModelOperator(op)
    nd_map = as_nd_map(nds)
    n, k2, lower, upper = _setup(res, eigs, nd_map)
    trunc = options.truncate_qi
    qi_order = 2 if (options.split_equation or row_fid != VELOCITY_POL) else 4

    if op == ModelOperator.EXPLICIT_LINEAR:
        if col_fid not in explicit_linear_fields(row_fid):
            raise _unsupported(row_fid, op, col_fid)
        if row_fid == VELOCITY_POL:
            scale = -nd_map.lookup(NonDimensional.RAYLEIGH) / nd_map.lookup(NonDimensional.PRANDTL)
        else:
            scale = k2
    elif op == ModelOperator.EXPLICIT_NONLINEAR:
        if col_fid not in explicit_nonlinear_fields(row_fid):
            raise _unsupported(row_fid, op, col_fid)
        scale = 1.0
    elif op == ModelOperator.EXPLICIT_NEXTSTEP:
        if col_fid not in explicit_nextstep_fields(row_fid):
            raise _unsupported(row_fid, op, col_fid)
        scale = 1.0
    else:
        raise _unsupported(row_fid, op, col_fid)

    if row_fid == VELOCITY_POL and _is_mean_mode(eigs):
        return DecoupledZSparse.zeros(n, n)
    mat = cheb.quasi_inverse(n, qi_order, lower, upper, truncate=trunc)
    return DecoupledZSparse.from_real((scale * mat).tocsr())


def split_boundary_value_block(
    fid: FieldId,
    eigs: Sequence[int],
    res: Resolution,
    bcs: Mapping,
    nds: Mapping,
    options: Optional[BackendOptions] = None,
) -> DecoupledZSparse:
    """
    Boundary values the primary half of the split poloidal equation imposes on the secondary half.

    Returns the 2 x n primary boundary rows (TOP, BOTTOM).
    """
    options = options or BackendOptions()
    if not options.split_equation:
        logger.error("Split boundary value block requested without the split formulation.")
        raise ModelConfigurationError("Split boundary value block requires the split formulation")
    if fid != VELOCITY_POL:
        raise _unsupported(fid, ModelOperator.SPLIT_BOUNDARY_VALUE, fid)
    bc = as_bc_map(bcs).lookup(fid.name)
    n, _, lower, upper = _setup(res, eigs, nds)
    rows = tau_rows(fid, bc, Formulation.SPLIT_PRIMARY)
    op = BoundaryOperator(len(rows), n, lower, upper)
    for kind, position in rows:
        op.add_row(kind, position)
    return DecoupledZSparse.from_real(op.mat())
