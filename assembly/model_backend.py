"""
Model backend facade for the plane-layer Rayleigh-Benard model.

Responsibilities:
- Expose the model metadata (fields, parameters, periodicity, couplings) to the framework.
- Size equations (equation_info, operator_info).
- Assemble the coupled operator of a kind for one matrix index, in the Tau or Galerkin scheme.

Principles:
- The backend holds only its BackendOptions; every call reads the resolution and the
  parameter maps and returns a freshly built matrix, so calls may run concurrently.
- Automatic parameters (domain bounds) are merged into the user parameters; user entries win.
- Block offsets in coupled matrices come from CoupledLayout.
"""

from __future__ import annotations

import abc
import logging
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from core.layout import Coupling, CoupledLayout, build_coupled_layout
from core.params import NdMap, as_bc_map, as_nd_map
from core.resolution import Resolution
from core.types import (
    EXPLICIT_OPERATORS,
    VELOCITY_POL,
    BackendOptions,
    BcScheme,
    DecoupledZSparse,
    EquationInfo,
    FieldId,
    IndexMode,
    ModelOperator,
    OperatorInfo,
    PhysicalName,
)
from assembly import operator_blocks as blocks
from assembly.block_size import block_size, operator_info as _operator_info
from assembly.galerkin import apply_galerkin_stencil, stencil, truncate_rows
from assembly.tau import apply_tau
from physics import rbc_model
from physics.rbc_model import DECLARED_FIELDS, ModelConfigurationError

logger = logging.getLogger(__name__)


class IModelBackend(abc.ABC):
    """Interface the coupling framework uses to query a physical model."""

    @abc.abstractmethod
    def field_names(self) -> List[str]: ...

    @abc.abstractmethod
    def param_names(self) -> List[str]: ...

    @abc.abstractmethod
    def is_periodic_box(self) -> List[bool]: ...

    @abc.abstractmethod
    def automatic_parameters(self, cfg: Optional[Mapping] = None) -> Dict[str, float]: ...

    @abc.abstractmethod
    def equation_info(self, fid: FieldId, res: Resolution) -> EquationInfo: ...

    @abc.abstractmethod
    def operator_info(self, fid: FieldId, res: Resolution, coupling: Coupling, bcs: Mapping) -> OperatorInfo: ...

    @abc.abstractmethod
    def model_matrix(
        self,
        op: ModelOperator,
        fields: Sequence[FieldId],
        mat_idx: int,
        bc_scheme: BcScheme,
        res: Resolution,
        eigs: Sequence[int],
        bcs: Mapping,
        nds: Mapping,
    ) -> DecoupledZSparse: ...

    @abc.abstractmethod
    def galerkin_stencil(
        self,
        fid: FieldId,
        res: Resolution,
        eigs: Sequence[int],
        make_square: bool,
        bcs: Mapping,
        nds: Mapping,
    ) -> sp.csr_matrix: ...

    @abc.abstractmethod
    def explicit_block(
        self,
        fid: FieldId,
        op: ModelOperator,
        col_fid: FieldId,
        res: Resolution,
        eigs: Sequence[int],
        nds: Mapping,
    ) -> DecoupledZSparse: ...


def _scatter_blocks(
    placed: List[Tuple[FieldId, FieldId, DecoupledZSparse]],
    row_layout: CoupledLayout,
    col_layout: CoupledLayout,
) -> DecoupledZSparse:
    """Scatter (row field, col field, block) triples into one coupled matrix."""
    shape = (row_layout.size, col_layout.size)
    parts: Dict[str, Tuple[List[np.ndarray], List[np.ndarray], List[np.ndarray]]] = {
        "real": ([], [], []),
        "imag": ([], [], []),
    }
    for row_fid, col_fid, blk in placed:
        r0, r1 = row_layout.block_range(row_fid)
        c0, c1 = col_layout.block_range(col_fid)
        if blk.shape != (r1 - r0, c1 - c0):
            raise ValueError(
                f"Block ({row_fid}, {col_fid}) has shape {blk.shape}, layout expects {(r1 - r0, c1 - c0)}"
            )
        for name, mat in (("real", blk.real), ("imag", blk.imag)):
            coo = mat.tocoo()
            rows, cols, vals = parts[name]
            rows.append(coo.row + r0)
            cols.append(coo.col + c0)
            vals.append(coo.data)

    def _assemble(name: str) -> sp.csr_matrix:
        rows, cols, vals = parts[name]
        if not rows:
            return sp.csr_matrix(shape, dtype=np.float64)
        return sp.csr_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=shape,
            dtype=np.float64,
        )

    return DecoupledZSparse(real=_assemble("real"), imag=_assemble("imag"))


class ModelBackend(IModelBackend):
    """Operator backend of the Boussinesq Rayleigh-Benard model in a plane layer."""

    __slots__ = ("options",)

    def __init__(self, options: Optional[BackendOptions] = None) -> None:
        self.options = options or BackendOptions()

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def field_names(self) -> List[str]:
        return rbc_model.field_names()

    def param_names(self) -> List[str]:
        return rbc_model.param_names()

    def is_periodic_box(self) -> List[bool]:
        return rbc_model.is_periodic_box()

    def automatic_parameters(self, cfg: Optional[Mapping] = None) -> Dict[str, float]:
        return rbc_model.automatic_parameters(cfg)

    def implicit_fields(self, fid: FieldId) -> List[FieldId]:
        return rbc_model.implicit_fields(fid)

    def explicit_fields(self, op: ModelOperator, fid: FieldId) -> List[FieldId]:
        dispatch: Dict[ModelOperator, Callable[[FieldId], List[FieldId]]] = {
            ModelOperator.EXPLICIT_LINEAR: rbc_model.explicit_linear_fields,
            ModelOperator.EXPLICIT_NONLINEAR: rbc_model.explicit_nonlinear_fields,
            ModelOperator.EXPLICIT_NEXTSTEP: rbc_model.explicit_nextstep_fields,
        }
        op = ModelOperator(op)
        if op not in dispatch:
            raise ValueError(f"'{op.value}' is not an explicit operator")
        return dispatch[op](fid)

    def nonlinear_kernel_inputs(self, fid: FieldId) -> List[PhysicalName]:
        return rbc_model.nonlinear_kernel_inputs(fid)

    def _parameters(self, nds: Mapping) -> NdMap:
        return as_nd_map(nds).merged(self.automatic_parameters())

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------
    def equation_info(self, fid: FieldId, res: Resolution) -> EquationInfo:
        rbc_model.require_declared(fid)
        return EquationInfo(
            is_complex=True,
            is_split_equation=bool(self.options.split_equation and fid == VELOCITY_POL),
            has_qi=True,
            has_source=False,
            index_mode=IndexMode.MODE,
            block_size=int(res.nz),
        )

    def operator_info(self, fid: FieldId, res: Resolution, coupling: Coupling, bcs: Mapping) -> OperatorInfo:
        return _operator_info(fid, res, coupling, bcs, self.options)

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------
    def galerkin_stencil(
        self,
        fid: FieldId,
        res: Resolution,
        eigs: Sequence[int],
        make_square: bool,
        bcs: Mapping,
        nds: Mapping,
    ) -> sp.csr_matrix:
        return stencil(fid, eigs, res, make_square, bcs, self._parameters(nds), self.options)

    def explicit_block(
        self,
        fid: FieldId,
        op: ModelOperator,
        col_fid: FieldId,
        res: Resolution,
        eigs: Sequence[int],
        nds: Mapping,
    ) -> DecoupledZSparse:
        return blocks.explicit_block(fid, op, col_fid, eigs, res, self._parameters(nds), self.options)

    def model_matrix(
        self,
        op: ModelOperator,
        fields: Sequence[FieldId],
        mat_idx: int,
        bc_scheme: BcScheme,
        res: Resolution,
        eigs: Sequence[int],
        bcs: Mapping,
        nds: Mapping,
    ) -> DecoupledZSparse:
        """
        Coupled operator of kind `op` for the equations of `fields` at index tuple `eigs`.

        Rows (and, for square kinds, columns) are stacked in the order of `fields`.
        """
        op = ModelOperator(op)
        bc_scheme = BcScheme(bc_scheme)
        fields = list(fields)
        if not fields:
            raise ValueError("model_matrix requires at least one field")
        for fid in fields:
            rbc_model.require_declared(fid)
        bc_map = as_bc_map(bcs)
        nd_map = self._parameters(nds)
        galerkin = bc_scheme == BcScheme.GALERKIN

        sizes = {fid: block_size(fid, res, eigs, bc_map, self.options) for fid in fields}
        row_n = {fid: (s.gal_n if galerkin else s.tau_n) for fid, s in sizes.items()}

        if op in (ModelOperator.IMPLICIT_LINEAR, ModelOperator.SPLIT_IMPLICIT_LINEAR):
            out = self._implicit_matrix(op, fields, row_n, galerkin, res, eigs, bc_map, nd_map)
        elif op == ModelOperator.TIME:
            out = self._time_matrix(fields, row_n, galerkin, res, eigs, bc_map, nd_map)
        elif op == ModelOperator.BOUNDARY:
            out = self._boundary_matrix(fields, sizes, row_n, galerkin, res, eigs, bc_map, nd_map)
        elif op == ModelOperator.SPLIT_BOUNDARY_VALUE:
            out = self._split_boundary_matrix(fields, sizes, galerkin, res, eigs, bc_map, nd_map)
        elif op in EXPLICIT_OPERATORS:
            out = self._explicit_matrix(op, fields, row_n, galerkin, res, eigs, bc_map, nd_map)
        elif op == ModelOperator.STENCIL:
            out = self._stencil_matrix(fields, sizes, res, eigs, bc_map, nd_map)
        else:  # pragma: no cover - enum is closed
            logger.error("Operator kind '%s' is not implemented.", op.value)
            raise ModelConfigurationError(f"Operator kind '{op.value}' is not implemented")

        logger.debug(
            "model_matrix op=%s fields=%s mat_idx=%d scheme=%s eigs=%s shape=%s nnz=%d",
            op.value, [str(f) for f in fields], mat_idx, bc_scheme.value, tuple(eigs), out.shape, out.real.nnz,
        )
        return out

    def _implicit_matrix(self, op, fields, row_n, galerkin, res, eigs, bcs, nds) -> DecoupledZSparse:
        is_split_operator = op == ModelOperator.SPLIT_IMPLICIT_LINEAR
        layout = build_coupled_layout(fields, row_n)
        placed = []
        for row_fid in fields:
            for col_fid in rbc_model.implicit_fields(row_fid):
                if not layout.has_block(col_fid):
                    continue
                blk = blocks.implicit_block(row_fid, col_fid, eigs, res, nds, self.options, is_split_operator)
                if galerkin:
                    blk = apply_galerkin_stencil(blk, row_fid, col_fid, eigs, res, bcs, nds, self.options)
                else:
                    blk = apply_tau(blk, row_fid, col_fid, eigs, res, bcs, nds, self.options, is_split_operator)
                placed.append((row_fid, col_fid, blk))
        return _scatter_blocks(placed, layout, layout)

    def _time_matrix(self, fields, row_n, galerkin, res, eigs, bcs, nds) -> DecoupledZSparse:
        layout = build_coupled_layout(fields, row_n)
        placed = []
        for fid in fields:
            blk = blocks.time_block(fid, eigs, res, nds, self.options)
            if galerkin:
                blk = apply_galerkin_stencil(blk, fid, fid, eigs, res, bcs, nds, self.options)
            placed.append((fid, fid, blk))
        return _scatter_blocks(placed, layout, layout)

    def _boundary_matrix(self, fields, sizes, row_n, galerkin, res, eigs, bcs, nds) -> DecoupledZSparse:
        layout = build_coupled_layout(fields, row_n)
        placed = []
        for fid in fields:
            n = sizes[fid].tau_n
            blk = DecoupledZSparse.zeros(n, n)
            if galerkin:
                blk = apply_galerkin_stencil(blk, fid, fid, eigs, res, bcs, nds, self.options)
            else:
                blk = apply_tau(blk, fid, fid, eigs, res, bcs, nds, self.options)
            placed.append((fid, fid, blk))
        return _scatter_blocks(placed, layout, layout)

    def _split_boundary_matrix(self, fields, sizes, galerkin, res, eigs, bcs, nds) -> DecoupledZSparse:
        if galerkin:
            logger.error("Split boundary values are only defined for the Tau scheme.")
            raise ModelConfigurationError("Split boundary values are only defined for the Tau scheme")
        placed = []
        row_sizes = {}
        for fid in fields:
            blk = blocks.split_boundary_value_block(fid, eigs, res, bcs, nds, self.options)
            row_sizes[fid] = blk.shape[0]
            placed.append((fid, fid, blk))
        row_layout = build_coupled_layout(fields, row_sizes)
        col_layout = build_coupled_layout(fields, {fid: sizes[fid].tau_n for fid in fields})
        return _scatter_blocks(placed, row_layout, col_layout)

    def _explicit_matrix(self, op, fields, row_n, galerkin, res, eigs, bcs, nds) -> DecoupledZSparse:
        wanted = set()
        for fid in fields:
            wanted.update(self.explicit_fields(op, fid))
        col_fields = [fid for fid in DECLARED_FIELDS if fid in wanted]
        col_n = {}
        for col_fid in col_fields:
            size = block_size(col_fid, res, eigs, bcs, self.options)
            stenciled = galerkin and op == ModelOperator.EXPLICIT_LINEAR
            col_n[col_fid] = size.gal_n if stenciled else size.tau_n

        row_layout = build_coupled_layout(fields, row_n)
        col_layout = build_coupled_layout(col_fields, col_n)
        placed = []
        for row_fid in fields:
            for col_fid in self.explicit_fields(op, row_fid):
                blk = blocks.explicit_block(row_fid, op, col_fid, eigs, res, nds, self.options)
                if galerkin and op == ModelOperator.EXPLICIT_LINEAR:
                    blk = apply_galerkin_stencil(blk, row_fid, col_fid, eigs, res, bcs, nds, self.options)
                elif galerkin:
                    blk = truncate_rows(blk, row_fid, eigs, res, bcs, self.options)
                placed.append((row_fid, col_fid, blk))
        return _scatter_blocks(placed, row_layout, col_layout)

    def _stencil_matrix(self, fields, sizes, res, eigs, bcs, nds) -> DecoupledZSparse:
        row_layout = build_coupled_layout(fields, {fid: sizes[fid].tau_n for fid in fields})
        col_layout = build_coupled_layout(fields, {fid: sizes[fid].gal_n for fid in fields})
        placed = [
            (fid, fid, DecoupledZSparse.from_real(stencil(fid, eigs, res, False, bcs, nds, self.options)))
            for fid in fields
        ]
        return _scatter_blocks(placed, row_layout, col_layout)
