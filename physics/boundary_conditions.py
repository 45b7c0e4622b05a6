"""
Boundary-condition dispatch for the plane layer.

Responsibilities:
- Map (field, boundary condition, formulation) to the ordered boundary rows added by the Tau method.
- Map (field, boundary condition) to the stencil kind used by the Galerkin method.
- Pick the formulation of an equation from the split flags and the index tuple.

Principles:
- Tables are data, validated once at import: every allowed condition has rows for every
  formulation its field uses, and the row counts match n_bc (two rows for the mean mode and
  for each half of the split poloidal equation).
- A condition outside a field's allowed set is a configuration error, never a fallback.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Sequence, Tuple

from core.chebyshev import STENCIL_CONDITIONS, BoundaryKind, Position, StencilKind
from core.types import TEMPERATURE, VELOCITY_POL, VELOCITY_TOR, BcName, FieldId
from physics.rbc_model import ModelConfigurationError, n_bc

logger = logging.getLogger(__name__)


class BoundaryConditionError(ModelConfigurationError):
    """Raised when a boundary-condition kind is not defined for a field."""


class Formulation(str, Enum):
    STANDARD = "standard"
    MEAN_MODE = "mean_mode"
    SPLIT_PRIMARY = "split_primary"
    SPLIT_SECONDARY = "split_secondary"


RowSpec = Tuple[BoundaryKind, Position]

MEAN_MODE_EIGS = (0, 0)

ALLOWED_BCS: Dict[FieldId, FrozenSet[BcName]] = {
    VELOCITY_TOR: frozenset({BcName.NO_SLIP, BcName.STRESS_FREE}),
    VELOCITY_POL: frozenset({BcName.NO_SLIP, BcName.STRESS_FREE}),
    TEMPERATURE: frozenset({BcName.FIXED_TEMPERATURE, BcName.FIXED_FLUX}),
}

# Formulations each field can be assembled in
FORMULATIONS: Dict[FieldId, Tuple[Formulation, ...]] = {
    VELOCITY_TOR: (Formulation.STANDARD,),
    VELOCITY_POL: (
        Formulation.STANDARD,
        Formulation.MEAN_MODE,
        Formulation.SPLIT_PRIMARY,
        Formulation.SPLIT_SECONDARY,
    ),
    TEMPERATURE: (Formulation.STANDARD,),
}


def _pair(kind: BoundaryKind) -> Tuple[RowSpec, RowSpec]:
    return (kind, Position.TOP), (kind, Position.BOTTOM)


_V = BoundaryKind.VALUE
_D1 = BoundaryKind.D1
_D2 = BoundaryKind.D2

TAU_TABLE: Dict[Tuple[FieldId, BcName, Formulation], Tuple[RowSpec, ...]] = {
    (VELOCITY_TOR, BcName.NO_SLIP, Formulation.STANDARD): _pair(_V),
    (VELOCITY_TOR, BcName.STRESS_FREE, Formulation.STANDARD): _pair(_D1),
    (VELOCITY_POL, BcName.NO_SLIP, Formulation.STANDARD): _pair(_V) + _pair(_D1),
    (VELOCITY_POL, BcName.NO_SLIP, Formulation.MEAN_MODE): _pair(_V),
    (VELOCITY_POL, BcName.STRESS_FREE, Formulation.STANDARD): _pair(_V) + _pair(_D2),
    (VELOCITY_POL, BcName.STRESS_FREE, Formulation.MEAN_MODE): _pair(_D1),
    (VELOCITY_POL, BcName.NO_SLIP, Formulation.SPLIT_PRIMARY): _pair(_D1),
    (VELOCITY_POL, BcName.STRESS_FREE, Formulation.SPLIT_PRIMARY): _pair(_D2),
    (VELOCITY_POL, BcName.NO_SLIP, Formulation.SPLIT_SECONDARY): _pair(_V),
    (VELOCITY_POL, BcName.STRESS_FREE, Formulation.SPLIT_SECONDARY): _pair(_V),
    (TEMPERATURE, BcName.FIXED_TEMPERATURE, Formulation.STANDARD): _pair(_V),
    (TEMPERATURE, BcName.FIXED_FLUX, Formulation.STANDARD): _pair(_D1),
}

STENCIL_TABLE: Dict[Tuple[FieldId, BcName], StencilKind] = {
    (VELOCITY_TOR, BcName.NO_SLIP): StencilKind.VALUE,
    (VELOCITY_TOR, BcName.STRESS_FREE): StencilKind.D1,
    (VELOCITY_POL, BcName.NO_SLIP): StencilKind.VALUE_D1,
    (VELOCITY_POL, BcName.STRESS_FREE): StencilKind.VALUE_D2,
    (TEMPERATURE, BcName.FIXED_TEMPERATURE): StencilKind.VALUE,
    (TEMPERATURE, BcName.FIXED_FLUX): StencilKind.D1,
}


def _expected_rows(fid: FieldId, formulation: Formulation) -> int:
    if formulation == Formulation.STANDARD:
        return n_bc(fid)
    return 2


def validate_tables() -> None:
    """Check table completeness and row counts; raises RuntimeError on inconsistency."""
    for fid, bcs in ALLOWED_BCS.items():
        for bc in bcs:
            for formulation in FORMULATIONS[fid]:
                key = (fid, bc, formulation)
                if key not in TAU_TABLE:
                    raise RuntimeError(f"Tau table has no entry for {fid} / {bc.value} / {formulation.value}")
                rows = TAU_TABLE[key]
                if len(rows) != _expected_rows(fid, formulation):
                    raise RuntimeError(
                        f"Tau table entry {fid} / {bc.value} / {formulation.value} has {len(rows)} rows, "
                        f"expected {_expected_rows(fid, formulation)}"
                    )
            kind = STENCIL_TABLE.get((fid, bc))
            if kind is None:
                raise RuntimeError(f"Stencil table has no entry for {fid} / {bc.value}")
            if 2 * len(STENCIL_CONDITIONS[kind]) != n_bc(fid):
                raise RuntimeError(f"Stencil '{kind.value}' for {fid} does not remove n_bc={n_bc(fid)} modes")
    for fid, bc, _ in TAU_TABLE:
        if bc not in ALLOWED_BCS.get(fid, frozenset()):
            raise RuntimeError(f"Tau table lists disallowed condition {bc.value} for {fid}")


validate_tables()


def check_allowed(fid: FieldId, bc: BcName) -> None:
    allowed = ALLOWED_BCS.get(fid)
    if allowed is None or bc not in allowed:
        logger.error("Boundary condition '%s' is not defined for field '%s'.", getattr(bc, "value", bc), fid)
        raise BoundaryConditionError(
            f"Boundary condition '{getattr(bc, 'value', bc)}' is not defined for field '{fid}'"
        )


def formulation_for(fid: FieldId, eigs: Sequence[int], split_equation: bool, is_split_operator: bool) -> Formulation:
    """Formulation used to assemble the equation of `fid` at index tuple `eigs`."""
    if fid != VELOCITY_POL:
        return Formulation.STANDARD
    if split_equation:
        return Formulation.SPLIT_SECONDARY if is_split_operator else Formulation.SPLIT_PRIMARY
    if tuple(int(e) for e in eigs) == MEAN_MODE_EIGS:
        return Formulation.MEAN_MODE
    return Formulation.STANDARD


def tau_rows(fid: FieldId, bc: BcName, formulation: Formulation) -> Tuple[RowSpec, ...]:
    """Ordered boundary rows added by the Tau method."""
    check_allowed(fid, bc)
    try:
        return TAU_TABLE[(fid, bc, formulation)]
    except KeyError:
        logger.error("No Tau rows for field '%s' in formulation '%s'.", fid, formulation.value)
        raise BoundaryConditionError(
            f"No Tau rows for field '{fid}' with '{bc.value}' in formulation '{formulation.value}'"
        ) from None


def stencil_kind(fid: FieldId, bc: BcName) -> StencilKind:
    """Stencil kind of the Galerkin basis for `fid` under condition `bc`."""
    check_allowed(fid, bc)
    return STENCIL_TABLE[(fid, bc)]
