"""
Rayleigh-Benard convection in a plane layer (toroidal/poloidal formulation): field and coupling declaration.

Responsibilities:
- Declare the physical fields, the user parameters and the periodicity of the box.
- Fill in the automatic parameters (extent of the wall-normal domain).
- State, per equation, which fields enter implicitly and which enter the explicit
  linear, nonlinear and next-step slots.
- Number of boundary conditions carried by each field (n_bc).

Conventions:
- Viscous time scale; z in [lower1d, upper1d] = [0, 1].
- The buoyancy coupling between poloidal velocity and temperature is treated explicitly,
  so every equation is implicit in its own field only.

This module MUST NOT:
- build matrices (see assembly.operator_blocks),
- read boundary-condition tables (see physics.boundary_conditions).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from core.types import (
    TEMPERATURE,
    VELOCITY_POL,
    VELOCITY_TOR,
    FieldId,
    NonDimensional,
    PhysicalName,
)

logger = logging.getLogger(__name__)


class ModelConfigurationError(RuntimeError):
    """Raised when a field, operator or coupling is not part of the model."""


DECLARED_FIELDS = (VELOCITY_TOR, VELOCITY_POL, TEMPERATURE)

# Boundary conditions per field (rows added by Tau, columns removed by Galerkin)
_N_BC: Dict[FieldId, int] = {
    VELOCITY_TOR: 2,
    VELOCITY_POL: 4,
    TEMPERATURE: 2,
}

_EXPLICIT_LINEAR: Dict[FieldId, List[FieldId]] = {
    VELOCITY_TOR: [],
    VELOCITY_POL: [TEMPERATURE],
    TEMPERATURE: [VELOCITY_POL],
}

# Physical fields the physical-space kernel reads to form each nonlinear term
_NONLINEAR_INPUTS: Dict[FieldId, List[PhysicalName]] = {
    VELOCITY_TOR: [PhysicalName.VELOCITY],
    VELOCITY_POL: [PhysicalName.VELOCITY],
    TEMPERATURE: [PhysicalName.VELOCITY, PhysicalName.TEMPERATURE],
}


def field_names() -> List[str]:
    return [PhysicalName.VELOCITY.value, PhysicalName.TEMPERATURE.value]


def param_names() -> List[str]:
    return [NonDimensional.PRANDTL.value, NonDimensional.RAYLEIGH.value]


def is_periodic_box() -> List[bool]:
    """Periodicity per direction (z, x, y)."""
    return [False, True, True]


def automatic_parameters(cfg: Optional[Mapping[Any, Any]] = None) -> Dict[str, float]:
    """Parameters computed by the model rather than supplied by the user."""
    return {NonDimensional.LOWER1D.value: 0.0, NonDimensional.UPPER1D.value: 1.0}


def is_declared(fid: FieldId) -> bool:
    return fid in _N_BC


def require_declared(fid: FieldId) -> None:
    if not is_declared(fid):
        logger.error("Field '%s' is not part of the model.", fid)
        raise ModelConfigurationError(f"Field '{fid}' is not part of the model")


def n_bc(fid: FieldId) -> int:
    return _N_BC.get(fid, 0)


def implicit_fields(fid: FieldId) -> List[FieldId]:
    return [fid] if is_declared(fid) else []


def explicit_linear_fields(fid: FieldId) -> List[FieldId]:
    return list(_EXPLICIT_LINEAR.get(fid, []))


def explicit_nonlinear_fields(fid: FieldId) -> List[FieldId]:
    return [fid] if is_declared(fid) else []


def explicit_nextstep_fields(fid: FieldId) -> List[FieldId]:
    return []


def nonlinear_kernel_inputs(fid: FieldId) -> List[PhysicalName]:
    return list(_NONLINEAR_INPUTS.get(fid, []))
