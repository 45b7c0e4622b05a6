"""
Strongly typed containers for field identifiers, operator tags, sizing results and case configuration.

Global conventions (law of the land):
- The wall-normal direction z is the only non-periodic direction; it is index 0 of every
  dimension vector. The two horizontal directions are Fourier-periodic.
- A field is addressed by FieldId(name, comp); the poloidal/toroidal components belong to
  the velocity, the scalar component to the temperature.
- Index tuples ("eigs") are the integer horizontal wavenumber indices (k1, k2) at which the
  1D operator in z is built; (0, 0) is the horizontally uniform mean mode.
- Operator blocks are CSR matrices; complex blocks are carried as a real/imaginary pair.
- Block sizes: tau_n = number of Chebyshev modes, gal_n = tau_n - n_bc(field).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, NamedTuple, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

IntArray = NDArray[np.int64]


class PhysicalName(str, Enum):
    VELOCITY = "velocity"
    TEMPERATURE = "temperature"


class SpectralComponent(str, Enum):
    TOR = "tor"
    POL = "pol"
    SCALAR = "scalar"


class FieldId(NamedTuple):
    """Immutable (physical quantity, spectral component) key."""

    name: PhysicalName
    comp: SpectralComponent

    def __str__(self) -> str:
        return f"{self.name.value}/{self.comp.value}"


VELOCITY_TOR = FieldId(PhysicalName.VELOCITY, SpectralComponent.TOR)
VELOCITY_POL = FieldId(PhysicalName.VELOCITY, SpectralComponent.POL)
TEMPERATURE = FieldId(PhysicalName.TEMPERATURE, SpectralComponent.SCALAR)


class BcName(str, Enum):
    NO_SLIP = "no_slip"
    STRESS_FREE = "stress_free"
    FIXED_TEMPERATURE = "fixed_temperature"
    FIXED_FLUX = "fixed_flux"


class NonDimensional(str, Enum):
    PRANDTL = "prandtl"
    RAYLEIGH = "rayleigh"
    LOWER1D = "lower1d"
    UPPER1D = "upper1d"


class ModelOperator(str, Enum):
    IMPLICIT_LINEAR = "implicit_linear"
    SPLIT_IMPLICIT_LINEAR = "split_implicit_linear"
    TIME = "time"
    BOUNDARY = "boundary"
    SPLIT_BOUNDARY_VALUE = "split_boundary_value"
    EXPLICIT_LINEAR = "explicit_linear"
    EXPLICIT_NONLINEAR = "explicit_nonlinear"
    EXPLICIT_NEXTSTEP = "explicit_nextstep"
    STENCIL = "stencil"


EXPLICIT_OPERATORS = (
    ModelOperator.EXPLICIT_LINEAR,
    ModelOperator.EXPLICIT_NONLINEAR,
    ModelOperator.EXPLICIT_NEXTSTEP,
)


class BcScheme(str, Enum):
    TAU = "tau"
    GALERKIN = "galerkin"


class Space(str, Enum):
    SPECTRAL = "spectral"
    PHYSICAL = "physical"


class IndexMode(str, Enum):
    """How the surrounding framework enumerates matrices: one per horizontal mode."""

    MODE = "mode"


@dataclass(frozen=True, slots=True)
class BlockSize:
    """Sizing of one field block at one index tuple.

    Attributes
    ----------
    tau_n : int
        Raw (Tau) truncation in z.
    gal_n : int
        Galerkin truncation, tau_n - n_bc(field).
    shift : Tuple[int, int, int]
        Leading rows/columns dropped by the Galerkin basis, per axis (z, k1, k2).
    rhs_cols : int
        Number of right-hand sides carried by the block.
    """

    tau_n: int
    gal_n: int
    shift: Tuple[int, int, int]
    rhs_cols: int


@dataclass(slots=True)
class DecoupledZSparse:
    """Complex sparse block stored as separate real and imaginary CSR parts."""

    real: sp.csr_matrix
    imag: sp.csr_matrix

    def __post_init__(self) -> None:
        if self.real.shape != self.imag.shape:
            raise ValueError(
                f"real/imag shapes differ: {self.real.shape} vs {self.imag.shape}"
            )

    @classmethod
    def zeros(cls, rows: int, cols: int) -> "DecoupledZSparse":
        return cls(
            real=sp.csr_matrix((rows, cols), dtype=np.float64),
            imag=sp.csr_matrix((rows, cols), dtype=np.float64),
        )

    @classmethod
    def from_real(cls, mat) -> "DecoupledZSparse":
        real = sp.csr_matrix(mat, dtype=np.float64)
        return cls(real=real, imag=sp.csr_matrix(real.shape, dtype=np.float64))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.real.shape

    def tocomplex(self) -> sp.csr_matrix:
        return (self.real + 1j * self.imag).tocsr()


@dataclass(slots=True)
class EquationInfo:
    """Static description of an equation as seen by the coupling framework."""

    is_complex: bool
    is_split_equation: bool
    has_qi: bool
    has_source: bool
    index_mode: IndexMode
    block_size: int


@dataclass(slots=True)
class OperatorInfo:
    """Per matrix-index sizing of an equation (one entry per index tuple)."""

    tau_n: IntArray
    gal_n: IntArray
    gal_shift: IntArray  # (n_matrices, 3)
    rhs_cols: IntArray
    sys_tau_n: IntArray
    sys_gal_n: IntArray

    @classmethod
    def allocate(cls, n_matrices: int) -> "OperatorInfo":
        return cls(
            tau_n=np.zeros(n_matrices, dtype=np.int64),
            gal_n=np.zeros(n_matrices, dtype=np.int64),
            gal_shift=np.zeros((n_matrices, 3), dtype=np.int64),
            rhs_cols=np.zeros(n_matrices, dtype=np.int64),
            sys_tau_n=np.zeros(n_matrices, dtype=np.int64),
            sys_gal_n=np.zeros(n_matrices, dtype=np.int64),
        )


@dataclass(frozen=True, slots=True)
class BackendOptions:
    """Immutable switches fixed at backend construction."""

    truncate_qi: bool = False
    split_equation: bool = False


# -----------------------------------------------------------------------------
# Case configuration (YAML-aligned)
# -----------------------------------------------------------------------------
@dataclass(slots=True)
class CaseMeta:
    """Metadata for the case block."""

    id: str
    title: str = ""
    notes: Optional[str] = None


@dataclass(slots=True)
class CaseResolution:
    """Spectral truncation (resolution block).

    Attributes
    ----------
    nz : int
        Chebyshev modes in the wall-normal direction.
    n_k1, n_k2 : int
        Retained horizontal wavenumber indices per periodic direction.
    box_scale : Tuple[float, float]
        Wavenumber of index 1 in each periodic direction (2*pi / box length).
    """

    nz: int
    n_k1: int
    n_k2: int
    box_scale: Tuple[float, float] = (1.0, 1.0)

    def __post_init__(self) -> None:
        if self.nz < 5:
            raise ValueError(f"nz must be >= 5 to host four boundary conditions, got {self.nz}")
        if self.n_k1 < 1 or self.n_k2 < 1:
            raise ValueError(f"n_k1 and n_k2 must be positive, got ({self.n_k1}, {self.n_k2})")
        if len(self.box_scale) != 2 or min(self.box_scale) <= 0.0:
            raise ValueError(f"box_scale must hold two positive values, got {self.box_scale}")


@dataclass(slots=True)
class CasePhysics:
    """Nondimensional parameters supplied by the user."""

    prandtl: float
    rayleigh: float

    def __post_init__(self) -> None:
        if self.prandtl <= 0.0:
            raise ValueError(f"prandtl must be positive, got {self.prandtl}")


@dataclass(slots=True)
class CaseBoundary:
    """Boundary-condition choice per physical field."""

    velocity: BcName = BcName.NO_SLIP
    temperature: BcName = BcName.FIXED_TEMPERATURE


@dataclass(slots=True)
class CaseBackend:
    """Backend switches and boundary-enforcement scheme."""

    bc_scheme: BcScheme = BcScheme.TAU
    truncate_qi: bool = False
    split_equation: bool = False

    def __post_init__(self) -> None:
        if self.bc_scheme == BcScheme.GALERKIN and self.split_equation:
            raise ValueError("The split poloidal equation has no Galerkin basis; use bc_scheme: tau.")

    def options(self) -> BackendOptions:
        return BackendOptions(truncate_qi=self.truncate_qi, split_equation=self.split_equation)


@dataclass(slots=True)
class CaseOutput:
    """Where assembled operators are written."""

    out_dir: Path
    write_npz: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.out_dir, Path):
            raise TypeError("out_dir must be pathlib.Path (loader must convert str -> Path).")


@dataclass(slots=True)
class CaseConfig:
    """Top-level case configuration."""

    case: CaseMeta
    resolution: CaseResolution
    physics: CasePhysics
    boundary: CaseBoundary = field(default_factory=CaseBoundary)
    backend: CaseBackend = field(default_factory=CaseBackend)
    output: Optional[CaseOutput] = None

    def nondimensional(self) -> Dict[str, float]:
        return {
            NonDimensional.PRANDTL.value: float(self.physics.prandtl),
            NonDimensional.RAYLEIGH.value: float(self.physics.rayleigh),
        }

    def boundary_map(self) -> Dict[str, str]:
        return {
            PhysicalName.VELOCITY.value: self.boundary.velocity.value,
            PhysicalName.TEMPERATURE.value: self.boundary.temperature.value,
        }
