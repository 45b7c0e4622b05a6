"""
Chebyshev basis operators on a linear map z = a*x + b, x in [-1, 1].

Responsibilities:
- Coefficient-space derivative operators (D1, D2, D4) and quasi-inverse integration
  operators (I2, I4) together with their exact products (I2D2, I4D2, I4D4).
- Boundary rows (value, first and second derivative) at TOP (z = upper) and BOTTOM (z = lower),
  collected by BoundaryOperator into the leading rows of a square block.
- Galerkin stencils: n x (n - m) basis-change matrices whose columns satisfy m homogeneous
  boundary conditions.
- The truncation identity used to drop leading rows or make rectangular operators square.

Conventions:
- Operators act on Chebyshev coefficients c_0..c_{n-1} and return scipy.sparse CSR matrices.
- Quasi-inverse of order q has its first q rows zero; those rows are where tau lines go.
- a = (upper - lower)/2 scales derivatives by 1/a and integrals by a per order.

This module MUST NOT:
- know about fields or boundary-condition names (see physics.boundary_conditions),
- keep any state between calls.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, List, Tuple

import numpy as np
import scipy.sparse as sp


class Position(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


class BoundaryKind(str, Enum):
    VALUE = "value"
    D1 = "d1"
    D2 = "d2"


class StencilKind(str, Enum):
    VALUE = "value"
    D1 = "d1"
    VALUE_D1 = "value_d1"
    VALUE_D2 = "value_d2"


# Conditions imposed (at TOP and BOTTOM) by each stencil
STENCIL_CONDITIONS: Dict[StencilKind, Tuple[BoundaryKind, ...]] = {
    StencilKind.VALUE: (BoundaryKind.VALUE,),
    StencilKind.D1: (BoundaryKind.D1,),
    StencilKind.VALUE_D1: (BoundaryKind.VALUE, BoundaryKind.D1),
    StencilKind.VALUE_D2: (BoundaryKind.VALUE, BoundaryKind.D2),
}

# Relative threshold below which stencil coefficients are exact zeros (parity)
_STENCIL_ZERO_TOL = 1.0e-13


def map_scale(lower: float, upper: float) -> float:
    """Half-width a of the linear map."""
    a = 0.5 * (float(upper) - float(lower))
    if a <= 0.0:
        raise ValueError(f"Degenerate linear map: lower={lower}, upper={upper}")
    return a


def stencil_size(kind: StencilKind) -> int:
    """Number of boundary conditions (dropped columns) of a stencil."""
    return 2 * len(STENCIL_CONDITIONS[StencilKind(kind)])


# -----------------------------------------------------------------------------
# Dense kernels
# -----------------------------------------------------------------------------
def _d1_dense(n: int) -> np.ndarray:
    """c'_k = (2/c_k) * sum_{p>k, p+k odd} p c_p on the reference interval."""
    D = np.zeros((n, n), dtype=np.float64)
    for k in range(n):
        ck = 2.0 if k == 0 else 1.0
        for p in range(k + 1, n, 2):
            D[k, p] = 2.0 * p / ck
    return D


def _i1_dense(m: int) -> np.ndarray:
    """Integration on the reference interval; row 0 (integration constant) left zero."""
    I1 = np.zeros((m, m), dtype=np.float64)
    for k in range(1, m):
        I1[k, k - 1] = (2.0 if k == 1 else 1.0) / (2.0 * k)
        if k + 1 < m:
            I1[k, k + 1] = -1.0 / (2.0 * k)
    return I1


# -----------------------------------------------------------------------------
# Square operators
# -----------------------------------------------------------------------------
def identity(rows: int, cols: int, q: int = 0, s: int = 0) -> sp.csr_matrix:
    """Truncation identity: ones at (i, i + s) for q <= i < rows."""
    if rows < 0 or cols < 0 or q < 0 or s < 0:
        raise ValueError(f"Invalid identity parameters rows={rows} cols={cols} q={q} s={s}")
    i = np.arange(q, rows)
    i = i[i + s < cols]
    data = np.ones(i.size, dtype=np.float64)
    return sp.csr_matrix((data, (i, i + s)), shape=(rows, cols))


def d1(n: int, lower: float, upper: float) -> sp.csr_matrix:
    return sp.csr_matrix(_d1_dense(n) / map_scale(lower, upper))


def d2(n: int, lower: float, upper: float) -> sp.csr_matrix:
    D = _d1_dense(n)
    return sp.csr_matrix((D @ D) / map_scale(lower, upper) ** 2)


def d4(n: int, lower: float, upper: float) -> sp.csr_matrix:
    D = _d1_dense(n)
    D2 = D @ D
    return sp.csr_matrix((D2 @ D2) / map_scale(lower, upper) ** 4)


def quasi_inverse(n: int, q: int, lower: float, upper: float, truncate: bool = False) -> sp.csr_matrix:
    """
    Quasi-inverse of order q (q-fold integration).

    Built on n + q modes and cut back to n x n so that it is exact on the span of the
    n retained modes. The first q rows are zero. With truncate=True the last q rows are
    zeroed as well; they couple to modes beyond the truncation.
    """
    if q <= 0:
        raise ValueError(f"Quasi-inverse order must be positive, got {q}")
    m = n + q
    Q = np.linalg.matrix_power(_i1_dense(m), q)[:n, :n] * map_scale(lower, upper) ** q
    Q[: min(q, n), :] = 0.0
    if truncate and n > q:
        Q[n - q:, :] = 0.0
    return sp.csr_matrix(Q)


def i2(n: int, lower: float, upper: float, truncate: bool = False) -> sp.csr_matrix:
    return quasi_inverse(n, 2, lower, upper, truncate=truncate)


def i4(n: int, lower: float, upper: float, truncate: bool = False) -> sp.csr_matrix:
    return quasi_inverse(n, 4, lower, upper, truncate=truncate)


def i2d2(n: int, lower: float, upper: float) -> sp.csr_matrix:
    # I2*D2 reproduces every coefficient except the two integration constants
    return identity(n, n, q=2)


def i4d4(n: int, lower: float, upper: float) -> sp.csr_matrix:
    return identity(n, n, q=4)


def i4d2(n: int, lower: float, upper: float) -> sp.csr_matrix:
    return (identity(n, n, q=4) @ i2(n, lower, upper)).tocsr()


# -----------------------------------------------------------------------------
# Boundary rows
# -----------------------------------------------------------------------------
def boundary_row(kind: BoundaryKind, position: Position, n: int, lower: float, upper: float) -> np.ndarray:
    """Evaluate the boundary functional of `kind` at `position` on T_0..T_{n-1}."""
    kind = BoundaryKind(kind)
    position = Position(position)
    k = np.arange(n, dtype=np.float64)
    parity = np.where(np.arange(n) % 2 == 0, 1.0, -1.0)
    a = map_scale(lower, upper)

    if kind == BoundaryKind.VALUE:
        row = np.ones(n)
        if position == Position.BOTTOM:
            row = parity.copy()
    elif kind == BoundaryKind.D1:
        row = k**2 / a
        if position == Position.BOTTOM:
            row = -parity * row
    elif kind == BoundaryKind.D2:
        row = k**2 * (k**2 - 1.0) / 3.0 / a**2
        if position == Position.BOTTOM:
            row = parity * row
    else:  # pragma: no cover - enum is closed
        raise ValueError(f"Unknown boundary kind '{kind}'")
    return row


class BoundaryOperator:
    """Collects boundary rows and renders them into the leading rows of a rows x cols block."""

    __slots__ = ("rows", "cols", "lower", "upper", "_specs")

    def __init__(self, rows: int, cols: int, lower: float, upper: float) -> None:
        self.rows = int(rows)
        self.cols = int(cols)
        self.lower = float(lower)
        self.upper = float(upper)
        self._specs: List[Tuple[BoundaryKind, Position]] = []

    def add_row(self, kind: BoundaryKind, position: Position) -> None:
        if len(self._specs) >= self.rows:
            raise ValueError(f"BoundaryOperator already holds {self.rows} rows.")
        self._specs.append((BoundaryKind(kind), Position(position)))

    @property
    def n_rows(self) -> int:
        return len(self._specs)

    @property
    def specs(self) -> Tuple[Tuple[BoundaryKind, Position], ...]:
        return tuple(self._specs)

    def mat(self) -> sp.csr_matrix:
        if not self._specs:
            return sp.csr_matrix((self.rows, self.cols), dtype=np.float64)
        block = np.vstack(
            [boundary_row(kind, pos, self.cols, self.lower, self.upper) for kind, pos in self._specs]
        )
        pad = sp.csr_matrix((self.rows - block.shape[0], self.cols), dtype=np.float64)
        return sp.vstack([sp.csr_matrix(block), pad], format="csr")


# -----------------------------------------------------------------------------
# Galerkin stencils
# -----------------------------------------------------------------------------
def stencil(kind: StencilKind, n: int, lower: float, upper: float) -> sp.csr_matrix:
    """
    Basis change from the boundary-satisfying basis to raw Chebyshev coefficients.

    Column k is T_k + sum_{j=1..m} c_j T_{k+j} with c chosen so that the column
    satisfies the m conditions of `kind` at both ends.
    """
    kind = StencilKind(kind)
    m = stencil_size(kind)
    n_gal = n - m
    if n_gal < 0:
        raise ValueError(f"Stencil '{kind.value}' needs at least {m} modes, got n={n}")

    B = np.vstack(
        [
            boundary_row(cond, pos, n, lower, upper)
            for cond in STENCIL_CONDITIONS[kind]
            for pos in (Position.TOP, Position.BOTTOM)
        ]
    )

    rows: List[int] = []
    cols: List[int] = []
    vals: List[float] = []
    for k in range(n_gal):
        c = np.linalg.solve(B[:, k + 1 : k + m + 1], -B[:, k])
        c[np.abs(c) < _STENCIL_ZERO_TOL * max(1.0, float(np.max(np.abs(c))))] = 0.0
        rows.append(k)
        cols.append(k)
        vals.append(1.0)
        for j in np.nonzero(c)[0]:
            rows.append(k + 1 + int(j))
            cols.append(k)
            vals.append(float(c[j]))
    return sp.csr_matrix((vals, (rows, cols)), shape=(n, n_gal))


# -----------------------------------------------------------------------------
# Factory
# -----------------------------------------------------------------------------
def _boundary_pair(kind: BoundaryKind) -> Callable[[int, int, float, float], sp.csr_matrix]:
    def build(size: int, truncated_size: int, lower: float, upper: float) -> sp.csr_matrix:
        op = BoundaryOperator(size, size, lower, upper)
        op.add_row(kind, Position.TOP)
        op.add_row(kind, Position.BOTTOM)
        return op.mat()

    return build


def _stencil_builder(kind: StencilKind) -> Callable[[int, int, float, float], sp.csr_matrix]:
    def build(size: int, truncated_size: int, lower: float, upper: float) -> sp.csr_matrix:
        if truncated_size != size - stencil_size(kind):
            raise ValueError(
                f"Stencil '{kind.value}' maps {size - stencil_size(kind)} -> {size} modes, "
                f"got truncated_size={truncated_size}"
            )
        return stencil(kind, size, lower, upper)

    return build


_FACTORY: Dict[str, Callable[[int, int, float, float], sp.csr_matrix]] = {
    "value": lambda n, t, lo, up: identity(n, n),
    "d1": lambda n, t, lo, up: d1(n, lo, up),
    "d2": lambda n, t, lo, up: d2(n, lo, up),
    "d4": lambda n, t, lo, up: d4(n, lo, up),
    "i2": lambda n, t, lo, up: i2(n, lo, up),
    "i4": lambda n, t, lo, up: i4(n, lo, up),
    "i2d2": lambda n, t, lo, up: i2d2(n, lo, up),
    "i4d2": lambda n, t, lo, up: i4d2(n, lo, up),
    "i4d4": lambda n, t, lo, up: i4d4(n, lo, up),
    "boundary_value": _boundary_pair(BoundaryKind.VALUE),
    "boundary_d1": _boundary_pair(BoundaryKind.D1),
    "boundary_d2": _boundary_pair(BoundaryKind.D2),
    "stencil_value": _stencil_builder(StencilKind.VALUE),
    "stencil_d1": _stencil_builder(StencilKind.D1),
    "stencil_value_d1": _stencil_builder(StencilKind.VALUE_D1),
    "stencil_value_d2": _stencil_builder(StencilKind.VALUE_D2),
    "id": lambda n, t, lo, up: identity(t, n),
}


def make_operator(kind: str, size: int, truncated_size: int, lower: float, upper: float) -> sp.csr_matrix:
    """Build an elementary operator by name (see _FACTORY for the accepted kinds)."""
    key = str(kind).strip().lower()
    try:
        builder = _FACTORY[key]
    except KeyError:
        raise ValueError(f"Unknown basis operator '{kind}'. Available: {sorted(_FACTORY)}") from None
    return builder(int(size), int(truncated_size), float(lower), float(upper))
