"""
Chebyshev basis operators on the linear map z = a*x + b.

Tests:
1. D1/D2/D4 agree with numpy's chebder on the reference interval and scale with 1/a
2. I2*D2, I4*D2, I4*D4 products match the closed forms
3. Quasi-inverse structure (leading zero rows, truncate_qi trailing rows, known entry)
4. Boundary rows evaluate values and derivatives at TOP/BOTTOM
5. Stencil columns satisfy their boundary conditions
6. make_operator dispatch and failures
"""

from __future__ import annotations

import numpy as np
import numpy.polynomial.chebyshev as npc
import pytest

from core import chebyshev as cheb
from core.chebyshev import BoundaryKind, BoundaryOperator, Position, StencilKind


def _coeffs(n: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.standard_normal(n)


def _padded(c: np.ndarray, n: int) -> np.ndarray:
    out = np.zeros(n)
    out[: c.size] = c
    return out


# =============================================================================
# Derivatives
# =============================================================================

@pytest.mark.parametrize("order, op", [(1, cheb.d1), (2, cheb.d2), (4, cheb.d4)])
def test_derivatives_match_chebder_on_reference_interval(order, op):
    n = 10
    c = _coeffs(n)
    got = op(n, -1.0, 1.0) @ c
    expected = _padded(npc.chebder(c, order), n)
    assert np.allclose(got, expected, rtol=1e-10, atol=1e-8)


def test_derivative_scales_with_map_half_width():
    n = 8
    c = _coeffs(n, seed=1)
    ref = cheb.d1(n, -1.0, 1.0) @ c
    assert np.allclose(cheb.d1(n, 0.0, 1.0) @ c, 2.0 * ref)
    assert np.allclose(cheb.d2(n, 0.0, 1.0) @ c, 4.0 * (cheb.d2(n, -1.0, 1.0) @ c))


def test_d1_of_t2_is_four_t1():
    D = cheb.d1(4, -1.0, 1.0).toarray()
    assert D[1, 2] == pytest.approx(4.0)
    assert D[0, 2] == 0.0
    assert D[0, 1] == pytest.approx(1.0)


# =============================================================================
# Quasi-inverses
# =============================================================================

def test_i2_d2_product_is_identity_without_two_rows():
    n = 12
    prod = (cheb.i2(n, 0.0, 1.0) @ cheb.d2(n, 0.0, 1.0)).toarray()
    assert np.allclose(prod, cheb.i2d2(n, 0.0, 1.0).toarray(), atol=1e-8)
    assert np.allclose(cheb.i2d2(n, 0.0, 1.0).toarray(), np.diag([0.0, 0.0] + [1.0] * (n - 2)))


def test_i4_products_match_closed_forms():
    n = 10
    lo, up = 0.0, 1.0
    i4 = cheb.i4(n, lo, up)
    assert np.allclose((i4 @ cheb.d2(n, lo, up)).toarray(), cheb.i4d2(n, lo, up).toarray(), atol=1e-8)
    assert np.allclose((i4 @ cheb.d4(n, lo, up)).toarray(), cheb.i4d4(n, lo, up).toarray(), atol=1e-6)


def test_quasi_inverse_structure():
    n = 9
    I2 = cheb.i2(n, -1.0, 1.0).toarray()
    I4 = cheb.i4(n, -1.0, 1.0).toarray()
    assert not I2[:2].any()
    assert not I4[:4].any()
    # x^2/2 = (T_2 + T_0)/4
    assert I2[2, 0] == pytest.approx(0.25)

    I2t = cheb.i2(n, -1.0, 1.0, truncate=True).toarray()
    assert not I2t[-2:].any()
    assert np.allclose(I2t[2:-2], I2[2:-2])


def test_quasi_inverse_rejects_non_positive_order():
    with pytest.raises(ValueError, match="order"):
        cheb.quasi_inverse(5, 0, 0.0, 1.0)


# =============================================================================
# Boundary rows
# =============================================================================

@pytest.mark.parametrize("position, x", [(Position.TOP, 1.0), (Position.BOTTOM, -1.0)])
def test_boundary_rows_evaluate_at_walls(position, x):
    n = 11
    c = _coeffs(n, seed=3)
    a = 0.5
    value = cheb.boundary_row(BoundaryKind.VALUE, position, n, 0.0, 1.0) @ c
    first = cheb.boundary_row(BoundaryKind.D1, position, n, 0.0, 1.0) @ c
    second = cheb.boundary_row(BoundaryKind.D2, position, n, 0.0, 1.0) @ c
    assert value == pytest.approx(npc.chebval(x, c))
    assert first == pytest.approx(npc.chebval(x, npc.chebder(c)) / a)
    assert second == pytest.approx(npc.chebval(x, npc.chebder(c, 2)) / a**2)


def test_boundary_operator_places_rows_first_and_caps_count():
    op = BoundaryOperator(6, 6, 0.0, 1.0)
    op.add_row(BoundaryKind.VALUE, Position.TOP)
    op.add_row(BoundaryKind.VALUE, Position.BOTTOM)
    mat = op.mat().toarray()
    assert mat.shape == (6, 6)
    assert np.allclose(mat[0], 1.0)
    assert np.allclose(mat[1], [1, -1, 1, -1, 1, -1])
    assert not mat[2:].any()

    small = BoundaryOperator(1, 4, 0.0, 1.0)
    small.add_row(BoundaryKind.D1, Position.TOP)
    with pytest.raises(ValueError, match="already holds"):
        small.add_row(BoundaryKind.D1, Position.BOTTOM)


# =============================================================================
# Stencils
# =============================================================================

@pytest.mark.parametrize("kind", list(StencilKind))
def test_stencil_columns_satisfy_conditions(kind):
    n = 14
    S = cheb.stencil(kind, n, 0.0, 1.0)
    m = cheb.stencil_size(kind)
    assert S.shape == (n, n - m)

    B = np.vstack(
        [
            cheb.boundary_row(cond, pos, n, 0.0, 1.0)
            for cond in cheb.STENCIL_CONDITIONS[kind]
            for pos in (Position.TOP, Position.BOTTOM)
        ]
    )
    residual = B @ S.toarray()
    assert np.allclose(residual, 0.0, atol=1e-9 * np.abs(B).max())

    dense = S.toarray()
    assert np.allclose(np.diag(dense), 1.0)
    assert not np.triu(dense, k=1).any()


def test_stencil_needs_enough_modes():
    with pytest.raises(ValueError, match="at least 4"):
        cheb.stencil(StencilKind.VALUE_D2, 3, 0.0, 1.0)


# =============================================================================
# Factory
# =============================================================================

def test_make_operator_dispatch():
    assert cheb.make_operator("id", 8, 6, 0.0, 1.0).shape == (6, 8)
    assert cheb.make_operator("stencil_value_d1", 8, 4, 0.0, 1.0).shape == (8, 4)
    bnd = cheb.make_operator("boundary_d1", 8, 8, 0.0, 1.0).toarray()
    assert bnd[2:].sum() == 0.0
    assert bnd[0, 1] == pytest.approx(2.0)
    assert np.allclose(cheb.make_operator("D2", 6, 6, 0.0, 1.0).toarray(), cheb.d2(6, 0.0, 1.0).toarray())


def test_make_operator_failures():
    with pytest.raises(ValueError, match="Unknown basis operator"):
        cheb.make_operator("laplacian", 8, 8, 0.0, 1.0)
    with pytest.raises(ValueError, match="truncated_size"):
        cheb.make_operator("stencil_value", 8, 7, 0.0, 1.0)
    with pytest.raises(ValueError, match="Degenerate"):
        cheb.make_operator("d1", 8, 8, 1.0, 1.0)
