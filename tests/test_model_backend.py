"""
End-to-end checks of the model backend facade.

Tests:
1. equation_info / metadata
2. Tau and Galerkin implicit matrices at nz=8, index tuple (2, 3)
3. Coupled matrices are block diagonal with layout offsets
4. Time, boundary, explicit (linear/nonlinear/nextstep) and stencil kinds
5. Poloidal mean mode and split formulation blocks
6. Missing parameters and unsupported combinations fail fast
7. Repeated and concurrent assembly give identical matrices
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from assembly.model_backend import IModelBackend, ModelBackend
from core import chebyshev as cheb
from core.params import MissingParameterError
from core.resolution import Resolution
from core.types import (
    TEMPERATURE,
    VELOCITY_POL,
    VELOCITY_TOR,
    BackendOptions,
    BcScheme,
    IndexMode,
    ModelOperator,
)
from physics.rbc_model import ModelConfigurationError

NZ = 8
EIGS = (2, 3)
K2 = 13.0
PR = 0.7
RA = 2000.0
ALL_FIELDS = [VELOCITY_TOR, VELOCITY_POL, TEMPERATURE]


def _res() -> Resolution:
    return Resolution(nz=NZ, n_k1=3, n_k2=8)


def _bcs():
    return {"velocity": "stress_free", "temperature": "fixed_temperature"}


def _nds():
    return {"prandtl": PR, "rayleigh": RA}


def _matrix(backend, op, fields, scheme=BcScheme.TAU, eigs=EIGS, bcs=None, nds=None):
    return backend.model_matrix(
        op, fields, 0, scheme, _res(), eigs, bcs if bcs is not None else _bcs(), nds if nds is not None else _nds()
    )


# =============================================================================
# Metadata
# =============================================================================

def test_backend_metadata_and_equation_info():
    backend = ModelBackend()
    assert isinstance(backend, IModelBackend)
    assert backend.field_names() == ["velocity", "temperature"]
    assert backend.param_names() == ["prandtl", "rayleigh"]
    assert backend.is_periodic_box() == [False, True, True]
    info = backend.equation_info(TEMPERATURE, _res())
    assert info.is_complex and info.has_qi and not info.has_source
    assert info.index_mode == IndexMode.MODE
    assert info.block_size == NZ
    assert not info.is_split_equation
    assert ModelBackend(BackendOptions(split_equation=True)).equation_info(VELOCITY_POL, _res()).is_split_equation
    assert backend.explicit_fields(ModelOperator.EXPLICIT_LINEAR, VELOCITY_POL) == [TEMPERATURE]


# =============================================================================
# Implicit
# =============================================================================

def test_tau_temperature_block_has_value_rows_then_operator():
    mat = _matrix(ModelBackend(), ModelOperator.IMPLICIT_LINEAR, [TEMPERATURE])
    assert mat.shape == (NZ, NZ)
    dense = mat.real.toarray()
    assert np.allclose(dense[0], 1.0)
    assert np.allclose(dense[1], [(-1.0) ** k for k in range(NZ)])
    lap = (cheb.i2d2(NZ, 0.0, 1.0) - K2 * cheb.i2(NZ, 0.0, 1.0)).toarray() / PR
    assert np.allclose(dense[2:], lap[2:])
    assert mat.imag.nnz == 0


def test_galerkin_temperature_block_is_square_reduced():
    backend = ModelBackend()
    mat = _matrix(backend, ModelOperator.IMPLICIT_LINEAR, [TEMPERATURE], BcScheme.GALERKIN)
    assert mat.shape == (6, 6)
    S = backend.galerkin_stencil(TEMPERATURE, _res(), EIGS, False, _bcs(), _nds())
    lap = (cheb.i2d2(NZ, 0.0, 1.0) - K2 * cheb.i2(NZ, 0.0, 1.0)) / PR
    assert np.allclose(mat.real.toarray(), (lap @ S).toarray()[2:])


@pytest.mark.parametrize("scheme, sizes", [(BcScheme.TAU, (8, 8, 8)), (BcScheme.GALERKIN, (6, 4, 6))])
def test_coupled_implicit_matrix_is_block_diagonal(scheme, sizes):
    backend = ModelBackend()
    full = _matrix(backend, ModelOperator.IMPLICIT_LINEAR, ALL_FIELDS, scheme).real.toarray()
    assert full.shape == (sum(sizes), sum(sizes))
    offsets = np.cumsum((0,) + sizes)
    for i, fid in enumerate(ALL_FIELDS):
        blk = _matrix(backend, ModelOperator.IMPLICIT_LINEAR, [fid], scheme).real.toarray()
        sl = slice(offsets[i], offsets[i + 1])
        assert np.array_equal(full[sl, sl], blk)
        rest = full[sl].copy()
        rest[:, sl] = 0.0
        assert not rest.any()


# =============================================================================
# Time / boundary / stencil
# =============================================================================

def test_time_matrix_tau_keeps_zero_rows():
    mat = _matrix(ModelBackend(), ModelOperator.TIME, [VELOCITY_POL]).real.toarray()
    expected = (cheb.i4d2(NZ, 0.0, 1.0) - K2 * cheb.i4(NZ, 0.0, 1.0)).toarray()
    assert np.allclose(mat, expected)
    assert not mat[:4].any()


def test_boundary_matrix():
    backend = ModelBackend()
    tau = _matrix(backend, ModelOperator.BOUNDARY, [VELOCITY_TOR]).real.toarray()
    assert tau.shape == (NZ, NZ)
    assert np.allclose(tau[0], 2.0 * np.arange(NZ) ** 2)
    assert not tau[2:].any()
    gal = _matrix(backend, ModelOperator.BOUNDARY, [VELOCITY_TOR], BcScheme.GALERKIN)
    assert gal.shape == (6, 6)
    assert gal.real.nnz == 0


def test_stencil_matrix_is_block_diagonal_rectangular():
    mat = _matrix(ModelBackend(), ModelOperator.STENCIL, ALL_FIELDS)
    assert mat.shape == (24, 16)
    dense = mat.real.toarray()
    assert not dense[:8, 6:].any()
    assert not dense[8:16, :6].any()


# =============================================================================
# Explicit
# =============================================================================

def test_explicit_linear_buoyancy_and_advection_of_background():
    backend = ModelBackend()
    pol = _matrix(backend, ModelOperator.EXPLICIT_LINEAR, [VELOCITY_POL]).real.toarray()
    assert np.allclose(pol, -(RA / PR) * cheb.i4(NZ, 0.0, 1.0).toarray())
    temp = _matrix(backend, ModelOperator.EXPLICIT_LINEAR, [TEMPERATURE]).real.toarray()
    assert np.allclose(temp, K2 * cheb.i2(NZ, 0.0, 1.0).toarray())
    both = _matrix(backend, ModelOperator.EXPLICIT_LINEAR, [VELOCITY_POL, TEMPERATURE]).real.toarray()
    # columns are ordered (pol, temperature)
    assert np.allclose(both[:NZ, NZ:], pol)
    assert np.allclose(both[NZ:, :NZ], temp)
    assert not both[:NZ, :NZ].any()

    gal = _matrix(backend, ModelOperator.EXPLICIT_LINEAR, [VELOCITY_POL], BcScheme.GALERKIN)
    assert gal.shape == (4, 6)


def test_explicit_nonlinear_and_nextstep():
    backend = ModelBackend(BackendOptions(truncate_qi=True))
    tor = _matrix(backend, ModelOperator.EXPLICIT_NONLINEAR, [VELOCITY_TOR]).real.toarray()
    assert np.allclose(tor, cheb.i2(NZ, 0.0, 1.0, truncate=True).toarray())
    assert not tor[-2:].any()
    gal = _matrix(backend, ModelOperator.EXPLICIT_NONLINEAR, [VELOCITY_POL], BcScheme.GALERKIN)
    assert gal.shape == (4, NZ)
    nxt = _matrix(backend, ModelOperator.EXPLICIT_NEXTSTEP, ALL_FIELDS)
    assert nxt.shape == (24, 0)


def test_unsupported_explicit_block():
    backend = ModelBackend()
    with pytest.raises(ModelConfigurationError, match="explicit_linear"):
        backend.explicit_block(VELOCITY_TOR, ModelOperator.EXPLICIT_LINEAR, TEMPERATURE, _res(), EIGS, _nds())
    with pytest.raises(ModelConfigurationError):
        backend.explicit_block(TEMPERATURE, ModelOperator.TIME, TEMPERATURE, _res(), EIGS, _nds())


# =============================================================================
# Mean mode and split formulation
# =============================================================================

def test_poloidal_mean_mode():
    backend = ModelBackend()
    implicit = _matrix(backend, ModelOperator.IMPLICIT_LINEAR, [VELOCITY_POL], eigs=(0, 0)).real.toarray()
    # stress-free mean mode: two first-derivative rows on top of I2
    assert np.allclose(implicit[0], 2.0 * np.arange(NZ) ** 2)
    assert np.allclose(implicit[2:], cheb.i2(NZ, 0.0, 1.0).toarray()[2:])
    assert _matrix(backend, ModelOperator.TIME, [VELOCITY_POL], eigs=(0, 0)).real.nnz == 0
    assert _matrix(backend, ModelOperator.EXPLICIT_LINEAR, [VELOCITY_POL], eigs=(0, 0)).real.nnz == 0


def test_split_formulation_blocks():
    backend = ModelBackend(BackendOptions(split_equation=True))
    bcs = {"velocity": "no_slip", "temperature": "fixed_temperature"}
    primary = _matrix(backend, ModelOperator.IMPLICIT_LINEAR, [VELOCITY_POL], bcs=bcs).real.toarray()
    secondary = _matrix(backend, ModelOperator.SPLIT_IMPLICIT_LINEAR, [VELOCITY_POL], bcs=bcs).real.toarray()
    lap = (cheb.i2d2(NZ, 0.0, 1.0) - K2 * cheb.i2(NZ, 0.0, 1.0)).toarray()
    assert np.allclose(primary[2:], lap[2:])
    assert np.allclose(secondary[2:], lap[2:])
    assert np.allclose(primary[0], 2.0 * np.arange(NZ) ** 2)
    assert np.allclose(secondary[0], 1.0)

    bnd = _matrix(backend, ModelOperator.SPLIT_BOUNDARY_VALUE, [VELOCITY_POL], bcs=bcs)
    assert bnd.shape == (2, NZ)
    assert np.allclose(bnd.real.toarray(), primary[:2])

    with pytest.raises(ModelConfigurationError, match="Tau"):
        _matrix(backend, ModelOperator.SPLIT_BOUNDARY_VALUE, [VELOCITY_POL], BcScheme.GALERKIN, bcs=bcs)
    with pytest.raises(ModelConfigurationError, match="split poloidal"):
        _matrix(backend, ModelOperator.IMPLICIT_LINEAR, [VELOCITY_POL], BcScheme.GALERKIN, bcs=bcs)
    with pytest.raises(ModelConfigurationError, match="split formulation"):
        _matrix(ModelBackend(), ModelOperator.SPLIT_BOUNDARY_VALUE, [VELOCITY_POL], bcs=bcs)


# =============================================================================
# Failures
# =============================================================================

def test_missing_parameters_fail_fast():
    backend = ModelBackend()
    with pytest.raises(MissingParameterError, match="prandtl"):
        _matrix(backend, ModelOperator.IMPLICIT_LINEAR, [TEMPERATURE], nds={"rayleigh": RA})
    with pytest.raises(MissingParameterError, match="temperature"):
        _matrix(backend, ModelOperator.TIME, [TEMPERATURE], bcs={"velocity": "no_slip"})
    with pytest.raises(ValueError, match="at least one field"):
        _matrix(backend, ModelOperator.TIME, [])


# =============================================================================
# Determinism
# =============================================================================

def _assemble_all(backend, eigs):
    out = []
    for op in (ModelOperator.IMPLICIT_LINEAR, ModelOperator.TIME, ModelOperator.EXPLICIT_LINEAR):
        for scheme in BcScheme:
            out.append(_matrix(backend, op, ALL_FIELDS, scheme, eigs=eigs).real.toarray())
    return out


def test_repeated_and_concurrent_assembly_is_identical():
    backend = ModelBackend()
    tuples = _res().index_tuples()
    serial = [_assemble_all(backend, eigs) for eigs in tuples]
    again = [_assemble_all(backend, eigs) for eigs in tuples]
    with ThreadPoolExecutor(max_workers=4) as pool:
        threaded = list(pool.map(lambda eigs: _assemble_all(backend, eigs), tuples))
    for a, b, c in zip(serial, again, threaded):
        for x, y, z in zip(a, b, c):
            assert np.array_equal(x, y)
            assert np.array_equal(x, z)
