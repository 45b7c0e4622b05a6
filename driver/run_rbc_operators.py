"""
Driver that assembles every Rayleigh-Benard operator of a case and writes them to disk.

Responsibilities:
- Load CaseConfig from YAML (unknown keys rejected).
- Build resolution, parameter maps and the model backend.
- For every horizontal index tuple and every equation, assemble the time, implicit, boundary,
  explicit and stencil operators in the configured boundary scheme.
- Log shapes/nnz, write each operator with scipy.sparse.save_npz and a JSON summary.
"""

from __future__ import annotations

import argparse
import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import scipy.sparse as sp
import yaml

from assembly.model_backend import ModelBackend
from core.layout import build_coupling
from core.logging_utils import get_log_level_from_env, is_root_rank, setup_logging
from core.params import as_bc_map, as_nd_map
from core.resolution import Resolution
from core.types import (
    VELOCITY_POL,
    BcName,
    BcScheme,
    CaseBackend,
    CaseBoundary,
    CaseConfig,
    CaseMeta,
    CaseOutput,
    CasePhysics,
    CaseResolution,
    FieldId,
    ModelOperator,
)
from physics.rbc_model import DECLARED_FIELDS

logger = logging.getLogger(__name__)

_ALLOWED_KEYS: Dict[str, set] = {
    "": {"case", "resolution", "physics", "boundary", "backend", "output"},
    "case": {"id", "title", "notes"},
    "resolution": {"nz", "n_k1", "n_k2", "box_scale"},
    "physics": {"prandtl", "rayleigh"},
    "boundary": {"velocity", "temperature"},
    "backend": {"bc_scheme", "truncate_qi", "split_equation"},
    "output": {"out_dir", "write_npz"},
}


# -----------------------------------------------------------------------------
# YAML loader
# -----------------------------------------------------------------------------
def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def _check_keys(section: str, raw: Mapping[str, Any]) -> None:
    if not isinstance(raw, Mapping):
        raise ValueError(f"Config section '{section or '<root>'}' must be a mapping, got {type(raw).__name__}")
    unknown = set(raw) - _ALLOWED_KEYS[section]
    if unknown:
        raise ValueError(
            f"Unsupported keys in '{section or '<root>'}': {sorted(unknown)}. "
            f"Allowed: {sorted(_ALLOWED_KEYS[section])}"
        )


def _load_case_config(cfg_path: str | Path) -> CaseConfig:
    """Load YAML file into CaseConfig with nested dataclasses."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file)) or {}
    base = cfg_file.parent
    _check_keys("", raw)
    for section in _ALLOWED_KEYS:
        if section and section in raw:
            _check_keys(section, raw[section] or {})

    case_cfg = CaseMeta(**raw["case"])

    res_raw = raw["resolution"]
    box_scale = res_raw.get("box_scale", (1.0, 1.0))
    if isinstance(box_scale, (int, float)):
        box_scale = (box_scale, box_scale)
    res_cfg = CaseResolution(
        nz=int(res_raw["nz"]),
        n_k1=int(res_raw["n_k1"]),
        n_k2=int(res_raw["n_k2"]),
        box_scale=(float(box_scale[0]), float(box_scale[1])),
    )

    phys_raw = raw["physics"]
    phys_cfg = CasePhysics(prandtl=float(phys_raw["prandtl"]), rayleigh=float(phys_raw["rayleigh"]))

    bnd_raw = raw.get("boundary") or {}
    bnd_cfg = CaseBoundary(
        velocity=BcName(bnd_raw.get("velocity", BcName.NO_SLIP.value)),
        temperature=BcName(bnd_raw.get("temperature", BcName.FIXED_TEMPERATURE.value)),
    )

    be_raw = raw.get("backend") or {}
    be_cfg = CaseBackend(
        bc_scheme=BcScheme(str(be_raw.get("bc_scheme", BcScheme.TAU.value)).lower()),
        truncate_qi=bool(be_raw.get("truncate_qi", False)),
        split_equation=bool(be_raw.get("split_equation", False)),
    )

    out_cfg = None
    if "output" in raw:
        out_raw = raw["output"] or {}
        out_cfg = CaseOutput(
            out_dir=_resolve_path(base, out_raw.get("out_dir", "out")),
            write_npz=bool(out_raw.get("write_npz", True)),
        )

    return CaseConfig(
        case=case_cfg,
        resolution=res_cfg,
        physics=phys_cfg,
        boundary=bnd_cfg,
        backend=be_cfg,
        output=out_cfg,
    )


def _prepare_run_dir(cfg: CaseConfig, cfg_path: str | Path) -> Path:
    """Create per-run output directory and copy cfg yaml into it."""
    if cfg.output is None:
        raise ValueError("Case has no output block; nothing to write.")
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(cfg.output.out_dir) / cfg.case.id / stamp
    run_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(cfg_path, run_dir / "config.yaml")
    return run_dir


# -----------------------------------------------------------------------------
# Assembly
# -----------------------------------------------------------------------------
def _operator_plan(cfg: CaseConfig, fid: FieldId) -> List[ModelOperator]:
    ops = [
        ModelOperator.TIME,
        ModelOperator.IMPLICIT_LINEAR,
        ModelOperator.BOUNDARY,
        ModelOperator.EXPLICIT_LINEAR,
        ModelOperator.EXPLICIT_NONLINEAR,
    ]
    if cfg.backend.bc_scheme == BcScheme.GALERKIN:
        ops.append(ModelOperator.STENCIL)
    if cfg.backend.split_equation and fid == VELOCITY_POL:
        ops += [ModelOperator.SPLIT_IMPLICIT_LINEAR, ModelOperator.SPLIT_BOUNDARY_VALUE]
    return ops


def _file_tag(op: ModelOperator, fid: FieldId, eigs: Tuple[int, int]) -> str:
    return f"{op.value}__{fid.name.value}_{fid.comp.value}__k{eigs[0]}_{eigs[1]}"


def assemble_case(cfg: CaseConfig, run_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Assemble all operators of `cfg`; write them under run_dir when given. Returns the summary."""
    res = Resolution.from_config(cfg.resolution)
    backend = ModelBackend(cfg.backend.options())
    bcs = as_bc_map(cfg.boundary_map())
    nds = as_nd_map(cfg.nondimensional()).merged(backend.automatic_parameters())
    scheme = cfg.backend.bc_scheme

    summary: Dict[str, Any] = {
        "case": cfg.case.id,
        "bc_scheme": scheme.value,
        "options": {
            "truncate_qi": cfg.backend.truncate_qi,
            "split_equation": cfg.backend.split_equation,
        },
        "fields": {},
    }
    for fid in DECLARED_FIELDS:
        coupling = build_coupling(backend.implicit_fields(fid), res)
        info = backend.operator_info(fid, res, coupling, bcs)
        entries = []
        for mat_idx, _ in coupling:
            eigs = coupling.get_indexes(res, mat_idx)
            for op in _operator_plan(cfg, fid):
                mat = backend.model_matrix(op, coupling.fields, mat_idx, scheme, res, eigs, bcs, nds)
                logger.info(
                    "%-22s %-22s k=%s shape=%s nnz=%d",
                    op.value, str(fid), eigs, mat.shape, mat.real.nnz + mat.imag.nnz,
                )
                tag = _file_tag(op, fid, eigs)
                if run_dir is not None:
                    sp.save_npz(run_dir / f"{tag}.npz", mat.tocomplex())
                entries.append(
                    {
                        "operator": op.value,
                        "eigs": list(eigs),
                        "shape": list(mat.shape),
                        "nnz": int(mat.real.nnz + mat.imag.nnz),
                        "file": f"{tag}.npz" if run_dir is not None else None,
                    }
                )
        summary["fields"][str(fid)] = {
            "tau_n": info.tau_n.tolist(),
            "gal_n": info.gal_n.tolist(),
            "rhs_cols": info.rhs_cols.tolist(),
            "operators": entries,
        }
    return summary


def run_case(cfg_path: str | Path, *, bc_scheme: Optional[str] = None, dry_run: bool = False) -> int:
    rank = 0 if is_root_rank() else 1
    setup_logging(rank, level=get_log_level_from_env("INFO"))

    cfg = _load_case_config(cfg_path)
    if bc_scheme is not None:
        cfg.backend = CaseBackend(
            bc_scheme=BcScheme(bc_scheme),
            truncate_qi=cfg.backend.truncate_qi,
            split_equation=cfg.backend.split_equation,
        )
    logger.info(
        "Case '%s': nz=%d n_k1=%d n_k2=%d Pr=%g Ra=%g scheme=%s",
        cfg.case.id, cfg.resolution.nz, cfg.resolution.n_k1, cfg.resolution.n_k2,
        cfg.physics.prandtl, cfg.physics.rayleigh, cfg.backend.bc_scheme.value,
    )

    write = (not dry_run) and cfg.output is not None and cfg.output.write_npz
    run_dir = _prepare_run_dir(cfg, cfg_path) if write else None
    summary = assemble_case(cfg, run_dir)

    if run_dir is not None:
        (run_dir / "summary.json").write_text(json.dumps(summary, indent=2), encoding="utf-8")
        logger.info("Wrote operators and summary to %s", run_dir)
    return 0


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assemble Rayleigh-Benard plane-layer operators for a case.")
    parser.add_argument("case_yaml", help="Path to case YAML file.")
    parser.add_argument(
        "--bc_scheme",
        choices=tuple(s.value for s in BcScheme),
        default=None,
        help="Override boundary scheme (default: use YAML).",
    )
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Assemble and log only; write nothing.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    return run_case(args.case_yaml, bc_scheme=args.bc_scheme, dry_run=args.dry_run)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
