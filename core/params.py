"""
Read-only boundary-condition and nondimensional-parameter maps.

Principles:
- Maps are built once per run and handed to every assembly call as read-only views;
  nothing in the backend copies or mutates them.
- Keys and values given as strings (YAML, CLI) are normalized to the enums of core.types.
- Completeness is a precondition: a missing entry raises MissingParameterError, never a default.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Union

from core.types import BcName, NonDimensional, PhysicalName

logger = logging.getLogger(__name__)


class MissingParameterError(KeyError):
    """Raised when a boundary condition or nondimensional parameter is absent."""


def _as_physical_name(key: Union[str, PhysicalName]) -> PhysicalName:
    if isinstance(key, PhysicalName):
        return key
    try:
        return PhysicalName(str(key).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown physical field '{key}'. Known: {[p.value for p in PhysicalName]}") from exc


def _as_bc_name(value: Union[str, BcName]) -> BcName:
    if isinstance(value, BcName):
        return value
    try:
        return BcName(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"Unknown boundary condition '{value}'. Known: {[b.value for b in BcName]}") from exc


def _as_nd_name(key: Union[str, NonDimensional]) -> NonDimensional:
    if isinstance(key, NonDimensional):
        return key
    try:
        return NonDimensional(str(key).strip().lower())
    except ValueError as exc:
        raise ValueError(
            f"Unknown nondimensional parameter '{key}'. Known: {[n.value for n in NonDimensional]}"
        ) from exc


class BcMap(Mapping[PhysicalName, BcName]):
    """Physical field -> boundary-condition kind."""

    __slots__ = ("_data",)

    def __init__(self, raw: Mapping[Any, Any]) -> None:
        data = {_as_physical_name(k): _as_bc_name(v) for k, v in raw.items()}
        self._data = MappingProxyType(data)

    def __getitem__(self, key: Union[str, PhysicalName]) -> BcName:
        return self.lookup(key)

    def __iter__(self) -> Iterator[PhysicalName]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        items = ", ".join(f"{k.value}={v.value}" for k, v in self._data.items())
        return f"BcMap({items})"

    def lookup(self, key: Union[str, PhysicalName]) -> BcName:
        name = _as_physical_name(key)
        try:
            return self._data[name]
        except KeyError:
            logger.error("No boundary condition registered for field '%s'.", name.value)
            raise MissingParameterError(f"No boundary condition registered for field '{name.value}'") from None


class NdMap(Mapping[NonDimensional, float]):
    """Nondimensional parameter -> value."""

    __slots__ = ("_data",)

    def __init__(self, raw: Mapping[Any, Any]) -> None:
        data = {_as_nd_name(k): float(v) for k, v in raw.items()}
        self._data = MappingProxyType(data)

    def __getitem__(self, key: Union[str, NonDimensional]) -> float:
        return self.lookup(key)

    def __iter__(self) -> Iterator[NonDimensional]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        items = ", ".join(f"{k.value}={v:g}" for k, v in self._data.items())
        return f"NdMap({items})"

    def lookup(self, key: Union[str, NonDimensional]) -> float:
        name = _as_nd_name(key)
        try:
            return self._data[name]
        except KeyError:
            logger.error("Nondimensional parameter '%s' is missing.", name.value)
            raise MissingParameterError(f"Nondimensional parameter '{name.value}' is missing") from None

    def merged(self, extra: Mapping[Any, Any]) -> "NdMap":
        """Return a new map with `extra` added; existing entries win."""
        raw = {k: v for k, v in extra.items()}
        raw.update(self._data)
        return NdMap(raw)


def as_bc_map(bcs: Mapping[Any, Any]) -> BcMap:
    return bcs if isinstance(bcs, BcMap) else BcMap(bcs)


def as_nd_map(nds: Mapping[Any, Any]) -> NdMap:
    return nds if isinstance(nds, NdMap) else NdMap(nds)


def domain_bounds(nds: NdMap) -> tuple[float, float]:
    """(lower, upper) of the wall-normal domain."""
    lower = nds.lookup(NonDimensional.LOWER1D)
    upper = nds.lookup(NonDimensional.UPPER1D)
    if not upper > lower:
        raise ValueError(f"Degenerate z-domain: lower1d={lower}, upper1d={upper}")
    return lower, upper
