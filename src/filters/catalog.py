"""
Loads, parses, and caches the filter catalog YAML into strongly-typed objects.

The filter catalog is the single source of truth for:
  - dimension fields  (panel name -> backend column, side membership)
  - measure fields    (internal key -> backend column, side membership)
  - the table alias dimension columns are qualified with
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

_CATALOG_PATH = Path(__file__).resolve().parents[2] / "semantic_layer" / "filter_catalog.yml"


class Side(str, Enum):
    REVENUE = "rev"
    EXPENSE = "exp"


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class DimensionField:
    name: str
    column: str
    label: str
    sides: frozenset[Side] = field(default_factory=frozenset)


@dataclass(frozen=True)
class MeasureField:
    key: str
    column: str
    label: str
    sides: frozenset[Side] = field(default_factory=frozenset)


@dataclass
class FilterCatalog:
    """Fully parsed filter vocabulary."""

    version: int
    table_alias: str
    dimensions: dict[str, DimensionField]   # keyed by panel name, catalog order
    measures: dict[str, MeasureField]       # keyed by internal key, catalog order

    # ── Convenience look-ups ─────────────────────────

    def dimension(self, name: str) -> DimensionField | None:
        return self.dimensions.get(name)

    def measure(self, key: str) -> MeasureField | None:
        return self.measures.get(key)

    def dimension_fields(self, side: Side) -> list[str]:
        return [d.name for d in self.dimensions.values() if side in d.sides]

    def measure_keys(self, side: Side) -> frozenset[str]:
        return frozenset(m.key for m in self.measures.values() if side in m.sides)

    def dimension_columns(self) -> dict[str, str]:
        """Panel name -> qualified column (``a.deptid``)."""
        prefix = f"{self.table_alias}." if self.table_alias else ""
        return {d.name: f"{prefix}{d.column}" for d in self.dimensions.values()}

    def measure_renames(self) -> dict[str, str]:
        """Internal measure key -> backend column name."""
        return {m.key: m.column for m in self.measures.values()}

    def measure_label(self, key: str) -> str:
        m = self.measures.get(key)
        if m is not None:
            return m.label
        return " ".join(word.capitalize() for word in key.split("_"))

    def dimension_label(self, name: str) -> str:
        d = self.dimensions.get(name)
        if d is not None:
            return d.label
        return name[:1].upper() + name[1:]

    def get_catalog_dict(self) -> dict[str, Any]:
        """Return the catalog as plain dicts (for API responses)."""
        return {
            "table_alias": self.table_alias,
            "dimensions": [
                {
                    "name": d.name,
                    "column": d.column,
                    "label": d.label,
                    "sides": sorted(s.value for s in d.sides),
                }
                for d in self.dimensions.values()
            ],
            "measures": [
                {
                    "key": m.key,
                    "column": m.column,
                    "label": m.label,
                    "sides": sorted(s.value for s in m.sides),
                }
                for m in self.measures.values()
            ],
        }


# ── Parsing ──────────────────────────────────────────────

def _parse_sides(raw: list[str] | None) -> frozenset[Side]:
    return frozenset(Side(s) for s in (raw or []))


def _parse_dimension(raw: dict[str, Any]) -> DimensionField:
    return DimensionField(
        name=raw["name"],
        column=raw.get("column", raw["name"]),
        label=raw.get("label", raw["name"]),
        sides=_parse_sides(raw.get("sides")),
    )


def _parse_measure(raw: dict[str, Any]) -> MeasureField:
    return MeasureField(
        key=raw["key"],
        column=raw.get("column", raw["key"]),
        label=raw.get("label", raw["key"]),
        sides=_parse_sides(raw.get("sides")),
    )


def parse_catalog(raw_yaml: dict[str, Any]) -> FilterCatalog:
    dimensions = {d["name"]: _parse_dimension(d) for d in raw_yaml.get("dimensions", [])}
    measures = {m["key"]: _parse_measure(m) for m in raw_yaml.get("measures", [])}
    return FilterCatalog(
        version=raw_yaml.get("version", 1),
        table_alias=raw_yaml.get("table_alias", ""),
        dimensions=dimensions,
        measures=measures,
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_filter_catalog() -> FilterCatalog:
    """Load and cache the filter catalog from YAML."""
    with open(_CATALOG_PATH, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return parse_catalog(raw)
