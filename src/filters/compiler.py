"""
Filter fragment compiler -- turns filter selections into query fragments.

Two fragment grammars are produced:

  dimension fragment   `` and a.deptid in ('001','002') and a.fund_code = '100'``
                       appended after an existing predicate, so it never
                       carries a ``where``.
  measure fragment     ``where total_budget_amt >= 10 and total_budget_amt <= 20``

Each is compiled once for the revenue query and once for the expense query;
side membership and column names come from the filter catalog.

The compiler never raises.  Partial or malformed selections are normal while
a user is still editing a panel, so they are skipped (and logged) field by
field.  ``explain_*`` expose the per-field outcome for auditing.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Collection, Iterable, Mapping

from src.filters.catalog import FilterCatalog, Side, load_filter_catalog
from src.filters.models import (
    CompiledQueryFragments,
    DimensionFilter,
    DimensionKind,
    FilterSet,
    MeasureFilter,
    coerce_dimension_filter,
    coerce_measure_filter,
)
from src.core.logging import get_logger

logger = get_logger(__name__)

_OFF_SIDE = "not applicable to this side"


@dataclass(frozen=True)
class FieldClause:
    """Outcome of compiling one field: a clause, or the reason it was skipped."""

    field: str
    clause: str | None = None
    skip_reason: str | None = None
    malformed: bool = False

    @property
    def emitted(self) -> bool:
        return self.clause is not None


def _format_number(n: float) -> str:
    if float(n).is_integer():
        return str(int(n))
    return repr(float(n))


def _log_skips(kind: str, clauses: Iterable[FieldClause]) -> None:
    for c in clauses:
        if c.malformed:
            logger.info("Skipping %s filter %s: %s", kind, c.field, c.skip_reason)
        elif c.skip_reason and c.skip_reason != _OFF_SIDE:
            logger.debug("No %s clause for %s: %s", kind, c.field, c.skip_reason)


# ── Dimensions ───────────────────────────────────────────

def _dimension_clause(field: str, column: str, flt: DimensionFilter) -> FieldClause:
    kind = flt.kind

    if kind is DimensionKind.ALL:
        return FieldClause(field, skip_reason="no restriction")

    if kind is DimensionKind.SINGLE:
        if not flt.values:
            return FieldClause(field, skip_reason="no value selected")
        return FieldClause(field, clause=f" and {column} = '{flt.values[0]}'")

    if kind is DimensionKind.MULTIPLE:
        if not flt.values:
            return FieldClause(field, skip_reason="no values selected")
        joined = ",".join(f"'{v}'" for v in flt.values)
        return FieldClause(field, clause=f" and {column} in ({joined})")

    if kind is DimensionKind.CONTAINS:
        if not flt.contains_text.strip():
            return FieldClause(field, skip_reason="empty search text")
        return FieldClause(field, clause=f" and {column} like '%{flt.contains_text}%'")

    if kind is DimensionKind.RANGE:
        if not flt.range_from.strip() or not flt.range_to.strip():
            return FieldClause(field, skip_reason="range needs both bounds")
        return FieldClause(
            field,
            clause=f" and {column} between '{flt.range_from}' and '{flt.range_to}'",
        )

    return FieldClause(field, skip_reason=f"unsupported kind {kind!r}", malformed=True)


def explain_dimension_filters(
    dimension_filters: Mapping[str, Any],
    fields: Collection[str] | None = None,
    columns: Mapping[str, str] | None = None,
) -> list[FieldClause]:
    """Per-field outcome, in the mapping's iteration order.

    Parameters
    ----------
    dimension_filters : Mapping
        Field name -> DimensionFilter (or raw panel dict).
    fields : Collection[str], optional
        Restrict compilation to these fields (one side of the report).
    columns : Mapping[str, str], optional
        Field name -> column emitted in the clause.  Unmapped fields are
        emitted under their own name.
    """
    columns = columns or {}
    results: list[FieldClause] = []
    for field, raw in dimension_filters.items():
        if fields is not None and field not in fields:
            results.append(FieldClause(field, skip_reason=_OFF_SIDE))
            continue
        flt, reason = coerce_dimension_filter(raw)
        if flt is None:
            results.append(FieldClause(field, skip_reason=reason, malformed=True))
            continue
        results.append(_dimension_clause(field, columns.get(field, field), flt))
    return results


def compile_dimension_fragment(
    dimension_filters: Mapping[str, Any],
    fields: Collection[str] | None = None,
    columns: Mapping[str, str] | None = None,
) -> str:
    """Concatenate the `` and ...`` clauses of every contributing field ('' if none)."""
    clauses = explain_dimension_filters(dimension_filters, fields, columns)
    _log_skips("dimension", clauses)
    return "".join(c.clause for c in clauses if c.clause)


# ── Measures ─────────────────────────────────────────────

def _measure_clause(key: str, column: str, flt: MeasureFilter) -> FieldClause:
    op = flt.operator
    if op is None:
        return FieldClause(key, skip_reason="missing operator")

    if op.is_interval:
        bounds = flt.bounds
        if bounds is None:
            return FieldClause(key, skip_reason=f"operator {op.value} needs a [low, high] range")
        low, high = bounds
        if not (math.isfinite(low) and math.isfinite(high)):
            return FieldClause(key, skip_reason="range is not finite", malformed=True)
        upper = op.upper_bound
        return FieldClause(
            key,
            clause=(
                f"{column} {op.value} {_format_number(low)} "
                f"and {column} {upper.value} {_format_number(high)}"
            ),
        )

    if flt.value is None:
        return FieldClause(key, skip_reason=f"operator {op.value} needs a value")
    if not math.isfinite(flt.value):
        return FieldClause(key, skip_reason="value is not finite", malformed=True)
    return FieldClause(key, clause=f"{column} {op.value} {_format_number(flt.value)}")


def explain_measure_filters(
    measure_filters: Mapping[str, Any],
    side_keys: Collection[str] | None = None,
    renames: Mapping[str, str] | None = None,
) -> list[FieldClause]:
    """Per-measure outcome, in the mapping's iteration order."""
    renames = renames or {}
    results: list[FieldClause] = []
    for key, raw in measure_filters.items():
        flt, reason = coerce_measure_filter(raw)
        if flt is None:
            results.append(FieldClause(key, skip_reason=reason, malformed=True))
            continue
        if flt.operator is not None and side_keys is not None and key not in side_keys:
            results.append(FieldClause(key, skip_reason=_OFF_SIDE))
            continue
        results.append(_measure_clause(key, renames.get(key, key), flt))
    return results


def compile_measure_fragment(
    measure_filters: Mapping[str, Any],
    side_keys: Collection[str] | None = None,
    renames: Mapping[str, str] | None = None,
) -> str:
    """``where <clause> and <clause> ...`` over the emitted clauses, or ''."""
    clauses = explain_measure_filters(measure_filters, side_keys, renames)
    _log_skips("measure", clauses)
    emitted = [c.clause for c in clauses if c.clause]
    if not emitted:
        return ""
    return "where " + " and ".join(emitted)


# ── Whole filter set ─────────────────────────────────────

def compile_fragments(
    filter_set: FilterSet,
    catalog: FilterCatalog | None = None,
) -> CompiledQueryFragments:
    """Compile all four fragments (dimension/measure x revenue/expense)."""
    if catalog is None:
        catalog = load_filter_catalog()

    columns = catalog.dimension_columns()
    renames = catalog.measure_renames()
    dims = filter_set.dimension_filters
    measures = filter_set.measure_filters

    fragments = CompiledQueryFragments(
        dimension_filter_rev=compile_dimension_fragment(
            dims, catalog.dimension_fields(Side.REVENUE), columns,
        ),
        measures_filter_rev=compile_measure_fragment(
            measures, catalog.measure_keys(Side.REVENUE), renames,
        ),
        dimension_filter_exp=compile_dimension_fragment(
            dims, catalog.dimension_fields(Side.EXPENSE), columns,
        ),
        measures_filter_exp=compile_measure_fragment(
            measures, catalog.measure_keys(Side.EXPENSE), renames,
        ),
    )
    logger.debug("Compiled fragments: %s", fragments.model_dump())
    return fragments
