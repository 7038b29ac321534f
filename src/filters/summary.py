"""
Human-readable summary of a filter set, recorded as the user's chat turn
whenever filters are applied.
"""
from __future__ import annotations

from src.filters.catalog import FilterCatalog, load_filter_catalog
from src.filters.models import DimensionFilter, DimensionKind, FilterSet, MeasureFilter, MeasureOperator


def _format_amount(n: float) -> str:
    if float(n).is_integer():
        return f"{int(n):,}"
    return f"{n:,.2f}"


def _describe_dimension(label: str, flt: DimensionFilter) -> str | None:
    if flt.kind is DimensionKind.SINGLE and flt.values:
        return f"{label}: {flt.values[0]}"
    if flt.kind is DimensionKind.MULTIPLE and flt.values:
        return f"{label}: {len(flt.values)} selected"
    if flt.kind is DimensionKind.CONTAINS and flt.contains_text.strip():
        return f'{label}: contains "{flt.contains_text}"'
    if flt.kind is DimensionKind.RANGE and flt.range_from and flt.range_to:
        return f"{label}: {flt.range_from} - {flt.range_to}"
    return None


def _describe_measure(label: str, flt: MeasureFilter) -> str | None:
    op = flt.operator
    if op is None:
        return None
    if op.is_interval:
        bounds = flt.bounds
        if bounds is not None:
            return f"{label}: {_format_amount(bounds[0])} - {_format_amount(bounds[1])}"
        return None
    if flt.value is None:
        return None
    if op is MeasureOperator.EQUALS:
        return f"{label}: equals {_format_amount(flt.value)}"
    return f"{label}: {op.value} {_format_amount(flt.value)}"


def describe_filters(
    filter_set: FilterSet,
    chat_message: str | None = None,
    catalog: FilterCatalog | None = None,
) -> str:
    """Bullet-list summary of the active filters; ``"All"`` when nothing is set."""
    if catalog is None:
        catalog = load_filter_catalog()

    text = (chat_message or "").strip()
    if filter_set.is_empty() and not text:
        return "All"

    sections: list[str] = []

    dims: list[str] = []
    for name, flt in filter_set.dimension_filters.items():
        line = _describe_dimension(catalog.dimension_label(name), flt)
        if line:
            dims.append(line)
    if dims:
        sections.append("Selected Dimension Filters:\n" + "\n".join(f"• {d}" for d in dims))

    measures: list[str] = []
    for key, flt in filter_set.measure_filters.items():
        line = _describe_measure(catalog.measure_label(key), flt)
        if line:
            measures.append(line)
    if measures:
        sections.append("Selected Measure Filters:\n" + "\n".join(f"• {m}" for m in measures))

    if text:
        sections.append(text)

    return "\n\n".join(sections) if sections else "All"
