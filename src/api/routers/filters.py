"""
GET /filters/catalog, POST /filters/compile -- filter vocabulary and fragment preview.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field

from src.filters.catalog import Side, load_filter_catalog
from src.filters.compiler import (
    FieldClause,
    compile_fragments,
    explain_dimension_filters,
    explain_measure_filters,
)
from src.filters.models import FilterSet
from src.filters.summary import describe_filters

router = APIRouter()


class CatalogField(BaseModel):
    name: str
    column: str
    label: str
    sides: list[str]


class FilterCatalogResponse(BaseModel):
    table_alias: str
    dimensions: list[CatalogField]
    measures: list[CatalogField]


class CompileRequest(BaseModel):
    """Raw panel state; entries that don't parse are reported, not rejected."""

    model_config = ConfigDict(populate_by_name=True)

    dimension_filters: dict[str, Any] = Field(default_factory=dict, alias="dimensionFilters")
    measure_filters: dict[str, Any] = Field(default_factory=dict, alias="measureFilters")
    chat_message: str | None = None


class SkippedField(BaseModel):
    side: str
    kind: str  # dimension | measure
    field: str
    reason: str
    malformed: bool


class CompileResponse(BaseModel):
    fragments: dict[str, str]
    skipped: list[SkippedField]
    summary: str


def _skipped(side: Side, kind: str, clauses: list[FieldClause]) -> list[SkippedField]:
    return [
        SkippedField(
            side=side.value, kind=kind, field=c.field,
            reason=c.skip_reason or "", malformed=c.malformed,
        )
        for c in clauses
        if not c.emitted
    ]


@router.get("/catalog", response_model=FilterCatalogResponse)
def filter_catalog() -> FilterCatalogResponse:
    """Dimension and measure fields with the report sides they apply to."""
    data = load_filter_catalog().get_catalog_dict()
    return FilterCatalogResponse(
        table_alias=data["table_alias"],
        dimensions=[CatalogField(**d) for d in data["dimensions"]],
        measures=[
            CatalogField(name=m["key"], column=m["column"], label=m["label"], sides=m["sides"])
            for m in data["measures"]
        ],
    )


@router.post("/compile", response_model=CompileResponse)
def compile_preview(req: CompileRequest) -> CompileResponse:
    """Compile panel state to query fragments without touching any session."""
    catalog = load_filter_catalog()
    columns = catalog.dimension_columns()
    renames = catalog.measure_renames()

    skipped: list[SkippedField] = []
    for side in (Side.REVENUE, Side.EXPENSE):
        skipped += _skipped(
            side, "dimension",
            explain_dimension_filters(req.dimension_filters, catalog.dimension_fields(side), columns),
        )
        skipped += _skipped(
            side, "measure",
            explain_measure_filters(req.measure_filters, catalog.measure_keys(side), renames),
        )

    filter_set = FilterSet.from_raw(req.dimension_filters, req.measure_filters)
    fragments = compile_fragments(filter_set, catalog)
    return CompileResponse(
        fragments={
            "dimension_filter_rev": fragments.dimension_filter_rev,
            "measures_filter_rev": fragments.measures_filter_rev,
            "dimension_filter_exp": fragments.dimension_filter_exp,
            "measures_filter_exp": fragments.measures_filter_exp,
        },
        skipped=skipped,
        summary=describe_filters(filter_set, req.chat_message, catalog),
    )
