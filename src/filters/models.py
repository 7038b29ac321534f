"""
Filter model -- the structured state behind the dimension/measure filter panels.

Field aliases accept the UI's wire names (``type``, ``containsValue``,
``rangeFrom``, ``rangeTo``) so panel state can be validated as-is and echoed
back to the backend in the same shape.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.core.logging import get_logger

logger = get_logger(__name__)


class DimensionKind(str, Enum):
    ALL = "all"
    SINGLE = "single"
    MULTIPLE = "multiple"
    CONTAINS = "contains"
    RANGE = "range"


class MeasureOperator(str, Enum):
    """Relational operator of a measure filter.

    ``GREATER_THAN`` and ``GREATER_OR_EQUAL`` take a ``[low, high]`` pair and
    describe a bounded interval: the upper bound is closed with ``<`` or
    ``<=`` respectively.  The other operators take a single ``value``.
    """

    EQUALS = "="
    GREATER_THAN = ">"
    GREATER_OR_EQUAL = ">="
    LESS_THAN = "<"
    LESS_OR_EQUAL = "<="

    @property
    def is_interval(self) -> bool:
        return self in (MeasureOperator.GREATER_THAN, MeasureOperator.GREATER_OR_EQUAL)

    @property
    def upper_bound(self) -> "MeasureOperator | None":
        if self is MeasureOperator.GREATER_THAN:
            return MeasureOperator.LESS_THAN
        if self is MeasureOperator.GREATER_OR_EQUAL:
            return MeasureOperator.LESS_OR_EQUAL
        return None


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class DimensionFilter(BaseModel):
    """Selection on one categorical field; only the part chosen by ``kind`` is active."""

    model_config = ConfigDict(populate_by_name=True)

    kind: DimensionKind = Field(DimensionKind.ALL, alias="type")
    values: list[str] = Field(default_factory=list)
    contains_text: str = Field("", alias="containsValue")
    range_from: str = Field("", alias="rangeFrom")
    range_to: str = Field("", alias="rangeTo")

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, v: Any) -> Any:
        if v is None:
            return DimensionKind.ALL
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("values", mode="before")
    @classmethod
    def _stringify_values(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, (str, int, float)):
            v = [v]
        if isinstance(v, list):
            return [str(item) for item in v if item is not None]
        return v

    @field_validator("contains_text", "range_from", "range_to", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        if v is None:
            return ""
        return str(v) if isinstance(v, (int, float)) else v


class MeasureFilter(BaseModel):
    """Threshold or interval on one numeric measure."""

    operator: MeasureOperator | None = None
    value: float | None = None
    range: list[float | None] | None = None

    @field_validator("operator", "value", mode="before")
    @classmethod
    def _blank(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator("range", mode="before")
    @classmethod
    def _blank_range(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        if isinstance(v, (list, tuple)):
            return [_blank_to_none(item) for item in v]
        return v

    @property
    def bounds(self) -> tuple[float, float] | None:
        """The ``(low, high)`` pair when ``range`` is well-formed, else None."""
        if self.range is None or len(self.range) != 2:
            return None
        low, high = self.range
        if low is None or high is None:
            return None
        return (low, high)


class FilterSet(BaseModel):
    """All filter selections of one chat session."""

    model_config = ConfigDict(populate_by_name=True)

    dimension_filters: dict[str, DimensionFilter] = Field(
        default_factory=dict, alias="dimensionFilters",
    )
    measure_filters: dict[str, MeasureFilter] = Field(
        default_factory=dict, alias="measureFilters",
    )

    def is_empty(self) -> bool:
        return not self.dimension_filters and not self.measure_filters

    @classmethod
    def from_raw(
        cls,
        dimension_filters: Mapping[str, Any] | None = None,
        measure_filters: Mapping[str, Any] | None = None,
    ) -> "FilterSet":
        """Build a FilterSet from panel state, dropping entries that don't parse."""
        dims: dict[str, DimensionFilter] = {}
        for field, raw in (dimension_filters or {}).items():
            parsed, reason = coerce_dimension_filter(raw)
            if parsed is None:
                logger.info("Dropping dimension filter %s: %s", field, reason)
                continue
            dims[field] = parsed

        measures: dict[str, MeasureFilter] = {}
        for key, raw in (measure_filters or {}).items():
            parsed, reason = coerce_measure_filter(raw)
            if parsed is None:
                logger.info("Dropping measure filter %s: %s", key, reason)
                continue
            measures[key] = parsed

        return cls(dimension_filters=dims, measure_filters=measures)

    def to_wire(self) -> dict[str, Any]:
        """JSON shape the backend expects under ``dimensionFilters``/``measureFilters``."""
        return {
            "dimensionFilters": {
                k: f.model_dump(mode="json", by_alias=True)
                for k, f in self.dimension_filters.items()
            },
            "measureFilters": {
                k: f.model_dump(mode="json", exclude_none=True)
                for k, f in self.measure_filters.items()
            },
        }


class CompiledQueryFragments(BaseModel):
    """Query fragments derived from a FilterSet; recomputed wholesale, never patched."""

    model_config = ConfigDict(frozen=True)

    measures_requested_rev: str | None = None
    dimension_filter_rev: str = ""
    measures_filter_rev: str = ""
    measures_requested_exp: str | None = None
    dimension_filter_exp: str = ""
    measures_filter_exp: str = ""

    def as_request_fields(self) -> dict[str, str | None]:
        """Fragment fields of a report-generation request; empty fragments travel as null."""
        return {
            "measures_requested_rev": self.measures_requested_rev,
            "dimension_filter_rev": self.dimension_filter_rev or None,
            "measures_filter_rev": self.measures_filter_rev or None,
            "measures_requested_exp": self.measures_requested_exp,
            "dimension_filter_exp": self.dimension_filter_exp or None,
            "measures_filter_exp": self.measures_filter_exp or None,
        }


# ── Lenient coercion ────────────────────────────────────

def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ())) or "filter"
    return f"malformed {loc}: {err.get('msg', 'invalid')}"


def coerce_dimension_filter(raw: Any) -> tuple[DimensionFilter | None, str | None]:
    """Return ``(filter, None)`` or ``(None, skip_reason)``; never raises."""
    if isinstance(raw, DimensionFilter):
        return raw, None
    if not isinstance(raw, Mapping):
        return None, f"malformed filter: expected an object, got {type(raw).__name__}"
    try:
        return DimensionFilter.model_validate(dict(raw)), None
    except ValidationError as exc:
        return None, _first_error(exc)


def coerce_measure_filter(raw: Any) -> tuple[MeasureFilter | None, str | None]:
    """Return ``(filter, None)`` or ``(None, skip_reason)``; never raises."""
    if isinstance(raw, MeasureFilter):
        return raw, None
    if not isinstance(raw, Mapping):
        return None, f"malformed filter: expected an object, got {type(raw).__name__}"
    try:
        return MeasureFilter.model_validate(dict(raw)), None
    except ValidationError as exc:
        return None, _first_error(exc)
