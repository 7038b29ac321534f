"""
Unit tests -- filter fragment compiler: dimension clauses, measure clauses,
side restriction, renames and skip auditing.
"""
import pytest

from src.filters.catalog import load_filter_catalog
from src.filters.compiler import (
    compile_dimension_fragment,
    compile_fragments,
    compile_measure_fragment,
    explain_dimension_filters,
    explain_measure_filters,
)
from src.filters.models import DimensionFilter, DimensionKind, FilterSet, MeasureFilter


# ── Dimensions ──────────────────────────────────────────


def test_all_contributes_nothing_even_when_populated():
    flt = DimensionFilter(
        kind=DimensionKind.ALL, values=["001"], contains_text="fin", range_from="1", range_to="9",
    )
    assert compile_dimension_fragment({"dept": flt}) == ""


def test_single_uses_first_value_only():
    flt = DimensionFilter(kind=DimensionKind.SINGLE, values=["001", "002"])
    assert compile_dimension_fragment({"dept": flt}) == " and dept = '001'"


def test_multiple():
    flt = {"type": "multiple", "values": ["100", "200"]}
    assert compile_dimension_fragment({"fund": flt}) == " and fund in ('100','200')"


def test_multiple_without_values_emits_no_empty_in():
    flt = {"type": "multiple", "values": []}
    assert compile_dimension_fragment({"fund": flt}) == ""


def test_contains():
    flt = {"type": "contains", "containsValue": "Admin"}
    assert compile_dimension_fragment({"node": flt}) == " and node like '%Admin%'"


def test_contains_whitespace_only_is_skipped():
    assert compile_dimension_fragment({"node": {"type": "contains", "containsValue": "   "}}) == ""


def test_range():
    flt = {"type": "range", "rangeFrom": "41000", "rangeTo": "49999"}
    assert compile_dimension_fragment({"account": flt}) == " and account between '41000' and '49999'"


def test_range_needs_both_bounds():
    assert compile_dimension_fragment({"account": {"type": "range", "rangeFrom": "41000"}}) == ""


def test_unknown_kind_is_skipped():
    dims = {"dept": {"type": "fuzzy", "values": ["x"]}, "fund": {"type": "single", "values": ["100"]}}
    assert compile_dimension_fragment(dims) == " and fund = '100'"


def test_dimension_clauses_follow_field_order():
    dims = {
        "fund": {"type": "single", "values": ["100"]},
        "dept": {"type": "multiple", "values": ["001"]},
    }
    assert compile_dimension_fragment(dims) == " and fund = '100' and dept in ('001')"


def test_dimension_columns_and_fields():
    dims = {
        "dept": {"type": "single", "values": ["001"]},
        "fund": {"type": "single", "values": ["100"]},
    }
    frag = compile_dimension_fragment(dims, fields=["fund"], columns={"fund": "a.fund_code"})
    assert frag == " and a.fund_code = '100'"


def test_explain_dimension_reports_skips():
    clauses = explain_dimension_filters(
        {"dept": {"type": "bogus"}, "fund": {"type": "single", "values": []}, "node": {"type": "all"}},
        fields=["dept", "fund"],
    )
    by_field = {c.field: c for c in clauses}
    assert by_field["dept"].malformed
    assert not by_field["fund"].malformed
    assert by_field["fund"].skip_reason == "no value selected"
    assert by_field["node"].skip_reason == "not applicable to this side"
    assert not any(c.emitted for c in clauses)


# ── Measures ────────────────────────────────────────────


def test_greater_than_range_closes_with_strict_upper_bound():
    frag = compile_measure_fragment({"budget_amt": {"operator": ">", "range": [10, 20]}})
    assert frag == "where budget_amt > 10 and budget_amt < 20"


def test_greater_or_equal_range_closes_with_inclusive_upper_bound():
    frag = compile_measure_fragment({"budget_amt": {"operator": ">=", "range": [10, 20]}})
    assert frag == "where budget_amt >= 10 and budget_amt <= 20"


@pytest.mark.parametrize("op,upper", [(">", "<"), (">=", "<=")])
@pytest.mark.parametrize("lo,hi", [(0, 0), (0, 1), (-5, 5), (1.5, 2.25), (1000, 1000000)])
def test_interval_operator_pairing(op, upper, lo, hi):
    frag = compile_measure_fragment({"m": MeasureFilter(operator=op, range=[lo, hi])})
    assert frag.startswith(f"where m {op} ")
    assert f" and m {upper} " in frag
    assert frag.count(" and ") == 1


def test_scalar_operators():
    measures = {
        "a": {"operator": "=", "value": 5},
        "b": {"operator": "<", "value": 2.5},
        "c": {"operator": "<=", "value": "7"},
    }
    assert compile_measure_fragment(measures) == "where a = 5 and b < 2.5 and c <= 7"


def test_measure_renames_apply():
    frag = compile_measure_fragment(
        {"expenses": {"operator": "<", "value": 100}}, renames={"expenses": "total_expenses"},
    )
    assert frag == "where total_expenses < 100"


def test_measure_outside_side_is_skipped():
    measures = {
        "rev_amt": {"operator": "=", "value": 1},
        "expenses": {"operator": "=", "value": 2},
    }
    assert compile_measure_fragment(measures, side_keys={"expenses"}) == "where expenses = 2"


def test_incomplete_measures_are_skipped():
    measures = {
        "no_op": {"value": 5},
        "gt_scalar_only": {"operator": ">", "value": 5},
        "eq_range_only": {"operator": "=", "range": [1, 2]},
        "half_range": {"operator": ">=", "range": [1, ""]},
        "bad_value": {"operator": "=", "value": "lots"},
    }
    assert compile_measure_fragment(measures) == ""


def test_non_finite_values_are_skipped():
    clauses = explain_measure_filters({"m": {"operator": "=", "value": float("inf")}})
    assert not clauses[0].emitted
    assert clauses[0].malformed


def test_explain_measure_clause():
    clauses = explain_measure_filters(
        {"budget_amt": {"operator": ">", "range": [1, 2]}}, renames={"budget_amt": "total_budget_amt"},
    )
    assert clauses[0].clause == "total_budget_amt > 1 and total_budget_amt < 2"


def test_no_measures_no_where():
    assert compile_measure_fragment({}) == ""


# ── Whole filter set ────────────────────────────────────


def _sample_set() -> FilterSet:
    return FilterSet.from_raw(
        {
            "dept": {"type": "single", "values": ["001"]},
            "fund": {"type": "multiple", "values": ["100", "200"]},
        },
        {
            "rev_amt": {"operator": ">=", "range": [0, 100]},
            "expenses": {"operator": "<", "value": 50},
            "budget_amt": {"operator": "=", "value": 1000},
        },
    )


def test_compile_fragments_per_side():
    frags = compile_fragments(_sample_set(), load_filter_catalog())
    assert frags.dimension_filter_rev == " and a.fund_code in ('100','200')"
    assert frags.dimension_filter_exp == " and a.deptid = '001' and a.fund_code in ('100','200')"
    assert frags.measures_filter_rev == (
        "where total_rev_amt >= 0 and total_rev_amt <= 100 and total_budget_amt = 1000"
    )
    assert frags.measures_filter_exp == "where total_expenses < 50 and total_budget_amt = 1000"
    assert frags.measures_requested_rev is None
    assert frags.measures_requested_exp is None


def test_compile_fragments_empty_set():
    frags = compile_fragments(FilterSet())
    assert frags.dimension_filter_rev == ""
    assert frags.measures_filter_exp == ""


def test_compilation_is_idempotent():
    fs = _sample_set()
    assert compile_fragments(fs) == compile_fragments(fs)
    dims = fs.dimension_filters
    assert compile_dimension_fragment(dims) == compile_dimension_fragment(dims)
    measures = fs.measure_filters
    assert compile_measure_fragment(measures) == compile_measure_fragment(measures)
