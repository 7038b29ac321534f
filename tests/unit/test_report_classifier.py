"""
Unit tests -- report output classifier: response shapes, file markers,
path selection and URL construction.
"""
from src.reports.classifier import (
    SUPPRESSED_MESSAGE,
    BackendReply,
    ReplyKind,
    classify_message,
    classify_response,
    is_suppressed_message,
    parse_response,
    tabular_rows,
)

BASE = "http://reports.test"


def _classify(raw, user="alice", session="s1"):
    return classify_response(raw, user, session, BASE)


# ── Response shapes ─────────────────────────────────────


def test_text_for_output_rows():
    result = _classify({"data": [{"text_for_output": "Hello"}]})
    assert result.has_report is False
    assert result.message == "Hello"
    assert result.report_url is None


def test_text_for_output_rows_are_joined():
    raw = {"data": [{"text_for_output": "Line 1"}, {"other": 1}, {"text_for_output": "Line 2\n"}]}
    assert parse_response(raw).message == "Line 1\nLine 2"


def test_tabular_rows_message():
    result = _classify({"data": [{"amount": 5}, {"amount": 7}]})
    assert result.has_report is False
    assert result.message == "Data retrieved successfully. Showing 2 records."
    assert result.report_url is None


def test_single_row_message():
    assert parse_response({"data": [{"amount": 5}]}).message == (
        "Data retrieved successfully. Showing 1 record."
    )


def test_tabular_rows_are_exposed():
    raw = {"data": [{"amount": 5}, {"amount": 7}]}
    reply = parse_response(raw)
    assert reply.kind is ReplyKind.TABULAR
    assert tabular_rows(raw) == [{"amount": 5}, {"amount": 7}]
    assert tabular_rows({"data": [{"text_for_output": "x"}]}) == []


def test_plain_string_response():
    reply = parse_response("just text")
    assert reply.kind is ReplyKind.TEXT
    assert reply.message == "just text"


def test_report_field_wins_over_reply():
    assert parse_response({"report": "from report", "reply": "from reply"}).message == "from report"
    assert parse_response({"report": "", "reply": "from reply"}).message == "from reply"


def test_empty_data_falls_back_to_reply():
    assert parse_response({"data": [], "reply": "fallback"}).message == "fallback"


def test_session_only_response():
    reply = parse_response({"session_id": "abc"})
    assert reply.kind is ReplyKind.SESSION
    assert reply.session_id == "abc"
    assert reply.message == ""


def test_unknown_shapes_are_empty():
    assert parse_response(None).kind is ReplyKind.EMPTY
    assert parse_response({}).kind is ReplyKind.EMPTY
    assert parse_response(42).kind is ReplyKind.EMPTY


def test_parsed_reply_passes_through():
    reply = BackendReply(kind=ReplyKind.TEXT, message="hi")
    assert parse_response(reply) is reply


# ── File detection ──────────────────────────────────────


def test_csv_report_detected():
    result = _classify({"reply": "Done.\nCSV: /out/dept.csv\nJSON: 0"})
    assert result.has_report is True
    assert result.filename == "dept.csv"
    assert result.report_url == f"{BASE}/load/outputs/alice/s1/dept.csv"
    assert result.message == "Done.\nCSV: /out/dept.csv\nJSON: 0"


def test_csv_preferred_over_earlier_paths():
    msg = "📂 Files saved:\nJSON: out/r.json\nCSV: out/r.csv\nExcel: out/r.xlsx"
    assert classify_message(msg, "bob", "s2", BASE).filename == "r.csv"


def test_first_path_when_no_csv():
    msg = "📂 Files saved:\nCSV: None\nJSON: out/r.json\nExcel: out/r.xlsx"
    result = classify_message(msg, "bob", "s2", BASE)
    assert result.filename == "r.json"
    assert result.report_url == f"{BASE}/load/outputs/bob/s2/r.json"


def test_windows_paths():
    msg = "CSV: C:\\reports\\out\\budget.csv"
    assert classify_message(msg, "bob", "s2", BASE).filename == "budget.csv"


def test_only_placeholders_is_not_a_report():
    msg = "📂 Files saved:\nCSV: None\nJSON: 0"
    result = classify_message(msg, "bob", "s2", BASE)
    assert result.has_report is False
    assert result.message == msg
    assert result.report_url is None


def test_marker_without_path_is_not_a_report():
    result = _classify({"reply": "SQL Output: rows were returned"})
    assert result.has_report is False


def test_no_markers_is_plain_text():
    result = _classify({"reply": "Your report covers fiscal 2024."})
    assert result.has_report is False
    assert result.filename is None


def test_empty_message():
    result = _classify({})
    assert result.has_report is False
    assert result.message == ""


def test_chart_path_counts():
    result = classify_message("📂 Hierarchical Files:\nChart: out/chart.json", "bob", "s2", BASE)
    assert result.filename == "chart.json"


# ── Sentinel prompt ─────────────────────────────────────


def test_sentinel_classifies_as_text():
    result = _classify({"reply": SUPPRESSED_MESSAGE})
    assert result.has_report is False
    assert result.message == SUPPRESSED_MESSAGE


def test_sentinel_detection_trims():
    assert is_suppressed_message("  Please enter your user ID (default: Guest):\n")
    assert not is_suppressed_message("Please enter your user ID")
    assert not is_suppressed_message(None)
