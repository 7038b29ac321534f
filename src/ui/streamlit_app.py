"""
Streamlit UI -- AI Reporting Agent.

Features:
  - Login by user name; retry on initialization failure
  - Report parameter form (budget year, fund codes, departments)
  - Sidebar dimension / measure filter editors
  - Chat transcript with report, chart and download links
  - Tabular replies rendered with pandas, with CSV download
  - Clear chat / new session

All state lives in the API; this page only renders the session snapshot.
"""
import httpx
import pandas as pd
import streamlit as st

from src.core.config import get_settings
from src.reports.urls import chart_url, export_url

settings = get_settings()
API_BASE = settings.api_base
_TIMEOUT = settings.http_timeout

_KIND_LABELS = {
    "all": "All",
    "single": "Single value",
    "multiple": "Multiple values",
    "contains": "Contains",
    "range": "Range",
}
_OPERATORS = ["", "=", ">", ">=", "<", "<="]

st.set_page_config(
    page_title="AI Reporting Agent",
    page_icon="bar_chart",
    layout="wide",
    initial_sidebar_state="expanded",
)


if "handle" not in st.session_state:
    st.session_state.handle = None

if "snapshot" not in st.session_state:
    st.session_state.snapshot = None

if "catalog" not in st.session_state:
    st.session_state.catalog = None


def _call(method: str, path: str, **kwargs) -> dict | None:
    """Call the API; show the error and return None on failure."""
    try:
        resp = httpx.request(method, f"{API_BASE}{path}", timeout=_TIMEOUT, **kwargs)
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        st.error("Cannot reach the API. Start it with:\n```\nuvicorn src.api.main:app --reload\n```")
    except httpx.HTTPStatusError as exc:
        st.error(f"API returned {exc.response.status_code}: {exc.response.text}")
    except httpx.HTTPError as exc:
        st.error(f"Request failed: {exc}")
    return None


def _session_call(method: str, suffix: str = "", **kwargs) -> None:
    data = _call(method, f"/sessions/{st.session_state.handle}{suffix}", **kwargs)
    if data is not None:
        st.session_state.snapshot = data


def _options(kind: str, **params) -> list | dict:
    data = _call("GET", f"/sessions/{st.session_state.handle}/options/{kind}", params=params)
    return data.get("options", []) if data else []


def _load_catalog():
    st.session_state.catalog = _call("GET", "/filters/catalog")


# ── Login ───────────────────────────────────────────────

st.title("AI Reporting Agent")

if st.session_state.handle is None:
    with st.form("login"):
        user_name = st.text_input("User name", value="Guest")
        submitted = st.form_submit_button("Start chat")
    if submitted and user_name.strip():
        with st.spinner("Connecting to the reporting service..."):
            data = _call("POST", "/sessions", json={"user_name": user_name.strip()})
        if data is not None:
            st.session_state.handle = data["handle"]
            st.session_state.snapshot = data
            st.rerun()
    st.stop()

snap = st.session_state.snapshot
session = snap["session"]

if st.session_state.catalog is None:
    _load_catalog()
catalog = st.session_state.catalog or {"dimensions": [], "measures": []}


# ── Sidebar: session controls and filters ───────────────

with st.sidebar:
    st.subheader(f"👤 {session['user_name']}")
    st.caption(f"Session: {session['api_session_id'] or '(not connected)'}")

    c1, c2 = st.columns(2)
    if c1.button("Clear chat", use_container_width=True):
        _session_call("POST", "/clear")
        st.rerun()
    if c2.button("New session", use_container_width=True):
        with st.spinner("Starting a new session..."):
            _session_call("POST", "/restart")
        st.rerun()

    st.divider()

    filters_available = snap["state"] in ("awaiting_parameters", "parameters_submitted")
    if filters_available:
        st.title("Filters")
        current = snap["filters"]
        lookup = _options("dimensions") if session["api_session_id"] else {}
        options = lookup.get("dimensions", {}) if isinstance(lookup, dict) else {}

        st.subheader("Dimensions")
        dimension_filters: dict[str, dict] = {}
        for d in catalog["dimensions"]:
            name = d["name"]
            prev = current["dimensionFilters"].get(name, {})
            kinds = list(_KIND_LABELS)
            kind = st.selectbox(
                d["label"],
                kinds,
                index=kinds.index(prev.get("type", "all")),
                format_func=_KIND_LABELS.get,
                key=f"dim_kind_{name}",
                help=f"Applies to: {', '.join(d['sides'])}",
            )
            codes = [o.get("code") for o in options.get(d["column"], [])]
            entry: dict = {"type": kind}
            if kind == "single":
                choices = codes or prev.get("values", [])
                picked = st.selectbox("Value", choices, key=f"dim_single_{name}") if choices else None
                entry["values"] = [picked] if picked else []
            elif kind == "multiple":
                entry["values"] = st.multiselect(
                    "Values", codes, default=[v for v in prev.get("values", []) if v in codes],
                    key=f"dim_multi_{name}",
                )
            elif kind == "contains":
                entry["containsValue"] = st.text_input(
                    "Contains", value=prev.get("containsValue", ""), key=f"dim_contains_{name}",
                )
            elif kind == "range":
                r1, r2 = st.columns(2)
                entry["rangeFrom"] = r1.text_input("From", value=prev.get("rangeFrom", ""), key=f"dim_from_{name}")
                entry["rangeTo"] = r2.text_input("To", value=prev.get("rangeTo", ""), key=f"dim_to_{name}")
            dimension_filters[name] = entry

        st.subheader("Measures")
        measure_filters: dict[str, dict] = {}
        for m in catalog["measures"]:
            key = m["name"]
            prev = current["measureFilters"].get(key, {})
            op = st.selectbox(
                f"{m['label']} ({', '.join(m['sides'])})",
                _OPERATORS,
                index=_OPERATORS.index(prev.get("operator", "")),
                key=f"msr_op_{key}",
            )
            if not op:
                continue
            if op in (">", ">="):
                lo, hi = (list(prev.get("range") or []) + [None, None])[:2]
                r1, r2 = st.columns(2)
                low = r1.number_input("Low", value=lo, key=f"msr_lo_{key}")
                high = r2.number_input("High", value=hi, key=f"msr_hi_{key}")
                measure_filters[key] = {"operator": op, "range": [low, high]}
            else:
                value = st.number_input("Value", value=prev.get("value"), key=f"msr_val_{key}")
                measure_filters[key] = {"operator": op, "value": value}

        f1, f2 = st.columns(2)
        if f1.button("Apply filters", type="primary", use_container_width=True):
            with st.spinner("Applying filters..."):
                _session_call(
                    "PUT", "/filters",
                    json={"dimensionFilters": dimension_filters, "measureFilters": measure_filters},
                )
            st.rerun()
        if f2.button("Clear all", use_container_width=True):
            _session_call("DELETE", "/filters")
            st.rerun()

    st.divider()
    st.caption("AI Reporting Agent v0.1")


# ── Initialization failure ──────────────────────────────

if snap["state"] == "error":
    st.error(snap["init_error"] or "Initialization failed.")
    if st.button("Retry"):
        with st.spinner("Retrying..."):
            _session_call("POST", "/retry")
        st.rerun()


# ── Transcript ──────────────────────────────────────────


def _render_table(rows: list[dict], key: str):
    df = pd.DataFrame(rows)
    st.dataframe(df, use_container_width=True)
    st.download_button(
        "Download CSV",
        df.to_csv(index=False),
        file_name="report_data.csv",
        mime="text/csv",
        key=f"dl_{key}",
    )


def _render_message(msg: dict):
    with st.chat_message("user" if msg["is_user"] else "assistant"):
        st.markdown(msg["text"])
        if msg.get("type") == "report" and msg.get("report_url"):
            st.markdown(f"📄 [Open report]({msg['report_url']})")
            charts = chart_url(settings.report_base_url, session["user_name"], session["api_session_id"])
            st.markdown(f"📊 [Open charts]({charts})")
            filename = msg["report_url"].rsplit("/", 1)[-1]
            download = export_url(settings.report_base_url, session["user_name"], session["api_session_id"], filename)
            st.markdown(f"⬇️ [Download {filename}]({download})")
        if msg.get("table_data"):
            _render_table(msg["table_data"], msg["id"])


if snap["chat_cleared"] and not snap["messages"]:
    st.info("Chat cleared. Submit report parameters to start again.")

for msg in snap["messages"]:
    _render_message(msg)


# ── Parameter form ──────────────────────────────────────

if snap["state"] == "awaiting_parameters":
    with st.expander("Report parameters", expanded=True):
        years = _options("budget-years")
        year = st.selectbox("Budget year", years) if years else st.text_input("Budget year")
        funds = _options("fund-codes", year=year) if year else []
        fund_labels = {code: f"{code} - {label}" for code, label in funds}
        fund_codes = st.multiselect("Fund codes", list(fund_labels), format_func=fund_labels.get)
        depts = _options("departments", year=year, fund_codes=fund_codes) if fund_codes else []
        dept_labels = {code: f"{code} - {label}" for code, label in depts}
        departments = st.multiselect("Departments", list(dept_labels), format_func=dept_labels.get)
        selection = st.radio("Report", ["Current Version"], horizontal=True)

        if st.button("Generate report", type="primary", disabled=not year):
            payload = {
                "budget_year": str(year),
                "fund_codes": fund_codes,
                "departments": departments,
                "report_selection": selection,
            }
            with st.spinner("Generating report..."):
                _session_call("POST", "/parameters", json=payload)
            st.rerun()


# ── Chat input ──────────────────────────────────────────

prompt = st.chat_input(
    "Ask about your report..." if snap["chat_enabled"] else "Submit report parameters to start chatting",
    disabled=not snap["chat_enabled"],
)
if prompt:
    with st.spinner("Thinking..."):
        _session_call("POST", "/messages", json={"text": prompt})
    st.rerun()
