"""
Report output classifier -- decides what a backend response means for the UI.

The report backend answers in several historical shapes:

  "plain text"                          legacy string reply
  {"data": [{...}, ...]}                tabular rows (or rows carrying text_for_output)
  {"report": "..."} / {"reply": "..."}  message text, possibly naming saved files
  {"session_id": "..."}                 session handshake only

``parse_response`` folds all of them into one ``BackendReply`` at the API
boundary; ``classify_response`` then scans the message for saved-file
markers and, when a usable file path is named, builds the report URL.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field

from src.core.config import get_settings
from src.core.logging import get_logger
from src.reports.urls import report_url as build_report_url

logger = get_logger(__name__)

# Backend prompt that is already answered by the login handshake; never shown.
SUPPRESSED_MESSAGE = "Please enter your user ID (default: Guest):"

_FILE_MARKERS = (
    "📂 Files saved:",
    "📂 Hierarchical Files:",
    "SQL Output:",
    "CSV:",
    "JSON:",
    "Excel:",
    "XML:",
)

_FILE_PATH_RE = re.compile(r"(?:CSV|JSON|Excel|XML|Chart):\s*([^\r\n]+)")
_PLACEHOLDER_PATHS = frozenset({"None", "0"})
_PATH_SEP_RE = re.compile(r"[\\/]")


class ReplyKind(str, Enum):
    TEXT = "text"
    TABULAR = "tabular"
    SESSION = "session"
    EMPTY = "empty"


class BackendReply(BaseModel):
    """One backend response, normalised."""

    kind: ReplyKind
    message: str = ""
    rows: list[dict[str, Any]] = Field(default_factory=list)
    session_id: str | None = None


class ReportDetectionResult(BaseModel):
    has_report: bool = False
    message: str = ""
    report_url: str | None = None
    filename: str | None = None


def is_suppressed_message(text: str | None) -> bool:
    return text is not None and text.strip() == SUPPRESSED_MESSAGE


def _data_message(rows: list[Any]) -> str:
    texts = [
        str(r["text_for_output"])
        for r in rows
        if isinstance(r, Mapping) and r.get("text_for_output") is not None
    ]
    if any(isinstance(r, Mapping) and "text_for_output" in r for r in rows):
        return "\n".join(texts).strip()
    n = len(rows)
    noun = "record" if n == 1 else "records"
    return f"Data retrieved successfully. Showing {n} {noun}."


def parse_response(raw: Any) -> BackendReply:
    """Normalise any backend response shape into a ``BackendReply``."""
    if isinstance(raw, BackendReply):
        return raw
    if isinstance(raw, str):
        return BackendReply(kind=ReplyKind.TEXT, message=raw)
    if not isinstance(raw, Mapping):
        return BackendReply(kind=ReplyKind.EMPTY)

    session_id = raw.get("session_id")
    if not isinstance(session_id, str) or not session_id:
        session_id = None

    data = raw.get("data")
    if isinstance(data, list) and data:
        message = _data_message(data)
        first = data[0]
        if isinstance(first, Mapping) and "text_for_output" not in first:
            rows = [dict(r) for r in data if isinstance(r, Mapping)]
            return BackendReply(
                kind=ReplyKind.TABULAR, message=message, rows=rows, session_id=session_id,
            )
        return BackendReply(kind=ReplyKind.TEXT, message=message, session_id=session_id)

    for key in ("report", "reply"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            return BackendReply(kind=ReplyKind.TEXT, message=value, session_id=session_id)

    if session_id:
        return BackendReply(kind=ReplyKind.SESSION, session_id=session_id)
    return BackendReply(kind=ReplyKind.EMPTY)


def tabular_rows(raw: Any) -> list[dict[str, Any]]:
    """Rows to render as a table, or [] when the response carries none."""
    reply = parse_response(raw)
    return reply.rows if reply.kind is ReplyKind.TABULAR else []


def _select_file_path(message: str) -> str | None:
    paths = [m.strip() for m in _FILE_PATH_RE.findall(message)]
    usable = [p for p in paths if p and p not in _PLACEHOLDER_PATHS]
    if not usable:
        return None
    for p in usable:
        if ".csv" in p:
            return p
    return usable[0]


def classify_message(
    message: str,
    user_name: str,
    session_id: str,
    report_base: str | None = None,
) -> ReportDetectionResult:
    """Classify resolved message text as a file-backed report or plain text."""
    if not message or not any(marker in message for marker in _FILE_MARKERS):
        return ReportDetectionResult(has_report=False, message=message or "")

    target = _select_file_path(message)
    filename = _PATH_SEP_RE.split(target.rstrip("\\/"))[-1] if target else ""
    if not filename:
        logger.info("File markers found but no usable file path in reply")
        return ReportDetectionResult(has_report=False, message=message)

    if report_base is None:
        report_base = get_settings().report_base_url
    url = build_report_url(report_base, user_name, session_id, filename)
    logger.info("Report detected  file=%s  url=%s", filename, url)
    return ReportDetectionResult(
        has_report=True, message=message, report_url=url, filename=filename,
    )


def classify_response(
    raw: Any,
    user_name: str,
    session_id: str,
    report_base: str | None = None,
) -> ReportDetectionResult:
    """Classify one backend response.

    Parameters
    ----------
    raw : Any
        Backend response: a string, a dict in any of the known shapes, or an
        already-parsed ``BackendReply``.
    user_name, session_id : str
        Path components of the report URL.
    report_base : str, optional
        Report storage base URL; defaults to ``Settings.report_base_url``.
    """
    reply = parse_response(raw)
    return classify_message(reply.message, user_name, session_id, report_base)
