"""
Report storage URL scheme.

  <base>/load/outputs/<user>/<session>/<file>     report viewer
  <base>/charts/outputs/<user>/<session>/<file>   chart / summary data
  <base>/export/outputs/<user>/<session>/<file>   file download
"""
from __future__ import annotations

from src.core.config import get_settings
from src.core.utils import join_url


def report_url(base: str, user_name: str, session_id: str, filename: str) -> str:
    return join_url(base, "load", "outputs", user_name, session_id, filename)


def chart_url(base: str, user_name: str, session_id: str, filename: str | None = None) -> str:
    if filename is None:
        filename = get_settings().chart_report_filename
    return join_url(base, "charts", "outputs", user_name, session_id, filename)


def export_url(base: str, user_name: str, session_id: str, filename: str) -> str:
    return join_url(base, "export", "outputs", user_name, session_id, filename)
