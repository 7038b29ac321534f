"""
Reporting backend client -- transport-agnostic wrapper.

Supported modes:
  mock  -- canned replies in the backend's real shapes (tests / offline dev)
  http  -- the report service over httpx.AsyncClient

Configuration is read from Settings (env / .env).
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol

import httpx

from src.core.config import get_settings
from src.core.logging import get_logger
from src.core.utils import new_id, timer
from src.reports.classifier import SUPPRESSED_MESSAGE
from src.session.state import ChatRequest, ForecastInitRequest, ReportGenerationRequest

logger = get_logger(__name__)


class BackendError(Exception):
    """A backend round trip failed (network, timeout or non-2xx status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ReportingBackend(Protocol):
    async def chat(self, request: ChatRequest) -> dict[str, Any]: ...

    async def generate_report(self, request: ReportGenerationRequest) -> Any: ...

    async def init_forecast_workspace(self, request: ForecastInitRequest) -> Any: ...

    async def budget_years(self) -> list[str]: ...

    async def fund_codes(self, year: str) -> list[list[str]]: ...

    async def departments(self, year: str, fund_codes: list[str]) -> list[list[str]]: ...

    async def dimension_options(self, user_id: str, session_id: str) -> dict[str, Any]: ...

    async def measure_stats(self, user_id: str, session_id: str) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


def _list_field(body: Any, key: str) -> list[Any]:
    if isinstance(body, Mapping) and isinstance(body.get(key), list):
        return body[key]
    return []


def _as_chat_response(body: Any) -> dict[str, Any]:
    if isinstance(body, Mapping):
        return dict(body)
    return {"reply": "" if body is None else str(body)}


# ── HTTP ────────────────────────────────────────────────


class HttpReportingBackend:
    """The report service over HTTP.

    Parameters
    ----------
    base_url : str, optional
        Service root; defaults to ``Settings.backend_base_url``.
    timeout : float, optional
        Per-request timeout in seconds; defaults to ``Settings.http_timeout``.
    transport : httpx.AsyncBaseTransport, optional
        Injected transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.backend_base_url,
            timeout=timeout if timeout is not None else settings.http_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        with timer() as t:
            try:
                resp = await self._client.request(method, path, json=json, params=params)
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.warning("%s %s returned %d", method, path, status)
                raise BackendError(f"{method} {path} returned {status}", status_code=status) from exc
            except httpx.HTTPError as exc:
                logger.warning("%s %s failed: %s", method, path, exc)
                raise BackendError(f"{method} {path} failed: {exc}") from exc
        logger.info("%s %s -> %d  (%d ms)", method, path, resp.status_code, t["elapsed_ms"])
        try:
            return resp.json()
        except ValueError:
            return resp.text

    async def chat(self, request: ChatRequest) -> dict[str, Any]:
        body = await self._request("POST", "/chat", json=request.to_payload())
        return _as_chat_response(body)

    async def generate_report(self, request: ReportGenerationRequest) -> Any:
        return await self._request("POST", "/api/rpt2/generate-report", json=request.to_payload())

    async def init_forecast_workspace(self, request: ForecastInitRequest) -> Any:
        return await self._request("POST", "/api/rpt2/init-workspace", json=request.to_payload())

    async def budget_years(self) -> list[str]:
        body = await self._request("GET", "/api/budget-years")
        return [str(y) for y in _list_field(body, "budget_years")]

    async def fund_codes(self, year: str) -> list[list[str]]:
        body = await self._request("GET", "/api/fund-codes", params={"year": year})
        return [list(pair) for pair in _list_field(body, "fund_codes")]

    async def departments(self, year: str, fund_codes: list[str]) -> list[list[str]]:
        """Departments across every selected fund code, de-duplicated by code."""
        merged: dict[str, str] = {}
        for fund_code in fund_codes:
            body = await self._request(
                "GET", "/api/departments", params={"year": year, "fund_code": fund_code},
            )
            for code, label in _list_field(body, "departments"):
                merged.setdefault(code, label)
        return [[code, label] for code, label in merged.items()]

    async def dimension_options(self, user_id: str, session_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", "/api/rpt2/dimensions", params={"user_id": user_id, "session_id": session_id},
        )

    async def measure_stats(self, user_id: str, session_id: str) -> dict[str, Any]:
        return await self._request(
            "GET", "/api/rpt2/measures", params={"user_id": user_id, "session_id": session_id},
        )


# ── Mock ────────────────────────────────────────────────


class MockReportingBackend:
    """Offline backend answering in the real service's response shapes."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    async def aclose(self) -> None:
        return None

    async def chat(self, request: ChatRequest) -> dict[str, Any]:
        self.calls.append(("chat", request))
        if not request.session_id:
            return {"session_id": new_id(), "reply": SUPPRESSED_MESSAGE}
        return {
            "session_id": request.session_id,
            "reply": f"Welcome {request.user_message}! Choose a budget year, fund codes and departments.",
        }

    async def generate_report(self, request: ReportGenerationRequest) -> Any:
        self.calls.append(("generate_report", request))
        if request.start_chat:
            return {"session_id": request.sessionId, "reply": f"Noted: {request.chat_message}"}
        base = f"outputs/{request.userId}/{request.sessionId}"
        return {
            "session_id": request.sessionId,
            "report": (
                "Report generated.\n"
                "📂 Files saved:\n"
                f"CSV: {base}/budget_report.csv\n"
                f"JSON: {base}/budget_report.json\n"
                "Excel: None"
            ),
        }

    async def init_forecast_workspace(self, request: ForecastInitRequest) -> Any:
        self.calls.append(("init_forecast_workspace", request))
        return {"status": "ok"}

    async def budget_years(self) -> list[str]:
        return ["2022", "2023", "2024"]

    async def fund_codes(self, year: str) -> list[list[str]]:
        return [["100", "General Fund"], ["200", "Special Revenue"], ["300", "Capital Projects"]]

    async def departments(self, year: str, fund_codes: list[str]) -> list[list[str]]:
        return [["0011019", "Finance"], ["0012059", "Public Works"], ["0013001", "Parks"]]

    async def dimension_options(self, user_id: str, session_id: str) -> dict[str, Any]:
        return {
            "dimensions": {
                "tree_node": [{"code": "M&O", "label": "M&O"}, {"code": "Payroll", "label": "Payroll"}],
                "parent_deptid": [{"code": "1212", "label": "Administration"}],
                "deptid": [{"code": "0011019", "label": "Finance"}, {"code": "0012059", "label": "Public Works"}],
                "fund_code": [{"code": "100", "label": "General Fund"}],
                "account": [{"code": "41000", "label": "Property Tax"}],
            }
        }

    async def measure_stats(self, user_id: str, session_id: str) -> dict[str, Any]:
        return {
            "measures": {
                "total_budget_amt": {"min": 0, "max": 1_000_000, "avg": 125_000},
                "total_expenses": {"min": 0, "max": 900_000, "avg": 98_000},
            }
        }


_BACKENDS: dict[str, Any] = {
    "mock": MockReportingBackend,
    "http": HttpReportingBackend,
}


def get_backend(mode: str | None = None) -> ReportingBackend:
    """Build the configured (or overridden) backend client."""
    if mode is None:
        mode = get_settings().backend_mode.lower()

    factory = _BACKENDS.get(mode)
    if factory is None:
        raise NotImplementedError(
            f"Backend mode '{mode}' is not supported.  "
            f"Choose from: {', '.join(_BACKENDS)}"
        )
    logger.info("Using reporting backend mode=%s", mode)
    return factory()
