"""
/sessions -- chat session lifecycle, report parameters, filters and chat.

Every mutating endpoint returns the full session snapshot so the UI can
re-render from one response.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from src.core.logging import get_logger
from src.filters.models import FilterSet
from src.session.backend_client import BackendError, ReportingBackend, get_backend
from src.session.orchestrator import InvalidTransition, SessionOrchestrator
from src.session.registry import SessionRegistry, get_registry
from src.session.state import ReportParameters

logger = get_logger(__name__)
router = APIRouter()


@lru_cache
def get_session_backend() -> ReportingBackend:
    """Backend client shared by every session in this process."""
    return get_backend()


# ── Schemas ─────────────────────────────────────────────


class CreateSessionRequest(BaseModel):
    user_name: str = Field(..., min_length=1, max_length=100)
    user_id: str | None = None


class RestartRequest(BaseModel):
    user_name: str | None = None
    user_id: str | None = None


class FilterUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dimension_filters: dict[str, Any] = Field(default_factory=dict, alias="dimensionFilters")
    measure_filters: dict[str, Any] = Field(default_factory=dict, alias="measureFilters")
    chat_message: str | None = None


class MessageRequest(BaseModel):
    text: str = Field(..., max_length=2000)


class SessionInfo(BaseModel):
    user_name: str
    user_id: str
    session_id: str
    api_session_id: str


class SessionSnapshot(BaseModel):
    handle: str
    state: str
    chat_enabled: bool
    init_error: str
    chat_cleared: bool
    pending_reports: int
    session: SessionInfo
    storage: dict[str, str]
    parameters: dict[str, Any] | None
    filters: dict[str, Any]
    fragments: dict[str, str | None]
    last_report: dict[str, Any] | None
    messages: list[dict[str, Any]]


class OptionsResponse(BaseModel):
    options: Any


# ── Helpers ─────────────────────────────────────────────


def _lookup(handle: str, registry: SessionRegistry) -> SessionOrchestrator:
    try:
        return registry.get(handle)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{handle}' not found")


def _snapshot(orch: SessionOrchestrator) -> SessionSnapshot:
    return SessionSnapshot(**orch.snapshot())


def _conflict(exc: InvalidTransition) -> HTTPException:
    logger.info("Rejected action: %s", exc)
    return HTTPException(status_code=409, detail=str(exc))


def _require_api_session(orch: SessionOrchestrator) -> str:
    if not orch.session.api_session_id:
        raise HTTPException(status_code=409, detail="Session has no backend session id yet")
    return orch.session.api_session_id


async def _lookup_options(call) -> OptionsResponse:
    try:
        return OptionsResponse(options=await call)
    except BackendError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


# ── Lifecycle ───────────────────────────────────────────


@router.post("", response_model=SessionSnapshot, status_code=201)
async def create_session(
    req: CreateSessionRequest,
    backend: ReportingBackend = Depends(get_session_backend),
    registry: SessionRegistry = Depends(get_registry),
):
    """Log in: create a session and run initialization (failures land in ``init_error``)."""
    orch = SessionOrchestrator(req.user_name, user_id=req.user_id, backend=backend)
    registry.create(orch)
    await orch.start()
    return _snapshot(orch)


@router.get("/{handle}", response_model=SessionSnapshot)
async def get_session(handle: str, registry: SessionRegistry = Depends(get_registry)):
    return _snapshot(_lookup(handle, registry))


@router.delete("/{handle}")
async def delete_session(handle: str, registry: SessionRegistry = Depends(get_registry)):
    orch = _lookup(handle, registry)
    await orch.wait_for_background()
    registry.remove(handle)
    return {"deleted": handle}


@router.post("/{handle}/retry", response_model=SessionSnapshot)
async def retry_session(handle: str, registry: SessionRegistry = Depends(get_registry)):
    orch = _lookup(handle, registry)
    try:
        await orch.retry()
    except InvalidTransition as exc:
        raise _conflict(exc)
    return _snapshot(orch)


@router.post("/{handle}/restart", response_model=SessionSnapshot)
async def restart_session(
    handle: str,
    req: RestartRequest | None = None,
    registry: SessionRegistry = Depends(get_registry),
):
    """Start a new session: fresh session id and transcript, same handle."""
    orch = _lookup(handle, registry)
    req = req or RestartRequest()
    await orch.restart(user_name=req.user_name, user_id=req.user_id)
    return _snapshot(orch)


# ── Report parameters, filters and chat ─────────────────


@router.post("/{handle}/parameters", response_model=SessionSnapshot)
async def submit_parameters(
    handle: str,
    params: ReportParameters,
    registry: SessionRegistry = Depends(get_registry),
):
    orch = _lookup(handle, registry)
    try:
        await orch.submit_parameters(params)
    except InvalidTransition as exc:
        raise _conflict(exc)
    return _snapshot(orch)


@router.put("/{handle}/filters", response_model=SessionSnapshot)
async def update_filters(
    handle: str,
    req: FilterUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Replace the filter set; regenerates the report once parameters are submitted."""
    orch = _lookup(handle, registry)
    filter_set = FilterSet.from_raw(req.dimension_filters, req.measure_filters)
    try:
        await orch.update_filters(filter_set, chat_message=req.chat_message)
    except InvalidTransition as exc:
        raise _conflict(exc)
    return _snapshot(orch)


@router.delete("/{handle}/filters", response_model=SessionSnapshot)
async def clear_filters(handle: str, registry: SessionRegistry = Depends(get_registry)):
    orch = _lookup(handle, registry)
    try:
        await orch.clear_filters()
    except InvalidTransition as exc:
        raise _conflict(exc)
    return _snapshot(orch)


@router.post("/{handle}/messages", response_model=SessionSnapshot)
async def send_message(
    handle: str,
    req: MessageRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    orch = _lookup(handle, registry)
    try:
        await orch.send_message(req.text)
    except InvalidTransition as exc:
        raise _conflict(exc)
    return _snapshot(orch)


@router.post("/{handle}/clear", response_model=SessionSnapshot)
async def clear_chat(handle: str, registry: SessionRegistry = Depends(get_registry)):
    orch = _lookup(handle, registry)
    orch.clear_chat()
    return _snapshot(orch)


# ── Option lookups ──────────────────────────────────────


@router.get("/{handle}/options/budget-years", response_model=OptionsResponse)
async def budget_years(
    handle: str,
    backend: ReportingBackend = Depends(get_session_backend),
    registry: SessionRegistry = Depends(get_registry),
):
    _lookup(handle, registry)
    return await _lookup_options(backend.budget_years())


@router.get("/{handle}/options/fund-codes", response_model=OptionsResponse)
async def fund_codes(
    handle: str,
    year: str = Query(..., min_length=1),
    backend: ReportingBackend = Depends(get_session_backend),
    registry: SessionRegistry = Depends(get_registry),
):
    _lookup(handle, registry)
    return await _lookup_options(backend.fund_codes(year))


@router.get("/{handle}/options/departments", response_model=OptionsResponse)
async def departments(
    handle: str,
    year: str = Query(..., min_length=1),
    fund_codes: list[str] = Query(default=[]),
    backend: ReportingBackend = Depends(get_session_backend),
    registry: SessionRegistry = Depends(get_registry),
):
    _lookup(handle, registry)
    if not fund_codes:
        return OptionsResponse(options=[])
    return await _lookup_options(backend.departments(year, fund_codes))


@router.get("/{handle}/options/dimensions", response_model=OptionsResponse)
async def dimension_options(
    handle: str,
    backend: ReportingBackend = Depends(get_session_backend),
    registry: SessionRegistry = Depends(get_registry),
):
    """Values for the dimension filter panel, scoped to this session's report."""
    orch = _lookup(handle, registry)
    api_session_id = _require_api_session(orch)
    return await _lookup_options(backend.dimension_options(orch.session.user_name, api_session_id))


@router.get("/{handle}/options/measures", response_model=OptionsResponse)
async def measure_stats(
    handle: str,
    backend: ReportingBackend = Depends(get_session_backend),
    registry: SessionRegistry = Depends(get_registry),
):
    orch = _lookup(handle, registry)
    api_session_id = _require_api_session(orch)
    return await _lookup_options(backend.measure_stats(orch.session.user_name, api_session_id))
