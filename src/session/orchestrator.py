"""
Session orchestrator -- drives one reporting chat from login to report.

States:

  uninitialized -> initializing -> awaiting_parameters -> parameters_submitted
                        |                                        |
                        +--> error --(retry)--> initializing      +--(clear chat)--> awaiting_parameters

  - initializing: "Hello" round trip for a backend session id, then the
    user's name under that id.
  - awaiting_parameters: the parameter form is open; filters may be edited.
  - parameters_submitted: a report was requested; chat input is enabled and
    every filter change regenerates the report.

Backend failures become bot messages.  Only a failed initialization moves
the session to ``error``.

Report requests are numbered.  A response whose request has been superseded
(a newer filter change, a cleared chat, a new session) is logged and dropped,
so the transcript always reflects the most recent request.
"""
from __future__ import annotations

import asyncio
from typing import Any

from src.core.config import Settings, get_settings
from src.core.logging import get_logger
from src.core.utils import new_id
from src.filters.catalog import FilterCatalog, load_filter_catalog
from src.filters.compiler import compile_fragments
from src.filters.models import CompiledQueryFragments, FilterSet
from src.filters.summary import describe_filters
from src.reports.classifier import (
    ReplyKind,
    ReportDetectionResult,
    classify_response,
    is_suppressed_message,
    parse_response,
)
from src.session.backend_client import BackendError, ReportingBackend, get_backend
from src.session.state import (
    ChatMessage,
    ChatRequest,
    ForecastInitRequest,
    ReportGenerationRequest,
    ReportParameters,
    Session,
    SessionState,
)

logger = get_logger(__name__)

GREETING = "Hi {user}! I'm AI Reporting Agent, your AI assistant for generating reports"
HELLO_MESSAGE = "Hello"
INIT_ERROR = "Failed to connect to the AI service. Please try refreshing the page."
CHAT_ERROR = "Sorry, there was an error processing your request. Please try again."
REPORT_ERROR = "Sorry, there was an error generating the report. Please try again."
NO_SESSION_ERROR = "Error: No session ID available. Please refresh and try again."
NO_RESPONSE = "No response received. Please try again."
REPORT_READY = "Report generated successfully! You can view it below and download the files."


class InvalidTransition(Exception):
    """The requested action is not available in the session's current state."""


class SessionOrchestrator:
    """State machine over one chat session.

    Parameters
    ----------
    user_name : str
        Display name; also the path component of report URLs.
    user_id : str, optional
        Identifier sent to the backend; defaults to *user_name*.
    backend : ReportingBackend, optional
        Backend client; defaults to ``get_backend()``.
    catalog : FilterCatalog, optional
        Filter vocabulary; defaults to ``load_filter_catalog()``.
    """

    def __init__(
        self,
        user_name: str,
        user_id: str | None = None,
        backend: ReportingBackend | None = None,
        catalog: FilterCatalog | None = None,
        settings: Settings | None = None,
    ):
        self.handle = new_id()
        self._backend = backend if backend is not None else get_backend()
        self._catalog = catalog if catalog is not None else load_filter_catalog()
        self._settings = settings if settings is not None else get_settings()
        self._request_seq = 0
        self._init_seq = 0
        self._background: set[asyncio.Task] = set()
        self.pending_reports = 0
        self._reset(Session(user_name=user_name, user_id=user_id or user_name))

    # ── Lifecycle ───────────────────────────────────────

    def _reset(self, session: Session) -> None:
        self.session = session
        self.state = SessionState.UNINITIALIZED
        self.messages: list[ChatMessage] = []
        self.filter_set = FilterSet()
        self.fragments: CompiledQueryFragments = compile_fragments(self.filter_set, self._catalog)
        self.parameters: ReportParameters | None = None
        self.last_report: ReportDetectionResult | None = None
        self.init_error = ""
        self.chat_cleared = False
        self._forecast_started = False
        # Anything still in flight belongs to the previous session
        self._request_seq += 1
        self._init_seq += 1

    async def start(self) -> SessionState:
        """Fresh session for the current user, then initialize."""
        self._reset(Session(user_name=self.session.user_name, user_id=self.session.user_id))
        return await self.initialize()

    async def restart(self, user_name: str | None = None, user_id: str | None = None) -> SessionState:
        """Start a new session: replace the session wholesale and initialize again."""
        name = user_name or self.session.user_name
        uid = user_id or (self.session.user_id if user_name is None else user_name)
        logger.info("New session requested  user=%s", name)
        self._reset(Session(user_name=name, user_id=uid))
        return await self.initialize()

    async def initialize(self) -> SessionState:
        if self.state not in (SessionState.UNINITIALIZED, SessionState.INITIALIZING, SessionState.ERROR):
            raise InvalidTransition(f"Session is already initialized ({self.state.value})")

        self._init_seq += 1
        seq = self._init_seq
        self.state = SessionState.INITIALIZING
        self.init_error = ""
        user = self.session.user_name
        logger.info("Initializing chat session #%d  user=%s  session=%s", seq, user, self.session.session_id)

        try:
            hello = await self._backend.chat(ChatRequest(user_message=HELLO_MESSAGE))
        except BackendError as exc:
            if self._init_superseded(seq):
                return self.state
            logger.warning("Chat initialization failed: %s", exc)
            return self._init_failed()

        if self._init_superseded(seq):
            return self.state
        api_session_id = hello.get("session_id")
        if not isinstance(api_session_id, str) or not api_session_id:
            logger.warning("Chat initialization failed: chat service returned no session id")
            return self._init_failed()

        self.session = self.session.model_copy(update={"api_session_id": api_session_id})
        self._add_bot_message(GREETING.format(user=user))
        self._add_bot_message(parse_response(hello).message)

        try:
            reply = await self._backend.chat(
                ChatRequest(
                    session_id=api_session_id,
                    user_message=user,
                    report_name=self._settings.report_name,
                )
            )
        except BackendError as exc:
            if self._init_superseded(seq):
                return self.state
            logger.warning("Chat round trip failed: %s", exc)
            self._add_bot_message(CHAT_ERROR)
            return self._init_failed()

        if self._init_superseded(seq):
            return self.state
        self._apply_chat_response(reply)
        self.state = SessionState.AWAITING_PARAMETERS
        logger.info("Session ready  api_session=%s", self.session.api_session_id)
        return self.state

    def _init_superseded(self, seq: int) -> bool:
        """True when a newer session or initialization run has replaced run *seq*."""
        if seq == self._init_seq:
            return False
        logger.info("Discarding stale initialization #%d (latest #%d)", seq, self._init_seq)
        return True

    def _init_failed(self) -> SessionState:
        self.state = SessionState.ERROR
        self.init_error = INIT_ERROR
        return self.state

    async def retry(self) -> SessionState:
        """Re-run initialization after a failure."""
        if self.state is not SessionState.ERROR:
            raise InvalidTransition(f"Nothing to retry ({self.state.value})")
        return await self.initialize()

    # ── User actions ────────────────────────────────────

    async def submit_parameters(self, parameters: ReportParameters) -> ReportDetectionResult | None:
        if self.state is not SessionState.AWAITING_PARAMETERS:
            raise InvalidTransition(f"Cannot submit parameters while {self.state.value}")

        self.parameters = parameters
        self.chat_cleared = False
        self._add_user_message(parameters.describe())
        self.state = SessionState.PARAMETERS_SUBMITTED
        return await self._generate_report()

    async def update_filters(self, filter_set: FilterSet, chat_message: str | None = None) -> bool:
        """Replace the filter set; regenerate the report when one was requested.

        Returns True when a regeneration was issued.
        """
        if self.state not in (SessionState.AWAITING_PARAMETERS, SessionState.PARAMETERS_SUBMITTED):
            raise InvalidTransition(f"Filters are unavailable while {self.state.value}")

        self.filter_set = filter_set
        self.fragments = compile_fragments(filter_set, self._catalog)
        self._add_user_message(describe_filters(filter_set, chat_message, self._catalog))

        if self.state is SessionState.PARAMETERS_SUBMITTED and self.parameters is not None:
            await self._generate_report(chat_message)
            return True
        return False

    async def clear_filters(self) -> bool:
        return await self.update_filters(FilterSet())

    async def send_message(self, text: str) -> bool:
        """Chat input: regenerate with the current filters and *text* as the chat message."""
        if not self.state.chat_enabled:
            raise InvalidTransition("Chat is available once report parameters are submitted")
        if not text.strip():
            return False
        return await self.update_filters(self.filter_set, chat_message=text)

    def clear_chat(self) -> None:
        """Wipe the transcript and reopen the parameter form; the backend session is kept."""
        self.messages = []
        self.chat_cleared = True
        if self.state is not SessionState.ERROR:
            self.init_error = ""
        if self.state is SessionState.PARAMETERS_SUBMITTED:
            self.state = SessionState.AWAITING_PARAMETERS
        self.parameters = None
        self.filter_set = FilterSet()
        self.fragments = compile_fragments(self.filter_set, self._catalog)
        self._request_seq += 1

    # ── Report generation ───────────────────────────────

    def _build_request(self, chat_message: str | None) -> ReportGenerationRequest:
        params = self.parameters
        wire = self.filter_set.to_wire()
        text = (chat_message or "").strip()
        return ReportGenerationRequest(
            budget_years=[params.budget_year],
            fund_codes=params.fund_codes,
            dept_ids=params.departments,
            sessionId=self.session.api_session_id,
            userId=self.session.user_id,
            report_name=self._settings.report_name,
            measureFilters=wire["measureFilters"] or None,
            dimensionFilters=wire["dimensionFilters"] or None,
            chat_message=chat_message if text else None,
            start_chat=bool(text),
            **self.fragments.as_request_fields(),
        )

    async def _generate_report(self, chat_message: str | None = None) -> ReportDetectionResult | None:
        if not self.session.api_session_id:
            logger.error("No backend session id -- cannot generate report")
            self._add_bot_message(NO_SESSION_ERROR)
            return None

        request = self._build_request(chat_message)
        self._request_seq += 1
        seq = self._request_seq
        self.pending_reports += 1
        logger.info("Report request #%d  start_chat=%s", seq, request.start_chat)

        try:
            raw = await self._backend.generate_report(request)
        except BackendError as exc:
            logger.warning("Report request #%d failed: %s", seq, exc)
            if seq == self._request_seq:
                self._add_bot_message(REPORT_ERROR)
            return None
        finally:
            self.pending_reports -= 1

        if seq != self._request_seq:
            logger.info("Discarding stale report response #%d (latest #%d)", seq, self._request_seq)
            return None
        return self._apply_report_response(raw)

    def _apply_report_response(self, raw: Any) -> ReportDetectionResult:
        reply = parse_response(raw)
        api_session_id = reply.session_id or self.session.api_session_id
        detection = classify_response(
            reply, self.session.user_name, api_session_id, self._settings.report_base_url,
        )
        self.last_report = detection
        rows = reply.rows if reply.kind is ReplyKind.TABULAR else []

        if not detection.message:
            logger.warning("Report response carried no message content")
            self._add_bot_message(NO_RESPONSE)
        elif detection.has_report:
            self._add_bot_message(
                REPORT_READY,
                type="report",
                report_url=detection.report_url,
                table_data=rows or None,
            )
            self._start_forecast_init(api_session_id)
        elif rows:
            self._add_bot_message(detection.message, table_data=rows)
        else:
            self._add_bot_message(detection.message)
        return detection

    def _apply_chat_response(self, raw: Any) -> None:
        reply = parse_response(raw)
        if reply.session_id and reply.session_id != self.session.api_session_id:
            self.session = self.session.model_copy(update={"api_session_id": reply.session_id})
        detection = classify_response(
            reply, self.session.user_name, self.session.api_session_id, self._settings.report_base_url,
        )
        if detection.has_report:
            self._add_bot_message(REPORT_READY, type="report", report_url=detection.report_url)
        elif detection.message:
            self._add_bot_message(detection.message)

    # ── Forecast workspace (best effort) ────────────────

    def _forecast_year(self) -> int | str:
        year = self.parameters.budget_year if self.parameters else ""
        return int(year) if year.isdigit() else year

    def _start_forecast_init(self, api_session_id: str) -> None:
        if self._forecast_started:
            return
        self._forecast_started = True
        request = ForecastInitRequest(
            user_id=self.session.user_id,
            session_id=api_session_id,
            budgetYear=self._forecast_year(),
        )
        task = asyncio.get_running_loop().create_task(self._init_forecast(request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _init_forecast(self, request: ForecastInitRequest) -> None:
        try:
            result = await self._backend.init_forecast_workspace(request)
        except Exception:
            logger.exception("Forecast workspace init failed -- continuing")
            return
        logger.info("Forecast workspace initialised: %s", result)

    async def wait_for_background(self) -> None:
        """Wait for detached side tasks (tests, shutdown)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Transcript ──────────────────────────────────────

    def _add_bot_message(
        self,
        text: str,
        type: str = "text",
        report_url: str | None = None,
        table_data: list[dict[str, Any]] | None = None,
    ) -> ChatMessage | None:
        if not text or not text.strip() or is_suppressed_message(text):
            return None
        msg = ChatMessage(
            text=text, is_user=False, type=type, report_url=report_url, table_data=table_data,
        )
        self.messages.append(msg)
        return msg

    def _add_user_message(self, text: str) -> ChatMessage:
        msg = ChatMessage(text=text, is_user=True)
        self.messages.append(msg)
        return msg

    # ── Views ───────────────────────────────────────────

    @property
    def chat_enabled(self) -> bool:
        return self.state.chat_enabled

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict view of the session (for API responses)."""
        return {
            "handle": self.handle,
            "state": self.state.value,
            "chat_enabled": self.chat_enabled,
            "init_error": self.init_error,
            "chat_cleared": self.chat_cleared,
            "pending_reports": self.pending_reports,
            "session": self.session.model_dump(),
            "storage": self.session.storage_keys(),
            "parameters": self.parameters.model_dump() if self.parameters else None,
            "filters": self.filter_set.to_wire(),
            "fragments": self.fragments.model_dump(),
            "last_report": self.last_report.model_dump() if self.last_report else None,
            "messages": [m.model_dump(mode="json") for m in self.messages],
        }
