"""
Session state -- who is chatting, where the conversation stands, and the
payload shapes exchanged with the report backend.
"""
from __future__ import annotations

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.core.utils import new_id


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AWAITING_PARAMETERS = "awaiting_parameters"
    PARAMETERS_SUBMITTED = "parameters_submitted"
    ERROR = "error"

    @property
    def chat_enabled(self) -> bool:
        return self is SessionState.PARAMETERS_SUBMITTED


class Session(BaseModel):
    """Identity of one chat session; replaced wholesale, never patched field by field."""

    user_name: str
    user_id: str
    session_id: str = Field(default_factory=new_id)
    api_session_id: str = ""

    def storage_keys(self) -> dict[str, str]:
        """Values the client keeps for filter-option lookups."""
        return {"session_id": self.api_session_id, "user": self.user_name}


class ReportParameters(BaseModel):
    """Parameter form contents."""

    budget_year: str = Field(..., min_length=1)
    fund_codes: list[str] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)
    report_selection: str = "Current Version"

    def describe(self) -> str:
        return (
            f"Parameters submitted with Year {self.budget_year}, "
            f"Fund Code: {', '.join(self.fund_codes)} "
            f"and department {', '.join(self.departments)}"
        )


class ChatMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    is_user: bool
    timestamp: datetime.datetime = Field(default_factory=datetime.datetime.now)
    type: str = "text"  # text | report
    report_url: str | None = None
    table_data: list[dict[str, Any]] | None = None


class ChatRequest(BaseModel):
    session_id: str | None = None
    user_message: str
    report_name: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ReportGenerationRequest(BaseModel):
    budget_years: list[str]
    fund_codes: list[str]
    dept_ids: list[str]
    sessionId: str
    userId: str
    report_name: str
    measures_requested_rev: str | None = None
    dimension_filter_rev: str | None = None
    measures_filter_rev: str | None = None
    measures_requested_exp: str | None = None
    dimension_filter_exp: str | None = None
    measures_filter_exp: str | None = None
    measureFilters: dict[str, Any] | None = None
    dimensionFilters: dict[str, Any] | None = None
    chat_message: str | None = None
    start_chat: bool = False

    def to_payload(self) -> dict[str, Any]:
        """JSON body; ``chat_message`` only travels when it has content."""
        payload = self.model_dump()
        if not (self.chat_message or "").strip():
            payload.pop("chat_message")
        return payload


class ForecastInitRequest(BaseModel):
    user_id: str
    session_id: str
    budgetYear: int | str

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()
