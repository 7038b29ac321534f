"""
FastAPI application entry-point.
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import filters, sessions


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Backend clients are bound to this event loop
    if sessions.get_session_backend.cache_info().currsize:
        await sessions.get_session_backend().aclose()
        sessions.get_session_backend.cache_clear()


app = FastAPI(
    title="AI Reporting Agent",
    version="0.1.0",
    description="Chat-driven budget reporting: filters, report generation and report links",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
app.include_router(filters.router, prefix="/filters", tags=["Filters"])


@app.get("/health")
def health():
    return {"status": "ok"}
