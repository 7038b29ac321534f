"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Reporting backend ────────────────────────────────
    backend_mode: str = "mock"  # mock | http
    backend_base_url: str = "http://localhost:9000"
    report_base_url: str = "http://localhost:9000/reports"
    report_name: str = "rpt2"
    chart_report_filename: str = "summary.json"
    http_timeout: float = 60.0

    # ── Sessions ─────────────────────────────────────────
    session_ttl_seconds: float = 3600.0  # idle time before a session is dropped
    max_sessions: int = 256

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    api_base: str = "http://localhost:8000"
    streamlit_port: int = 8501
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
