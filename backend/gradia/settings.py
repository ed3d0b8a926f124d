from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _optional_env(name: str) -> Optional[str]:
    raw = os.getenv(name, "").strip()
    return raw or None


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    stage_catalog_path: Optional[str]
    pass_mark: float
    collaborator_timeout_seconds: float
    resend_api_key: Optional[str]
    email_from: str
    email_reply_to: str
    ai_gateway_url: str
    ai_api_key: Optional[str]
    ai_model: str
    ai_max_retries: int
    question_count: int


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/gradia_pipeline.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        stage_catalog_path=_optional_env("STAGE_CATALOG_PATH"),
        pass_mark=max(0.0, min(100.0, _float_env("PASS_MARK", 60.0))),
        collaborator_timeout_seconds=max(
            0.1, min(120.0, _float_env("COLLABORATOR_TIMEOUT_SECONDS", 10.0))
        ),
        resend_api_key=_optional_env("RESEND_API_KEY"),
        email_from=os.getenv("EMAIL_FROM", "Gradia Hiring <noreply@gradia.co.in>").strip(),
        email_reply_to=os.getenv("EMAIL_REPLY_TO", "support@gradia.co.in").strip(),
        ai_gateway_url=os.getenv(
            "AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1"
        ).strip(),
        ai_api_key=_optional_env("AI_API_KEY"),
        ai_model=os.getenv("AI_MODEL", "google/gemini-2.5-flash").strip(),
        ai_max_retries=max(0, min(5, _int_env("AI_MAX_RETRIES", 1))),
        question_count=max(1, min(20, _int_env("QUESTION_COUNT", 5))),
    )
