from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class RetrySettings:
    attempts: int
    backoff_initial_s: float
    backoff_max_s: float
    timeout_s: float


def _retry_settings(prefix: str, *, attempts: int, initial: float, maximum: float, timeout: float) -> RetrySettings:
    return RetrySettings(
        attempts=max(1, _get_env_int(f"{prefix}_RETRY_ATTEMPTS", attempts)),
        backoff_initial_s=max(0.0, _get_env_float(f"{prefix}_BACKOFF_INITIAL_S", initial)),
        backoff_max_s=max(0.0, _get_env_float(f"{prefix}_BACKOFF_MAX_S", maximum)),
        timeout_s=max(0.0, _get_env_float(f"{prefix}_TIMEOUT_S", timeout)),
    )


@dataclass(frozen=True)
class Settings:
    rate_limit: str
    rate_limit_enabled: bool
    submit_rate_limit: str
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    cors_allow_origin_regex: str | None
    cors_allow_credentials: bool
    kv_db_path: str
    object_store_root: str
    max_upload_bytes: int
    pdf_render_target_width: int
    pdf_render_max_scale: float
    default_image_mime: str
    allow_empty_extracted_text: bool
    jd_text_max_chars: int
    jd_text_min_chars: int
    feedback_temperature: float
    feedback_max_tokens: int
    markdown_temperature: float
    markdown_max_tokens: int
    jd_extract_temperature: float
    jd_extract_max_tokens: int
    convert_retry: RetrySettings
    storage_retry: RetrySettings
    ocr_retry: RetrySettings
    llm_retry: RetrySettings


settings = Settings(
    rate_limit=_get_env("RATE_LIMIT", "60/minute") or "60/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    submit_rate_limit=_get_env("SUBMIT_RATE_LIMIT", "5/minute") or "5/minute",
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ],
    ),
    cors_allow_origin_regex=_get_env("CORS_ALLOW_ORIGIN_REGEX"),
    cors_allow_credentials=_get_env_bool("CORS_ALLOW_CREDENTIALS", False),
    kv_db_path=_get_env("KV_DB_PATH", "data/resume_jobs.db") or "data/resume_jobs.db",
    object_store_root=_get_env("OBJECT_STORE_ROOT", "data/objects") or "data/objects",
    max_upload_bytes=_get_env_int("MAX_UPLOAD_BYTES", 20 * 1024 * 1024),
    pdf_render_target_width=_get_env_int("PDF_RENDER_TARGET_WIDTH", 2000),
    pdf_render_max_scale=_get_env_float("PDF_RENDER_MAX_SCALE", 4.0),
    default_image_mime=_get_env("DEFAULT_IMAGE_MIME", "image/png") or "image/png",
    allow_empty_extracted_text=_get_env_bool("ALLOW_EMPTY_EXTRACTED_TEXT", False),
    jd_text_max_chars=_get_env_int("JD_TEXT_MAX_CHARS", 8000),
    jd_text_min_chars=_get_env_int("JD_TEXT_MIN_CHARS", 50),
    feedback_temperature=_get_env_float("FEEDBACK_TEMPERATURE", 0.7),
    feedback_max_tokens=_get_env_int("FEEDBACK_MAX_TOKENS", 8192),
    markdown_temperature=_get_env_float("MARKDOWN_TEMPERATURE", 0.3),
    markdown_max_tokens=_get_env_int("MARKDOWN_MAX_TOKENS", 2000),
    jd_extract_temperature=_get_env_float("JD_EXTRACT_TEMPERATURE", 0.1),
    jd_extract_max_tokens=_get_env_int("JD_EXTRACT_MAX_TOKENS", 2000),
    convert_retry=_retry_settings("CONVERT", attempts=1, initial=0.0, maximum=0.0, timeout=60.0),
    storage_retry=_retry_settings("STORAGE", attempts=3, initial=0.5, maximum=5.0, timeout=30.0),
    ocr_retry=_retry_settings("OCR", attempts=3, initial=1.0, maximum=10.0, timeout=120.0),
    llm_retry=_retry_settings("LLM", attempts=3, initial=2.0, maximum=20.0, timeout=300.0),
)

if settings.jd_text_max_chars < settings.jd_text_min_chars:
    raise RuntimeError("JD_TEXT_MAX_CHARS must be greater than or equal to JD_TEXT_MIN_CHARS.")
