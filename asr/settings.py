from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Policy source
    configmap_name: str = os.getenv("ASR_CONFIGMAP_NAME", "auto-instrumentation-config")
    configmap_namespace: str = os.getenv("ASR_CONFIGMAP_NAMESPACE", "default")
    configmap_key: str = os.getenv("ASR_CONFIGMAP_KEY", "config.yaml")
    # The initial ADDED event is ignored unless this is on.
    reconcile_on_added: bool = _env_bool("ASR_RECONCILE_ON_ADDED", False)
    watch_timeout_s: int = _env_int("ASR_WATCH_TIMEOUT_S", 5)

    # Orchestration API
    in_cluster: bool = _env_bool("ASR_IN_CLUSTER", True)
    default_namespace: str = os.getenv("ASR_DEFAULT_NAMESPACE", "default")
    request_timeout_s: int = _env_int("ASR_REQUEST_TIMEOUT_S", 15)
    max_parallel_patches: int = _env_int("ASR_MAX_PARALLEL_PATCHES", 4)

    # Journal / logging
    db_path: str = os.getenv("ASR_DB_PATH", "asr.db")
    log_level: str = os.getenv("ASR_LOG_LEVEL", "INFO")

    # HTTP surface
    api_host: str = os.getenv("ASR_API_HOST", "0.0.0.0")
    api_port: int = _env_int("ASR_API_PORT", 8000)

    # Email alerting (optional)
    enable_email: bool = _env_bool("ASR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("ASR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("ASR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("ASR_SMTP_USER")
    smtp_password: str | None = os.getenv("ASR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("ASR_EMAIL_FROM")
    email_to: str | None = os.getenv("ASR_EMAIL_TO")


settings = Settings()
