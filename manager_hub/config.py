from __future__ import annotations

import os
from dataclasses import dataclass, field


def _split_addresses(raw: str) -> list[str]:
    return [part.strip() for part in raw.replace(";", ",").split(",") if part.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ServiceSettings:
    operations_email: str = ""
    escalation_emails: list[str] = field(default_factory=list)
    admin_email: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = "manager-hub@localhost"
    retry_backoff_seconds: float = 2.0
    log_level: str = "INFO"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


def get_service_settings() -> ServiceSettings:
    operations_email = os.getenv("OPERATIONS_EMAIL", "").strip()
    escalation = _split_addresses(os.getenv("ESCALATION_EMAILS", ""))
    return ServiceSettings(
        operations_email=operations_email,
        escalation_emails=escalation or ([operations_email] if operations_email else []),
        admin_email=os.getenv("ADMIN_EMAIL", "").strip(),
        smtp_host=os.getenv("SMTP_HOST", "").strip(),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
        smtp_from=os.getenv("SMTP_FROM", "manager-hub@localhost").strip(),
        retry_backoff_seconds=float(os.getenv("NOTIFICATION_RETRY_BACKOFF_SECONDS", "2")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
