from pydantic import BaseModel
import os


def _int_list(raw: str) -> list[int]:
    return [int(v.strip()) for v in raw.split(",") if v.strip()]


class Settings(BaseModel):
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expires_min: int = int(os.getenv("JWT_EXPIRES_MIN", "120"))

    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = int(os.getenv("SMTP_PORT", "25"))
    smtp_from: str = os.getenv("SMTP_FROM", "")
    smtp_timeout_seconds: int = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
    app_base_url: str = os.getenv("APP_BASE_URL", "http://localhost:3000")

    it_servicedesk_email: str = os.getenv("IT_SERVICEDESK_EMAIL", "")
    travel_desk_email: str = os.getenv("TRAVEL_DESK_EMAIL", "")

    sla_job_enabled: bool = os.getenv("SLA_JOB_ENABLED", "false").lower() == "true"
    sla_job_interval_seconds: int = int(os.getenv("SLA_JOB_INTERVAL_SECONDS", "300"))
    sla_system_actor_id: int | None = (
        int(os.getenv("SLA_SYSTEM_ACTOR_ID")) if os.getenv("SLA_SYSTEM_ACTOR_ID") else None
    )
    sla_warning_threshold: float = float(os.getenv("SLA_WARNING_THRESHOLD", "0.8"))
    sla_reminder_days: list[int] = _int_list(os.getenv("SLA_REMINDER_DAYS", "3,5"))
    auto_close_days: int = int(os.getenv("AUTO_CLOSE_DAYS", "7"))


settings = Settings()
