# app/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ===== App =====
    APP_NAME: str = "slot_waitlist"
    ENV: str = "dev"
    # TZ local de las sucursales (solo para mostrar horas en mensajes)
    TIMEZONE: str = "Asia/Dhaka"
    LOG_LEVEL: str = "INFO"

    # ===== DB =====
    # En producción define DATABASE_URL con tu Postgres. Local puede caer a SQLite.
    DATABASE_URL: str = "sqlite:///./waitlist.db"

    DB_POOL_SIZE: int = 2
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 min

    # "sql" = stores sobre SQLAlchemy, "memory" = dicts en proceso (una sola instancia)
    STORE_BACKEND: str = "sql"

    # ===== Lista de espera =====
    WAITLIST_TTL_HOURS: int = 24
    WAITLIST_SWEEP_MINUTES: int = 15

    # ===== Rate limit de OTP =====
    OTP_MAX_REQUESTS: int = 5
    OTP_WINDOW_MINUTES: int = 60
    RATE_LIMIT_CLEANUP_MINUTES: int = 30

    # ===== Notificaciones =====
    NOTIFICATION_LOG_RETENTION_DAYS: int = 30
    NOTIFICATION_LOG_CLEANUP_HOUR: int = 2  # 02:00 todos los días

    # ===== Twilio (SMS) =====
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_SMS_FROM: Optional[str] = None

    # Simulación (True = no envía mensajes reales)
    DRY_RUN: bool = False

    # ===== Scheduler =====
    SCHEDULER_ENABLED: bool = True

    # ===== Admin =====
    ADMIN_TOKEN: Optional[str] = None

    def model_post_init(self, __context) -> None:
        """
        Valida rangos básicos. Un valor inválido tumba el arranque con un
        mensaje que nombra la variable.
        """
        for name in (
            "WAITLIST_TTL_HOURS",
            "WAITLIST_SWEEP_MINUTES",
            "OTP_MAX_REQUESTS",
            "OTP_WINDOW_MINUTES",
            "RATE_LIMIT_CLEANUP_MINUTES",
            "NOTIFICATION_LOG_RETENTION_DAYS",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} debe ser >= 1, se recibió {value}")

        if not 0 <= self.NOTIFICATION_LOG_CLEANUP_HOUR <= 23:
            raise ValueError(
                f"NOTIFICATION_LOG_CLEANUP_HOUR debe estar entre 0 y 23, se recibió {self.NOTIFICATION_LOG_CLEANUP_HOUR}"
            )

        self.STORE_BACKEND = self.STORE_BACKEND.strip().lower()
        if self.STORE_BACKEND not in ("sql", "memory"):
            raise ValueError(f"STORE_BACKEND debe ser 'sql' o 'memory', se recibió {self.STORE_BACKEND!r}")


settings = Settings()
