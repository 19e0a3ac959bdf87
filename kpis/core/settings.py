from __future__ import annotations

import os
from dataclasses import dataclass, field


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _origins_env() -> list[str]:
    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    return origins


@dataclass(slots=True)
class Settings:
    odoo_url: str | None = None
    odoo_db: str | None = None
    odoo_username: str | None = None
    odoo_password: str | None = None
    odoo_timeout: float = 30.0
    poll_interval: float = 2.0
    cors_origins: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @property
    def odoo_configured(self) -> bool:
        return bool(self.odoo_url and self.odoo_db and self.odoo_username and self.odoo_password)


def load_settings() -> Settings:
    """Read the service configuration from the environment."""

    return Settings(
        odoo_url=os.getenv("ODOO_URL"),
        odoo_db=os.getenv("ODOO_DB"),
        odoo_username=os.getenv("ODOO_USERNAME"),
        odoo_password=os.getenv("ODOO_PASSWORD"),
        odoo_timeout=_float_env("ODOO_TIMEOUT_SECONDS", 30.0),
        poll_interval=_float_env("OCR_STATUS_POLL_INTERVAL", 2.0),
        cors_origins=_origins_env(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
