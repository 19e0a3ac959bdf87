from __future__ import annotations

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from kpis.core.settings import load_settings


def test_defaults_without_environment(monkeypatch):
    for name in (
        "ODOO_URL",
        "ODOO_DB",
        "ODOO_USERNAME",
        "ODOO_PASSWORD",
        "ODOO_TIMEOUT_SECONDS",
        "OCR_STATUS_POLL_INTERVAL",
        "API_CORS_ORIGINS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()

    assert settings.odoo_configured is False
    assert settings.odoo_timeout == 30.0
    assert settings.poll_interval == 2.0
    assert settings.cors_origins == ["http://localhost:3000", "http://127.0.0.1:3000"]
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ODOO_URL", "https://erp.example.com")
    monkeypatch.setenv("ODOO_DB", "kpis")
    monkeypatch.setenv("ODOO_USERNAME", "bot@example.com")
    monkeypatch.setenv("ODOO_PASSWORD", "secret")
    monkeypatch.setenv("ODOO_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("OCR_STATUS_POLL_INTERVAL", "not-a-number")
    monkeypatch.setenv("API_CORS_ORIGINS", "https://kpis.example.com, ,https://admin.example.com")

    settings = load_settings()

    assert settings.odoo_configured is True
    assert settings.odoo_timeout == 12.5
    assert settings.poll_interval == 2.0
    assert settings.cors_origins == ["https://kpis.example.com", "https://admin.example.com"]
