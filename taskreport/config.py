from __future__ import annotations

import os
import shutil
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field


DEFAULT_SETTINGS_PATH = os.environ.get("TASKREPORT_SETTINGS", "settings.yml")


class AppSettings(BaseModel):
    name: str = "Task Reports"
    timezone: str = "UTC"
    host: str = "0.0.0.0"  # nosec B104
    port: int = 8890
    base_url: str = ""


class SecuritySettings(BaseModel):
    # Shared secret of the upstream auth provider; tokens are verified, never issued.
    jwt_secret: str = "CHANGE_ME_JWT_SECRET"
    jwt_algorithm: str = "HS256"
    admin_role: str = "admin"


class DatabaseSettings(BaseModel):
    path: str = "taskreport.db"


class EmailSettings(BaseModel):
    # When disabled, deadline reminders are skipped.
    enabled: bool = False

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""

    smtp_from: str = "taskreport@localhost"

    # If True, use STARTTLS.
    use_tls: bool = True


class ReminderSettings(BaseModel):
    enabled: bool = False
    # Calendar days (due today / tomorrow / overdue) are judged in this zone.
    timezone: str = "Asia/Singapore"
    hour: int = 8
    minute: int = 0


class DigestSettings(BaseModel):
    enabled: bool = False
    # Runs in the reminder timezone.
    hour: int = 7
    minute: int = 30
    # Open tasks due within this many days are listed as upcoming.
    upcoming_days: int = 14


class LoggingSettings(BaseModel):
    level: str = "INFO"
    dir: str = "logs"
    retention_days: int = 14


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    reminders: ReminderSettings = Field(default_factory=ReminderSettings)
    digest: DigestSettings = Field(default_factory=DigestSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _ensure_settings_file(path: str) -> None:
    p = Path(path)
    if p.exists():
        return

    p.parent.mkdir(parents=True, exist_ok=True)

    # Copy sample settings into place to make first-run behavior predictable.
    sample = Path(__file__).resolve().parent.parent / "settings.sample.yml"
    if sample.exists():
        shutil.copy(sample, p)
    else:
        p.write_text(yaml.safe_dump(Settings().model_dump(), sort_keys=False), encoding="utf-8")


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("settings.yml must contain a YAML mapping at the root")
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings_path = os.environ.get("TASKREPORT_SETTINGS", DEFAULT_SETTINGS_PATH)
    _ensure_settings_file(settings_path)
    raw = _load_yaml(settings_path)
    s = Settings.model_validate(raw)

    jwt_secret = os.environ.get("TASKREPORT_JWT_SECRET")
    if jwt_secret:
        s.security.jwt_secret = jwt_secret

    base_url_env = os.environ.get("TASKREPORT_BASE_URL")
    if base_url_env:
        s.app.base_url = str(base_url_env).strip()

    # Port override is occasionally useful in container orchestration.
    port_env = os.environ.get("PORT") or os.environ.get("TASKREPORT_PORT")
    if port_env:
        try:
            s.app.port = int(port_env)
        except ValueError:
            pass

    return s
