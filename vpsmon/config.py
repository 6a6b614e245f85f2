from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    # --- app ---
    app_name: str = "VPS Monitor"
    debug: bool = False

    # --- database ---
    db_path: str = str(BASE_DIR / "db" / "metrics.db")

    # --- ingest ---
    ingest_token: str = ""  # bearer token shared with agents; empty disables ingest

    # --- liveness ---
    offline_threshold_seconds: int = 90

    # --- cpu alerting ---
    cpu_threshold: float = 100.0
    window_seconds: int = 300
    check_every: float = 60.0  # seconds between evaluation cycles
    email_cooldown_seconds: int = 45 * 60

    # --- notifications ---
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = True
    mail_from: str = ""
    mail_to: str = ""
    notify_timeout: float = 10.0

    # --- server ---
    host: str = "0.0.0.0"
    port: int = 5050
    cors_origins: list[str] = ["http://localhost:5173"]

    model_config = {"env_file": ".env", "env_prefix": "VPSMON_"}


settings = Settings()
