"""Application configuration using pydantic-settings."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

_CONFIG_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Session timing ────────────────────────────────────────────────────────
    poll_interval_seconds: float = Field(
        default=0.5,
        description="How often the completion watcher checks a session",
    )
    fanout_timeout_seconds: float = Field(default=30.0)
    sequential_timeout_seconds: float = Field(default=300.0)

    # Randomised pause before each sequential item so the target site does not
    # see a perfectly regular request cadence.
    item_delay_min_seconds: float = Field(default=1.0)
    item_delay_max_seconds: float = Field(default=2.0)
    # Time given to a freshly loaded page before the worker is asked about it.
    settle_delay_seconds: float = Field(default=1.0)

    # ── Browser extension gateway ─────────────────────────────────────────────
    rpc_timeout_seconds: float = Field(default=10.0)

    # ── Sequential site (stock system) ────────────────────────────────────────
    site_base_url: str = Field(default="https://nospos.com")
    site_search_path: str = Field(default="/stock/search")
    listing_url_pattern: str = Field(default=r"/stock/search")
    detail_url_pattern: str = Field(default=r"/stock/\d+(/edit|/view)?/?(?:[?#]|$)")
    login_url_pattern: str = Field(default=r"/site/standard-login|/login")
    allowed_url_pattern: str = Field(default=r"/stock/")

    # ── Storage ───────────────────────────────────────────────────────────────
    checkpoint_dir: str = Field(default="data/checkpoints")
    targets_file: str = Field(default=str(_CONFIG_DIR / "targets.json"))

    # ── Server ────────────────────────────────────────────────────────────────
    server_host: str = Field(default="127.0.0.1")
    server_port: int = Field(default=8088)

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/orchestrator.log")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
