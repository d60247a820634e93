"""Core configuration for the spin client."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SPIN_",
        case_sensitive=False,
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── JSON-RPC ─────────────────────────────────────────────────────────
    rpc_url: str = "http://localhost:8545"
    rpc_timeout_seconds: float = 30.0
    rpc_max_retries: int = 3

    # ── Transactions ─────────────────────────────────────────────────────
    receipt_poll_interval: float = 1.0
    receipt_timeout_seconds: float = 300.0

    # ── Decryption signatures ────────────────────────────────────────────
    signature_duration_days: int = Field(default=365, ge=1)
    signature_redis_url: str = ""  # empty = in-memory storage
    signature_key_prefix: str = "fhevm-sig"

    # ── Deployments ──────────────────────────────────────────────────────
    deployments_file: str = ""  # generated address file, empty = built-in registry

    # ── Orchestrator ─────────────────────────────────────────────────────
    message_history_size: int = Field(default=50, ge=1)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
