import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_cors_origins(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, list):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []
    if raw == "*":
        return ["*"]

    # JSON lists are preferred, but comma separated values are accepted too.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]
    if "*" in parts:
        return ["*"]

    seen: set[str] = set()
    result: list[str] = []
    for origin in parts:
        if origin not in seen:
            seen.add(origin)
            result.append(origin)
    return result


class Settings(BaseSettings):
    """Waiting room settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    debug: bool = False

    # Token signing
    queue_jwt_secret: str = "dev_queue_secret"
    pow_jwt_secret: str = "dev_pow_secret"
    position_secret: str = ""  # empty -> derived development key
    queue_version: str = "1"
    queue_token_ttl_seconds: int = 7200  # 2 hours
    proof_ttl_seconds: int = 120

    # Proof-of-work
    pow_difficulty: int = 3
    challenge_ttl_seconds: int = 60

    # Admission pacing
    admit_per_minute: float = 120
    vip_budget: float = 0.2
    default_region: str = "IN"

    # Scheduler
    scheduler_enabled: bool = True
    tick_interval_seconds: float = 1.0
    sweep_interval_seconds: float = 30.0

    # Live updates
    ws_update_interval_seconds: float = 1.5
    sse_update_interval_seconds: float = 1.0

    # Admin
    admin_key: str = "dev_admin"

    # Event log (JSON lines)
    event_log_path: str = "logs/queue-events.jsonl"

    # Audit sink (optional, disabled when url is empty)
    audit_sink_url: str = ""
    audit_sink_token: str = ""
    audit_buffer_size: int = 50
    audit_flush_interval: float = 5.0
    audit_max_retries: int = 3
    audit_retry_delay: float = 1.0
    audit_timeout: float = 5.0
    audit_dead_letter_path: str = "logs/audit-dead-letter.jsonl"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def decode_cors_origins(cls, v: Any) -> list[str]:
        return _parse_cors_origins(v)

    @field_validator("vip_budget")
    @classmethod
    def validate_vip_budget(cls, v: float) -> float:
        # general receives the remainder, so both shares stay within [0, 1]
        if not 0.0 <= v <= 1.0:
            raise ValueError("vip_budget must be between 0 and 1")
        return v

    @field_validator("admit_per_minute")
    @classmethod
    def validate_admit_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("admit_per_minute must be positive")
        return v

    @field_validator("pow_difficulty")
    @classmethod
    def validate_difficulty(cls, v: int) -> int:
        # A sha256 hex digest has 64 characters
        if not 0 <= v <= 64:
            raise ValueError("pow_difficulty must be between 0 and 64")
        return v

    @field_validator(
        "challenge_ttl_seconds",
        "proof_ttl_seconds",
        "queue_token_ttl_seconds",
    )
    @classmethod
    def validate_ttl_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("TTL values must be at least 1 second")
        return v

    @field_validator(
        "tick_interval_seconds",
        "sweep_interval_seconds",
        "ws_update_interval_seconds",
        "sse_update_interval_seconds",
        "audit_flush_interval",
        "audit_timeout",
    )
    @classmethod
    def validate_interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Interval values must be positive")
        return v

    @property
    def budgets(self) -> dict[str, float]:
        """Class budgets in configuration order (vip first)."""
        return {"vip": self.vip_budget, "general": 1.0 - self.vip_budget}

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
