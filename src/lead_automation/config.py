"""
Engine configuration
"""
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


@dataclass
class EngineSettings:
    """Settings passed explicitly to the engine and its collaborators"""
    database_url: str = "sqlite+aiosqlite:///./lead_automation.db"
    reply_window_minutes: int = 60
    max_steps_per_run: int = 100
    claim_lease_seconds: int = 300
    tick_batch_size: int = 100
    conversation_context_limit: int = 10
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 30.0
    openai_max_retries: int = 2
    messenger_page_token: Optional[str] = None
    messenger_api_version: str = "v18.0"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    jwt_secret_key: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        # a generation call must give up before another worker may take the execution over
        if self.openai_call_budget >= self.claim_lease_seconds:
            raise ValueError(
                f"OpenAI timeout {self.openai_timeout_seconds}s with {self.openai_max_retries} retries "
                f"does not fit inside the {self.claim_lease_seconds}s claim lease"
            )

    @property
    def openai_call_budget(self) -> float:
        """Longest a single generation call may take, retries included"""
        return self.openai_timeout_seconds * (self.openai_max_retries + 1)

    @property
    def reply_window(self) -> timedelta:
        return timedelta(minutes=self.reply_window_minutes)

    @property
    def claim_lease(self) -> timedelta:
        return timedelta(seconds=self.claim_lease_seconds)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EngineSettings":
        """Build settings from environment variables (and a .env file)"""
        if dotenv:
            load_dotenv()

        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            reply_window_minutes=_env_int("REPLY_WINDOW_MINUTES", defaults.reply_window_minutes),
            max_steps_per_run=_env_int("MAX_STEPS_PER_RUN", defaults.max_steps_per_run),
            claim_lease_seconds=_env_int("CLAIM_LEASE_SECONDS", defaults.claim_lease_seconds),
            tick_batch_size=_env_int("TICK_BATCH_SIZE", defaults.tick_batch_size),
            conversation_context_limit=_env_int(
                "CONVERSATION_CONTEXT_LIMIT", defaults.conversation_context_limit
            ),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            openai_timeout_seconds=_env_float("OPENAI_TIMEOUT_SECONDS", defaults.openai_timeout_seconds),
            openai_max_retries=_env_int("OPENAI_MAX_RETRIES", defaults.openai_max_retries),
            messenger_page_token=os.getenv("MESSENGER_PAGE_TOKEN") or None,
            messenger_api_version=os.getenv("MESSENGER_API_VERSION", defaults.messenger_api_version),
            api_host=os.getenv("API_HOST", defaults.api_host),
            api_port=_env_int("API_PORT", defaults.api_port),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
        )
