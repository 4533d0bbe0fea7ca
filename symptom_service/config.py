"""
Runtime configuration for the Symptom Service.

Values come from environment variables (optionally loaded from a .env file)
and are frozen into a Settings object that is passed explicitly to the
Ollama client and the app factory.
"""
import os
from dataclasses import dataclass, field

from dotenv import find_dotenv, load_dotenv

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_ANALYSIS_MODEL = "llama3:latest"
DEFAULT_CHAT_MODEL = "llama3"
DEFAULT_TIMEOUT = 120.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_STREAM_QUEUE_SIZE = 32


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


@dataclass(frozen=True)
class Settings:
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    analysis_model: str = DEFAULT_ANALYSIS_MODEL
    chat_model: str = DEFAULT_CHAT_MODEL
    timeout: float = DEFAULT_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    stream_queue_size: int = DEFAULT_STREAM_QUEUE_SIZE
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"
    log_json: bool = True


def get_settings() -> Settings:
    """Build Settings from the environment, reading .env first."""
    load_dotenv(find_dotenv(usecwd=True))

    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    return Settings(
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", DEFAULT_OLLAMA_BASE_URL).rstrip("/"),
        analysis_model=os.getenv("OLLAMA_ANALYSIS_MODEL", DEFAULT_ANALYSIS_MODEL),
        chat_model=os.getenv("OLLAMA_CHAT_MODEL", DEFAULT_CHAT_MODEL),
        timeout=_env_float("OLLAMA_TIMEOUT", DEFAULT_TIMEOUT),
        connect_timeout=_env_float("OLLAMA_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT),
        stream_queue_size=max(1, int(os.getenv("STREAM_QUEUE_SIZE", str(DEFAULT_STREAM_QUEUE_SIZE)))),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_env_bool("LOG_JSON", True),
    )
