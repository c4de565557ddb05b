"""
Centralized configuration with environment variable overrides.

Store details, model tiers, orchestration limits and the addresses of the
external collaborators (tool server, database) are all configurable here.
Nothing is hardcoded in agent, tool or storage logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag (1/0, true/false, yes/no, on/off)."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


def _csv(env_var: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(env_var, default).split(",") if item.strip())


@dataclass(frozen=True)
class StoreConfig:
    """Storefront details used in the system prompt."""

    name: str = os.getenv("STORE_NAME", "Cesto d'Amore")
    assistant_name: str = os.getenv("ASSISTANT_NAME", "Ana")
    timezone: str = os.getenv("STORE_TIMEZONE", "America/Fortaleza")
    delivery_cities: tuple[str, ...] = _csv(
        "DELIVERY_CITIES",
        "Campina Grande,Queimadas,Galante,Puxinanã,São José da Mata",
    )


@dataclass(frozen=True)
class ModelConfig:
    """Language model tiers and sampling settings."""

    llm_model: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    llm_model_advanced: str = os.getenv("LLM_MODEL_ADVANCED", "gpt-4o")
    llm_temperature: float = _safe_float("LLM_TEMPERATURE", "0.7")
    curator_temperature: float = _safe_float("CURATOR_TEMPERATURE", "0.2")
    request_timeout_sec: float = _safe_float("LLM_REQUEST_TIMEOUT", "60.0")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Limits for the tool loop, history window and record lifetimes."""

    max_tool_iterations: int = _safe_int("MAX_TOOL_ITERATIONS", "10")
    history_user_messages: int = _safe_int("HISTORY_USER_MESSAGES", "10")
    max_guideline_prompts: int = _safe_int("MAX_GUIDELINE_PROMPTS", "5")
    session_ttl_days: int = _safe_int("SESSION_TTL_DAYS", "5")
    blocked_session_ttl_days: int = _safe_int("BLOCKED_SESSION_TTL_DAYS", "4")
    memory_ttl_days: int = _safe_int("CUSTOMER_MEMORY_TTL_DAYS", "30")
    max_reply_chars: int = _safe_int("MAX_REPLY_CHARS", "2000")
    curator_min_candidates: int = _safe_int("CURATOR_MIN_CANDIDATES", "3")
    cart_event_handoff: bool = _safe_bool("CART_EVENT_HANDOFF", "true")


@dataclass(frozen=True)
class ToolProviderConfig:
    """Connection settings for the MCP tool server."""

    server_url: str = os.getenv("MCP_SERVER_URL", "http://localhost:5000/mcp/sse")
    client_name: str = os.getenv("MCP_CLIENT_NAME", "sales-agent-orchestrator")


@dataclass(frozen=True)
class StorageConfig:
    """Async database connection for sessions, messages and customer memory."""

    database_url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///sales_agent.db")
    echo_sql: bool = _safe_bool("DATABASE_ECHO", "false")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    store: StoreConfig = field(default_factory=StoreConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    tool_provider: ToolProviderConfig = field(default_factory=ToolProviderConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    for temp_name, temp_value in [
        ("LLM_TEMPERATURE", config.model.llm_temperature),
        ("CURATOR_TEMPERATURE", config.model.curator_temperature),
    ]:
        if not 0.0 <= temp_value <= 2.0:
            raise ValueError(f"{temp_name} must be between 0.0 and 2.0, got {temp_value}")
    if config.model.request_timeout_sec <= 0:
        raise ValueError(
            f"LLM_REQUEST_TIMEOUT must be > 0, got {config.model.request_timeout_sec}"
        )

    orchestrator = config.orchestrator
    for limit_name, limit_value in [
        ("MAX_TOOL_ITERATIONS", orchestrator.max_tool_iterations),
        ("HISTORY_USER_MESSAGES", orchestrator.history_user_messages),
        ("MAX_GUIDELINE_PROMPTS", orchestrator.max_guideline_prompts),
        ("SESSION_TTL_DAYS", orchestrator.session_ttl_days),
        ("BLOCKED_SESSION_TTL_DAYS", orchestrator.blocked_session_ttl_days),
        ("CUSTOMER_MEMORY_TTL_DAYS", orchestrator.memory_ttl_days),
    ]:
        if limit_value < 1:
            raise ValueError(f"{limit_name} must be >= 1, got {limit_value}")

    if orchestrator.max_reply_chars < 100:
        raise ValueError(
            f"MAX_REPLY_CHARS must be >= 100, got {orchestrator.max_reply_chars}"
        )
    if orchestrator.curator_min_candidates < 3:
        raise ValueError(
            "CURATOR_MIN_CANDIDATES must be >= 3, "
            f"got {orchestrator.curator_min_candidates}"
        )
    if not config.store.delivery_cities:
        raise ValueError("DELIVERY_CITIES must list at least one city")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s'", config.store.name)
    return config


# Singleton instance
settings = load_config()
