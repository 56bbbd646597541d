"""Configuration management for the agent gateway."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Server configuration."""

    model_config = ConfigDict(extra="forbid")

    host: str = "127.0.0.1"
    port: int = 8000


class CorsConfig(BaseModel):
    """CORS configuration."""

    model_config = ConfigDict(extra="forbid")

    allow_origins: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    allow_credentials: bool = True
    allow_methods: List[str] = ["*"]
    allow_headers: List[str] = ["*"]


class AuthConfig(BaseModel):
    """Auth configuration (minimal API key)."""

    model_config = ConfigDict(extra="forbid")

    require_api_key: bool = False
    api_key: str = "dev-local-key"


class ProvidersConfig(BaseModel):
    """Agent engine configuration."""

    model_config = ConfigDict(extra="forbid")

    # Provider used when a run does not name one (name or alias)
    default: str = "claude"
    cursor_command: List[str] = Field(default_factory=lambda: ["cursor-agent"])
    claude_default_model: str = "sonnet"
    # StreamReader limit for the CLI stdout; stream-json lines can be large
    stdout_line_limit: int = 16 * 1024 * 1024


class ApprovalsConfig(BaseModel):
    """Interactive tool approval configuration."""

    model_config = ConfigDict(extra="forbid")

    # Kept under the SDK's 60s control request timeout
    timeout_seconds: float = Field(default=55.0, gt=0)


class TokensConfig(BaseModel):
    """Token budget configuration."""

    model_config = ConfigDict(extra="forbid")

    context_window: int = Field(default=160000, gt=0)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    file: Optional[str] = "logs/gateway.log"


class Settings(BaseSettings):
    """Main settings class with YAML and environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    approvals: ApprovalsConfig = Field(default_factory=ApprovalsConfig)
    tokens: TokensConfig = Field(default_factory=TokensConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; environment wins over them
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def _candidate_paths() -> List[Path]:
    explicit = os.environ.get("AGENT_GATEWAY_CONFIG")
    if explicit:
        return [Path(explicit)]
    package_root = Path(__file__).resolve().parent.parent
    return [Path.cwd() / "config" / "settings.yaml", package_root / "config" / "settings.yaml"]


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        full_config = yaml.safe_load(f) or {}
    if not isinstance(full_config, dict):
        logger.warning("[Config] Ignoring %s: top level is not a mapping", path)
        return {}
    section = full_config.get("gateway", {})
    return section if isinstance(section, dict) else {}


def _positive_env_int(name: str) -> Optional[int]:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[Config] Ignoring %s=%r (not an integer)", name, raw)
        return None
    if value <= 0:
        logger.warning("[Config] Ignoring %s=%r (must be positive)", name, raw)
        return None
    return value


def _apply_legacy_env(settings: Settings) -> None:
    """Honour the environment names the original server read directly."""
    window = _positive_env_int("CONTEXT_WINDOW")
    if window is not None:
        settings.tokens.context_window = window
    timeout_ms = _positive_env_int("CLAUDE_TOOL_APPROVAL_TIMEOUT_MS")
    if timeout_ms is not None:
        settings.approvals.timeout_seconds = timeout_ms / 1000.0


def load_settings() -> Settings:
    """Load settings from the YAML file and environment variables."""
    yaml_config: Dict[str, Any] = {}
    for path in _candidate_paths():
        if path.exists():
            logger.info("[Config] Loading from %s", path)
            yaml_config = _read_yaml(path)
            break
    else:
        logger.info("[Config] No settings.yaml found; using default configuration")

    settings = Settings(**yaml_config)
    _apply_legacy_env(settings)
    return settings


# Global settings instance
settings = load_settings()
