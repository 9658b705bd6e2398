"""
Application-wide settings using pydantic-settings.
All runtime env access in health_insights/ should go through this module.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_PATH = PROJECT_ROOT / ".env"

_DASHSCOPE_COMPAT_DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"


class ConfigurationError(RuntimeError):
    """Raised when a required setting is missing; fatal at startup."""


class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    LOG_DIR: str = "./logs"
    LOG_FILE_NAME: str = "app.debug.log"
    LOG_FILE_WHEN: str = "midnight"
    LOG_FILE_INTERVAL: int = 1
    LOG_FILE_BACKUP_COUNT: int = 7
    LOG_FILE_ENCODING: str = "utf-8"
    LOG_FILE_LEVEL: str = "DEBUG"

    # Remote model endpoint
    API_KEY: str = ""
    BASE_URL: str = _DASHSCOPE_COMPAT_DEFAULT_BASE_URL
    OLLAMA_BASE_URL: str = "http://localhost:11434"

    # Runtime
    AGENT_LOG_TRUNCATE: int = 600
    SPECIALIST_TIMEOUT_SECONDS: float = 90.0
    SYNTHESIS_TIMEOUT_SECONDS: float = 180.0
    CHAT_CHUNK_TIMEOUT_SECONDS: float = 60.0

    # Agent-specific overrides
    SPECIALIST_PROVIDER: str = ""
    SPECIALIST_MODEL: str = ""

    SYNTHESIS_PROVIDER: str = ""
    SYNTHESIS_MODEL: str = ""

    CHAT_PROVIDER: str = ""
    CHAT_MODEL: str = ""

    model_config = SettingsConfigDict(
        env_file=ENV_PATH,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def _agent_value(self, agent_key: str, suffix: str) -> str:
        key = (agent_key or "").strip().upper()
        if not key:
            return ""
        return str(getattr(self, f"{key}_{suffix}", "") or "").strip()

    def get_agent_model(self, agent_key: str, default_model: str) -> str:
        return self._agent_value(agent_key, "MODEL") or default_model

    def get_agent_provider(self, agent_key: str) -> str:
        return self._agent_value(agent_key, "PROVIDER")

    def get_base_url(self, provider_hint: str = "") -> str:
        if (provider_hint or "").strip().lower() == "ollama":
            return self.OLLAMA_BASE_URL
        return self.BASE_URL or _DASHSCOPE_COMPAT_DEFAULT_BASE_URL

    def require_api_key(self) -> str:
        key = (self.API_KEY or "").strip()
        if not key:
            raise ConfigurationError("API_KEY environment variable not set")
        return key


settings = Settings()
