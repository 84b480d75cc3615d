from typing import Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPSTREAM_BASE_URL = "https://yuanbao.tencent.com"


class ConfigError(RuntimeError):
    """
    Raised when the static configuration cannot be loaded or used.

    Always fatal: the process must not start serving with a broken config.
    """


class Settings(BaseSettings):
    # Read from OS env and optional .env file in the working directory.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Kept for compatibility with existing deployments; this service does not
    # authenticate its own callers.
    key: str = Field(
        "",
        alias="API_KEY",
        description="API key of the proxy itself (not enforced)",
    )

    # Yuanbao account identity.
    agent_id: str = Field(..., alias="AGENT_ID", min_length=1)
    hy_user: str = Field(..., alias="HY_USER", min_length=1)
    hy_token: str = Field(..., alias="HY_TOKEN", min_length=1)
    conversation_id: str = Field(
        ...,
        alias="CONVERSATION_ID",
        min_length=1,
        description="Fixed upstream conversation every completion is posted to",
    )

    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(8000, alias="PORT", ge=1, le=65535)

    upstream_base_url: str = Field(DEFAULT_UPSTREAM_BASE_URL, alias="UPSTREAM_BASE_URL")
    upstream_connect_timeout: float = Field(10.0, alias="UPSTREAM_CONNECT_TIMEOUT", gt=0)
    upstream_idle_timeout: float = Field(
        120.0,
        alias="UPSTREAM_IDLE_TIMEOUT",
        gt=0,
        description="Seconds to wait for the next upstream SSE chunk before giving up",
    )

    # Application log level for our yuanbao_proxy logger.
    # Can be overridden via LOG_LEVEL env var, e.g. "DEBUG" while debugging.
    log_level: str = Field(
        "INFO",
        alias="LOG_LEVEL",
        description="Application log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_timezone: Optional[str] = Field(
        default=None,
        alias="LOG_TIMEZONE",
        description="Timezone name for log timestamps, e.g. 'Asia/Shanghai'. Defaults to system local time.",
    )
    log_dir: str = Field("logs", alias="LOG_DIR")


def load_settings(**overrides) -> Settings:
    """
    Load the process configuration once at startup.

    Missing or malformed values are reported as ConfigError so the caller
    can abort start-up with a readable message.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = ", ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"invalid configuration ({problems})") from exc


__all__ = ["ConfigError", "DEFAULT_UPSTREAM_BASE_URL", "Settings", "load_settings"]
