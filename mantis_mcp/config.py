"""
Configuration for the Mantis MCP server.

All values come from environment variables (a local .env file is honoured via
python-dotenv). Invalid values never stop the server: they are reported and
the defaults are used instead.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://mantisbt.org/bugs/api/rest"

# Environment variable -> settings field
ENV_VARS = {
    "MANTIS_API_URL": "mantis_api_url",
    "MANTIS_API_KEY": "mantis_api_key",
    "MCP_SERVER_NAME": "mcp_server_name",
    "LOG_LEVEL": "log_level",
    "CACHE_ENABLED": "cache_enabled",
    "CACHE_TTL_SECONDS": "cache_ttl_seconds",
    "ENABLE_SOAP": "enable_soap",
    "ENABLE_FILE_LOGGING": "enable_file_logging",
    "LOG_DIR": "log_dir",
}


class Settings(BaseModel):
    """Validated server settings. Consumed read-only by every component."""

    mantis_api_url: str = DEFAULT_API_URL
    mantis_api_key: Optional[str] = None
    mcp_server_name: str = "Mantis MCP Server"
    log_level: str = "INFO"
    cache_enabled: bool = True
    cache_ttl_seconds: int = Field(default=300, ge=0)
    enable_soap: bool = False
    enable_file_logging: bool = False
    log_dir: str = "logs"

    @field_validator("mantis_api_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"expected an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.upper()
        # Node-style "warn" is accepted as an alias
        if level == "WARN":
            level = "WARNING"
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @property
    def is_configured(self) -> bool:
        """The API can only be reached once a key is present."""
        return bool(self.mantis_api_key)


def load_settings(environ: Optional[dict] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        environ: Mapping to read instead of os.environ (tests pass their own).
                 When omitted, the .env file is loaded first.

    Returns:
        Settings: validated settings, or the defaults when validation fails
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    raw = {field_name: environ[var] for var, field_name in ENV_VARS.items() if environ.get(var)}

    try:
        settings = Settings(**raw)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        logger.warning(f"Configuration validation failed, using defaults: {errors}")
        settings = Settings()

    if not settings.mantis_api_key:
        logger.warning("MANTIS_API_KEY is not set, some API features may not be available")
    if settings.mantis_api_url == DEFAULT_API_URL:
        logger.warning("Using default MANTIS_API_URL, please verify if it needs to be changed")

    return settings
