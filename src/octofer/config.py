"""Octofer configuration using pydantic-settings.

Settings are read from the environment variables GitHub App tooling
conventionally uses (``GITHUB_APP_ID``, ``GITHUB_WEBHOOK_SECRET``, ...) and
from ``OCTOFER_*`` variables for the server itself. Values can also be passed
to ``OctoferSettings`` by field name.

GitHub App credentials are optional: without them Octofer still verifies
and dispatches webhooks, but handlers get no installation clients.
"""

import json
import logging
import sys
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from octofer.github.credentials import Credential, load_credential

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_SECRET = "development-secret"
DEFAULT_MAX_BODY_BYTES = 25 * 1024 * 1024

LOG_FORMATS = ("compact", "full", "json")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class OctoferSettings(BaseSettings):
    """Octofer configuration from environment variables.

    Environment variables:
    - GITHUB_APP_ID / GITHUB_PRIVATE_KEY_PATH / GITHUB_PRIVATE_KEY_BASE64:
      GitHub App identity (exactly one key source)
    - GITHUB_WEBHOOK_SECRET: Secret for validating webhook signatures
    - GITHUB_WEBHOOK_HEADER: Header carrying the signature
    - GITHUB_API_URL: API base URL (supports GitHub Enterprise)
    - OCTOFER_HOST / OCTOFER_PORT: Server bind address
    - OCTOFER_LOG_LEVEL / OCTOFER_LOG_FORMAT: Logging setup
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    github_app_id: Optional[int] = Field(
        default=None, validation_alias="GITHUB_APP_ID"
    )
    github_private_key_path: Optional[str] = Field(
        default=None,
        validation_alias="GITHUB_PRIVATE_KEY_PATH",
    )
    github_private_key_base64: Optional[str] = Field(
        default=None,
        repr=False,
        validation_alias="GITHUB_PRIVATE_KEY_BASE64",
    )

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------
    github_webhook_secret: str = Field(
        default=DEFAULT_WEBHOOK_SECRET,
        repr=False,
        validation_alias="GITHUB_WEBHOOK_SECRET",
    )
    github_webhook_header: str = Field(
        default="x-hub-signature-256",
        validation_alias="GITHUB_WEBHOOK_HEADER",
    )

    # -------------------------------------------------------------------------
    # GitHub API
    # -------------------------------------------------------------------------
    github_api_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_API_URL",
    )
    github_max_retries: int = Field(
        default=3, validation_alias="GITHUB_MAX_RETRIES"
    )

    # -------------------------------------------------------------------------
    # Server
    # -------------------------------------------------------------------------
    host: str = Field(default="127.0.0.1", validation_alias="OCTOFER_HOST")
    port: int = Field(default=8000, validation_alias="OCTOFER_PORT")
    log_level: str = Field(
        default="INFO", validation_alias="OCTOFER_LOG_LEVEL"
    )
    log_format: str = Field(
        default="compact", validation_alias="OCTOFER_LOG_FORMAT"
    )
    # Seconds a single handler may run; 0 disables the limit
    handler_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="OCTOFER_HANDLER_TIMEOUT",
    )
    max_body_bytes: int = Field(
        default=DEFAULT_MAX_BODY_BYTES,
        validation_alias="OCTOFER_MAX_BODY_BYTES",
    )

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_private_key_path", "github_private_key_base64")
    @classmethod
    def blank_as_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("github_webhook_secret")
    @classmethod
    def validate_webhook_secret(cls, v: str) -> str:
        """Validate that webhook secret is not empty."""
        if not v or not v.strip():
            raise ValueError("github_webhook_secret cannot be empty")
        return v

    @field_validator("github_webhook_header")
    @classmethod
    def validate_webhook_header(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("github_webhook_header cannot be empty")
        return v.strip().lower()

    @field_validator("github_api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Validate that the API URL is an http(s) URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_api_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("github_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("github_max_retries cannot be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.strip().lower()
        if fmt not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {', '.join(LOG_FORMATS)}")
        return fmt

    @field_validator("handler_timeout_seconds")
    @classmethod
    def validate_handler_timeout(cls, v: float) -> float:
        if v < 0:
            raise ValueError("handler_timeout_seconds cannot be negative")
        return v

    @field_validator("max_body_bytes")
    @classmethod
    def validate_max_body_bytes(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_body_bytes must be at least 1")
        return v

    @property
    def has_app_credentials(self) -> bool:
        """Whether an App ID and a private key source are configured."""
        return self.github_app_id is not None and (
            self.github_private_key_path is not None
            or self.github_private_key_base64 is not None
        )

    @property
    def handler_timeout(self) -> Optional[float]:
        return self.handler_timeout_seconds or None

    def load_credential(self) -> Credential:
        """Load the GitHub App credential.

        Raises:
            ConfigError: If the credential is missing, ambiguous or unreadable.
        """
        return load_credential(
            self.github_app_id,
            private_key_path=self.github_private_key_path,
            private_key_base64=self.github_private_key_base64,
        )


def get_settings() -> OctoferSettings:
    """Create and return an OctoferSettings instance from the environment.

    Raises:
        pydantic.ValidationError: If a value is invalid.
    """
    return OctoferSettings()


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if value is None:
        return "<unset>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def log_configuration(settings: OctoferSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Octofer configuration:")
    logger.info(f"  GitHub App ID: {settings.github_app_id}")
    logger.info(f"  GitHub Private Key Path: {settings.github_private_key_path}")
    logger.info(
        "  GitHub Private Key (base64): "
        f"{'<set>' if settings.github_private_key_base64 else '<unset>'}"
    )
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    if settings.github_webhook_secret == DEFAULT_WEBHOOK_SECRET:
        logger.warning("  Using the default webhook secret; set GITHUB_WEBHOOK_SECRET")
    logger.info(f"  GitHub Webhook Header: {settings.github_webhook_header}")
    logger.info(f"  GitHub API URL: {settings.github_api_url}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Handler Timeout Seconds: {settings.handler_timeout_seconds}")
    logger.info(f"  Max Body Bytes: {settings.max_body_bytes}")


# Attributes every LogRecord has; anything else came from ``extra``
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


_FORMATS = {
    "compact": "%(levelname)s %(name)s: %(message)s",
    "full": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def configure_logging(level: str = "INFO", fmt: str = "compact") -> None:
    """Install a single stream handler on the root logger.

    Args:
        level: Logging level name.
        fmt: One of ``compact``, ``full`` or ``json``.

    Raises:
        ValueError: If ``fmt`` is not a known format.
    """
    if fmt not in LOG_FORMATS:
        raise ValueError(f"Unknown log format: {fmt}")

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_FORMATS[fmt]))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
