"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    TWILIO_ACCOUNT_SID: Account the dev phone provisions resources on
    TWILIO_AUTH_TOKEN: Auth token for the account (used when no API key is set)
    TWILIO_API_KEY: Long-lived API key (SK...) for the active profile
    TWILIO_API_SECRET: Secret for TWILIO_API_KEY
    TWILIO_DEV_PHONE_PORT: Port for the local web server (default: a free port)
    DEBUG: Enable debug logging (default: False)
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_ROOT = Path(__file__).parent

API_KEY_PREFIX = "SK"


@dataclass(frozen=True)
class TwilioProfile:
    """Credentials of the active Twilio profile.

    When the profile was configured from account credentials only, the
    account SID stands in for the API key and the auth token for the secret,
    the same way the Twilio CLI fills in its own profile.
    """

    account_sid: str
    api_key: str
    api_secret: str

    @property
    def has_api_key(self) -> bool:
        """Check if the profile carries a long-lived API key."""
        return self.api_key.startswith(API_KEY_PREFIX)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Twilio profile
    twilio_account_sid: str = ""
    """Account SID (AC...) all resources are created on."""

    twilio_auth_token: str = ""
    """Auth token for the account. Only used when no API key is configured."""

    twilio_api_key: str = ""
    """API key SID (SK...). When set, it is reused to sign access tokens."""

    twilio_api_secret: str = ""
    """Secret of twilio_api_key."""

    # Local web server
    host: str = "127.0.0.1"
    """Host to bind the local web server."""

    port: Optional[int] = Field(
        default=None,
        validation_alias="TWILIO_DEV_PHONE_PORT",
    )
    """Port override. A free port is picked when unset."""

    debug: bool = False
    """Enable debug logging."""

    headless: bool = False
    """Do not open the UI in a browser."""

    ui_dir: Optional[Path] = None
    """Directory holding a built UI (index.html). Served at / when present."""

    # Session
    phone_number: Optional[str] = None
    """Phone number (E.164) to bind the dev phone to at startup."""

    force: bool = False
    """Overwrite existing webhooks on the chosen phone number."""

    clear: bool = False
    """Remove every dev-phone resource on the account before starting."""

    sweep_on_failure: bool = True
    """Remove this session's resources when provisioning fails half way."""

    # Tokens
    token_ttl: int = 24 * 60 * 60
    """Access token lifetime in seconds (default: 24 hours)."""

    # Remote calls
    remote_timeout: float = 30.0
    """Timeout in seconds for a single Twilio API call."""

    phone_number_cache_ttl: float = 20.0
    """How long the phone number listing is served from cache, in seconds."""

    # Webhook backend
    serverless_functions_dir: Path = PACKAGE_ROOT / "serverless" / "functions"
    """Directory holding the webhook handler sources to deploy."""

    build_poll_interval: float = 2.0
    """Seconds between build status checks while deploying."""

    build_timeout: float = 300.0
    """Maximum seconds to wait for the webhook backend build."""

    call_log_map_name: str = "CallLog"
    """Name of the Sync map holding call history."""

    app_name: str = "dev-phone"
    """Application name."""

    version: str = "1.0.0"
    """Version reported to the webhook backend and in the user agent."""

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def profile(self) -> TwilioProfile:
        """Get the active Twilio profile."""
        if self.twilio_api_key and self.twilio_api_secret:
            return TwilioProfile(
                account_sid=self.twilio_account_sid,
                api_key=self.twilio_api_key,
                api_secret=self.twilio_api_secret,
            )
        return TwilioProfile(
            account_sid=self.twilio_account_sid,
            api_key=self.twilio_account_sid,
            api_secret=self.twilio_auth_token,
        )

    @property
    def has_credentials(self) -> bool:
        """Check if enough credentials are set to reach the Twilio API."""
        profile = self.profile
        return bool(profile.account_sid and profile.api_key and profile.api_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from devphone.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.call_log_map_name)
        CallLog
    """
    return Settings()
