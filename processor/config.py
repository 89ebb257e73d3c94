"""Service configuration read from environment variables."""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_CALENDAR_ID = '33'
DEFAULT_TIMEZONE = 'Asia/Tokyo'
DEFAULT_CACHE_TTL_SECONDS = 300


class ConfigurationError(Exception):
    """Raised when a required setting is missing."""


@dataclass(frozen=True)
class ServiceConfig:
    """Settings for one Lambda invocation."""
    source_base_url: Optional[str]
    user_agent: Optional[str]
    source_page_id: Optional[str] = None
    calendar_id: str = DEFAULT_CALENDAR_ID
    timezone: str = DEFAULT_TIMEZONE
    log_level: str = 'INFO'
    timeout_seconds: Optional[float] = None
    cache_table_name: Optional[str] = None
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ServiceConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            ServiceConfig instance
        """
        env = os.environ if environ is None else environ
        timeout = env.get('TIMEOUT_SECONDS')
        return cls(
            source_base_url=env.get('SOURCE_BASE_URL') or None,
            user_agent=env.get('USER_AGENT') or None,
            source_page_id=env.get('SOURCE_PAGE_ID') or None,
            calendar_id=env.get('CALENDAR_ID') or DEFAULT_CALENDAR_ID,
            timezone=env.get('TIMEZONE') or DEFAULT_TIMEZONE,
            log_level=env.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=float(timeout) if timeout else None,
            cache_table_name=env.get('CACHE_TABLE_NAME') or None,
            cache_ttl_seconds=int(env.get('CACHE_TTL_SECONDS', DEFAULT_CACHE_TTL_SECONDS)),
        )

    def require_source(self) -> None:
        """Fail before any outbound call when the upstream is not configured."""
        if not self.source_base_url:
            raise ConfigurationError("Configuration error: SOURCE_BASE_URL is missing")
        if not self.user_agent:
            raise ConfigurationError("Configuration error: USER_AGENT is missing")
