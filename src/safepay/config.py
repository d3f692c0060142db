"""Application configuration using pydantic-settings.

Provider credentials are optional: an adapter whose required key is missing
is built disabled rather than failing at startup.
"""

from functools import lru_cache
from typing import TYPE_CHECKING, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from safepay.providers.base import ProviderConfig


DEFAULT_PROVIDERS = "exolix,fixedfloat,changenow,simpleswap,stealthex,changelly"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    log_level: str = Field(default="INFO", description="Log level when debug is off")

    # ======================
    # Providers
    # ======================
    provider_timeout: float = Field(
        default=30.0, gt=0, description="Per-request timeout for provider APIs (seconds)"
    )
    provider_test_mode: bool = Field(
        default=False, description="Use provider sandbox behaviour where available"
    )
    enabled_providers: str = Field(
        default=DEFAULT_PROVIDERS,
        description="Comma-separated list of providers registered by default",
    )

    exolix_api_key: Optional[str] = Field(default=None, description="Exolix API key (optional)")
    fixedfloat_api_key: Optional[str] = Field(
        default=None, description="FixedFloat API key (optional, raises limits)"
    )
    changenow_api_key: Optional[str] = Field(default=None, description="ChangeNOW API key")
    simpleswap_api_key: Optional[str] = Field(default=None, description="SimpleSwap API key")
    stealthex_api_key: Optional[str] = Field(default=None, description="StealthEX API key")
    changelly_api_key: Optional[str] = Field(default=None, description="Changelly API key")
    changelly_api_secret: Optional[str] = Field(
        default=None, description="Changelly API secret for request signing"
    )

    # ======================
    # Provider Health
    # ======================
    health_min_requests: int = Field(
        default=10, ge=1, description="Requests needed before auto-disable decisions"
    )
    health_max_consecutive_failures: int = Field(
        default=5, ge=1, description="Consecutive failures that trip auto-disable"
    )
    health_min_success_rate: float = Field(
        default=0.7, ge=0, le=1, description="Auto-disable below this success rate"
    )
    health_reenable_success_rate: float = Field(
        default=0.9, ge=0, le=1, description="Recovery success rate needed to re-enable"
    )
    health_max_latency_ms: float = Field(
        default=30000, gt=0, description="Flag providers whose average latency exceeds this"
    )
    health_probe_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for health-check liveness probes (seconds)"
    )
    health_check_interval_seconds: int = Field(
        default=300, ge=1, description="Seconds between scheduled health checks"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def provider_names(self) -> list[str]:
        """Parse enabled provider names into a list."""
        return [n.strip().lower() for n in self.enabled_providers.split(",") if n.strip()]

    def provider_config(self, name: str) -> "ProviderConfig":
        """Build the runtime configuration for a single provider."""
        from safepay.providers.base import ProviderConfig

        key_map = {
            "exolix": self.exolix_api_key,
            "fixedfloat": self.fixedfloat_api_key,
            "changenow": self.changenow_api_key,
            "simpleswap": self.simpleswap_api_key,
            "stealthex": self.stealthex_api_key,
            "changelly": self.changelly_api_key,
        }
        secret = self.changelly_api_secret if name.lower() == "changelly" else None
        return ProviderConfig(
            api_key=key_map.get(name.lower()) or None,
            api_secret=secret or None,
            timeout=self.provider_timeout,
            test_mode=self.provider_test_mode,
        )

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""

        def _mask(value: Optional[str]) -> str:
            return "***" if value else "(not set)"

        return {
            "environment": self.environment,
            "debug": self.debug,
            "log_level": self.log_level,
            "providers": {
                "enabled": self.provider_names,
                "timeout": self.provider_timeout,
                "test_mode": self.provider_test_mode,
                "keys": {
                    "exolix": _mask(self.exolix_api_key),
                    "fixedfloat": _mask(self.fixedfloat_api_key),
                    "changenow": _mask(self.changenow_api_key),
                    "simpleswap": _mask(self.simpleswap_api_key),
                    "stealthex": _mask(self.stealthex_api_key),
                    "changelly": _mask(self.changelly_api_key),
                    "changelly_secret": _mask(self.changelly_api_secret),
                },
            },
            "health": {
                "min_requests": self.health_min_requests,
                "max_consecutive_failures": self.health_max_consecutive_failures,
                "min_success_rate": self.health_min_success_rate,
                "reenable_success_rate": self.health_reenable_success_rate,
                "max_latency_ms": self.health_max_latency_ms,
                "probe_timeout": self.health_probe_timeout,
                "check_interval_seconds": self.health_check_interval_seconds,
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
