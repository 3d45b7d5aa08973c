"""Configuration management using Pydantic Settings"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cryptopay_gateway.domain.exceptions import ConfigurationError

MAINNET_URL = "https://api.etherscan.io/api"
SEPOLIA_URL = "https://api-sepolia.etherscan.io/api"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Explorer API
    etherscan_api_keys: str = ""  # comma-separated, rotated round-robin
    etherscan_base_url: str = MAINNET_URL
    etherscan_rate_limit: float = 5.0  # free tier: 5 requests/second
    etherscan_timeout: float = 30.0
    etherscan_cache_ttl: float = 300.0
    etherscan_cache_max_size: int = 1000

    # Monitoring
    monitor_poll_interval_seconds: float = Field(10.0, gt=0)

    # Database
    database_url: str = "sqlite:///./cryptopay.db"

    # Service
    service_name: str = "cryptopay-gateway"
    log_level: str = "INFO"

    # Caller-side retry for transport errors
    retry_max_attempts: int = 5
    retry_backoff_base: float = 1.0  # Exponential backoff base in seconds

    def api_key_list(self) -> List[str]:
        return [key.strip() for key in self.etherscan_api_keys.split(",") if key.strip()]


settings = Settings()


@dataclass(frozen=True)
class ClientConfig:
    """
    Resolved explorer client configuration.

    Validated once at construction; an invalid instance never exists.

    Raises:
        ConfigurationError: On empty credentials or non-positive limits
    """

    api_keys: Tuple[str, ...]
    base_url: str = MAINNET_URL
    rate_limit_per_second: float = 5.0
    timeout_seconds: float = 30.0
    cache_ttl_seconds: float = 300.0
    cache_max_size: int = 1000

    def __post_init__(self) -> None:
        object.__setattr__(self, "api_keys", tuple(self.api_keys))
        self.validate()

    def validate(self) -> None:
        if not self.api_keys:
            raise ConfigurationError("At least one API key is required")
        if any(not key or not key.strip() for key in self.api_keys):
            raise ConfigurationError("API key cannot be empty")
        if not self.base_url:
            raise ConfigurationError("Base URL cannot be empty")
        if self.rate_limit_per_second <= 0:
            raise ConfigurationError("Rate limit must be greater than 0")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("Timeout must be greater than 0")
        if self.cache_ttl_seconds <= 0:
            raise ConfigurationError("Cache TTL must be greater than 0")
        if self.cache_max_size <= 0:
            raise ConfigurationError("Cache max size must be greater than 0")

    @classmethod
    def mainnet(cls, api_key: str) -> "ClientConfig":
        return cls(api_keys=(api_key,))

    @classmethod
    def testnet(cls, api_key: str) -> "ClientConfig":
        """Ethereum Sepolia testnet"""
        return cls(api_keys=(api_key,), base_url=SEPOLIA_URL)

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "ClientConfig":
        source = source or settings
        return cls(
            api_keys=tuple(source.api_key_list()),
            base_url=source.etherscan_base_url,
            rate_limit_per_second=source.etherscan_rate_limit,
            timeout_seconds=source.etherscan_timeout,
            cache_ttl_seconds=source.etherscan_cache_ttl,
            cache_max_size=source.etherscan_cache_max_size,
        )

    @classmethod
    def builder(cls) -> "ClientConfigBuilder":
        return ClientConfigBuilder()


@dataclass
class ClientConfigBuilder:
    """Fluent construction of ClientConfig; validation happens in build()"""

    _api_keys: List[str] = field(default_factory=list)
    _base_url: str = MAINNET_URL
    _rate_limit: float = 5.0
    _timeout: float = 30.0
    _cache_ttl: float = 300.0
    _cache_max_size: int = 1000

    def api_key(self, key: str) -> "ClientConfigBuilder":
        self._api_keys.append(key)
        return self

    def api_keys(self, keys: List[str]) -> "ClientConfigBuilder":
        self._api_keys = list(keys)
        return self

    def base_url(self, url: str) -> "ClientConfigBuilder":
        self._base_url = url
        return self

    def testnet(self) -> "ClientConfigBuilder":
        self._base_url = SEPOLIA_URL
        return self

    def rate_limit(self, per_second: float) -> "ClientConfigBuilder":
        self._rate_limit = per_second
        return self

    def timeout(self, seconds: float) -> "ClientConfigBuilder":
        self._timeout = seconds
        return self

    def cache_ttl(self, seconds: float) -> "ClientConfigBuilder":
        self._cache_ttl = seconds
        return self

    def cache_max_size(self, size: int) -> "ClientConfigBuilder":
        self._cache_max_size = size
        return self

    def build(self) -> ClientConfig:
        return ClientConfig(
            api_keys=tuple(self._api_keys),
            base_url=self._base_url,
            rate_limit_per_second=self._rate_limit,
            timeout_seconds=self._timeout,
            cache_ttl_seconds=self._cache_ttl,
            cache_max_size=self._cache_max_size,
        )
