from __future__ import annotations

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["GatewaySettings", "get_settings"]


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHAT_GATEWAY_", env_file=".env", extra="ignore")

    # Keyset
    subscribe_key: str = ""
    publish_key: str = ""
    secret_key: SecretStr = SecretStr("")
    secret_name: str = "secretKey"

    # Upstream
    origin: str = "ps.pndsn.com"
    redis_url: str = "redis://localhost:6379/0"
    upstream_timeout: float = 5.0  # seconds, per external call

    # TTLs in minutes
    grant_ttl: int = 10080
    record_ttl: int = 525600

    log_level: str = "INFO"

    def vault_secrets(self) -> dict[str, str]:
        return {self.secret_name: self.secret_key.get_secret_value()}


@lru_cache
def get_settings() -> GatewaySettings:
    return GatewaySettings()
