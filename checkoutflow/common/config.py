"""Central environment-driven settings for the checkout service.

The process loads this once at startup. Gateway credentials are validated up
front by `load_gateway_config` (see `.env.example`).
"""

from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict

from checkoutflow.common.errors import ConfigMissing


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "checkout"
    log_level: str = "INFO"
    postgres_dsn: str
    api_key: str
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = ""
    wfp_merchant_account: str = ""
    wfp_secret_key: str = ""
    wfp_merchant_domain: str = ""
    app_base_url: str = ""
    wfp_api_url: str = "https://api.wayforpay.com/api"
    gateway_timeout_seconds: float = 10.0
    fallback_product: str = "short"
    return_refresh_seconds: int = 3
    access_token_ttl_seconds: int = 1800
    rate_limit_per_minute: int = 30
    cors_origins: str = "*"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@dataclass(frozen=True)
class GatewayConfig:
    """Validated merchant credentials and URLs for the WayForPay protocol."""

    merchant_account: str
    secret_key: str
    merchant_domain: str
    app_base_url: str
    api_url: str
    timeout_seconds: float

    @property
    def service_url(self) -> str:
        return f"{self.app_base_url}/api/wfp/webhook"


GATEWAY_ENV_KEYS = {
    "WFP_MERCHANT_ACCOUNT": "wfp_merchant_account",
    "WFP_SECRET_KEY": "wfp_secret_key",
    "WFP_MERCHANT_DOMAIN": "wfp_merchant_domain",
    "APP_BASE_URL": "app_base_url",
}


def load_gateway_config(source: CommonSettings) -> GatewayConfig:
    """Build the gateway config, raising `ConfigMissing` for every absent key."""

    missing = [env for env, attr in GATEWAY_ENV_KEYS.items() if not getattr(source, attr).strip()]
    if missing:
        raise ConfigMissing(need=list(GATEWAY_ENV_KEYS), missing=missing)
    return GatewayConfig(
        merchant_account=source.wfp_merchant_account.strip(),
        secret_key=source.wfp_secret_key,
        merchant_domain=source.wfp_merchant_domain.strip(),
        app_base_url=source.app_base_url.strip().rstrip("/"),
        api_url=source.wfp_api_url,
        timeout_seconds=source.gateway_timeout_seconds,
    )


settings = CommonSettings()
