"""
Provider Configuration — Environment & Settings
Loads PayU credentials and redirect URLs from .env with Pydantic Settings,
then validates them once into an immutable GatewayConfig.
"""
from pathlib import Path
from functools import lru_cache

from pydantic import BaseModel
from pydantic_settings import BaseSettings

from payu_provider.exceptions import ConfigurationError

# Resolve paths relative to backend/ directory
BASE_DIR = Path(__file__).resolve().parent.parent

ENVIRONMENTS = ("test", "production")

PAYMENT_URLS = {
    "test": "https://test.payu.in/_payment",
    "production": "https://secure.payu.in/_payment",
}

POSTSERVICE_URLS = {
    "test": "https://test.payu.in/merchant/postservice.php?form=2",
    "production": "https://info.payu.in/merchant/postservice.php?form=2",
}


class Settings(BaseSettings):
    """Provider settings loaded from environment variables."""

    # --- Core ---
    APP_NAME: str = "PayU Payment Provider"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # --- PayU credentials ---
    PAYU_MERCHANT_KEY: str = ""
    PAYU_MERCHANT_SALT: str = ""
    PAYU_ENVIRONMENT: str = "test"
    PAYU_AUTO_CAPTURE: bool = True
    PAYU_API_TIMEOUT_SECONDS: float = 30.0
    PAYU_SERVICE_PROVIDER: str = "payu_paisa"
    PAYU_DEFAULT_PRODUCT_INFO: str = "Order Payment"
    PAYU_DEFAULT_COUNTRY_CODE: str = "in"

    # --- Redirect URLs ---
    STOREFRONT_URL: str = ""
    PAYU_SUCCESS_PATH: str = ""
    PAYU_FAILURE_PATH: str = ""

    # --- Audit trail ---
    AUDIT_ENABLED: bool = True
    DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'data' / 'payu_audit.db'}"

    # --- Logging ---
    LOG_DIR: str = str(BASE_DIR / "logs")
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


class GatewayConfig(BaseModel, frozen=True):
    """Validated, immutable configuration injected into every component."""

    merchant_key: str
    merchant_salt: str
    environment: str = "test"
    auto_capture: bool = True
    timeout_seconds: float = 30.0
    storefront_url: str
    success_path: str
    failure_path: str
    service_provider: str = "payu_paisa"
    default_product_info: str = "Order Payment"
    default_country_code: str = "in"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "GatewayConfig":
        """Validate settings once and freeze them.

        Raises:
            ConfigurationError: If credentials or redirect URLs are missing,
                or the environment/timeout is invalid.
        """
        settings = settings or get_settings()

        key = settings.PAYU_MERCHANT_KEY.strip()
        salt = settings.PAYU_MERCHANT_SALT.strip()
        if not key or not salt:
            raise ConfigurationError(
                "PayU: merchant key and salt are required. "
                "Set PAYU_MERCHANT_KEY and PAYU_MERCHANT_SALT environment variables."
            )

        environment = (settings.PAYU_ENVIRONMENT or "test").strip().lower()
        if environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"PayU: PAYU_ENVIRONMENT must be one of {', '.join(ENVIRONMENTS)}, got '{environment}'"
            )

        missing = [
            name for name, value in (
                ("STOREFRONT_URL", settings.STOREFRONT_URL),
                ("PAYU_SUCCESS_PATH", settings.PAYU_SUCCESS_PATH),
                ("PAYU_FAILURE_PATH", settings.PAYU_FAILURE_PATH),
            )
            if not value.strip()
        ]
        if missing:
            raise ConfigurationError(f"PayU: missing redirect configuration: {', '.join(missing)}")

        if settings.PAYU_API_TIMEOUT_SECONDS <= 0:
            raise ConfigurationError("PayU: PAYU_API_TIMEOUT_SECONDS must be positive")

        return cls(
            merchant_key=key,
            merchant_salt=salt,
            environment=environment,
            auto_capture=settings.PAYU_AUTO_CAPTURE,
            timeout_seconds=settings.PAYU_API_TIMEOUT_SECONDS,
            storefront_url=settings.STOREFRONT_URL.strip().rstrip("/"),
            success_path=settings.PAYU_SUCCESS_PATH.strip(),
            failure_path=settings.PAYU_FAILURE_PATH.strip(),
            service_provider=settings.PAYU_SERVICE_PROVIDER,
            default_product_info=settings.PAYU_DEFAULT_PRODUCT_INFO,
            default_country_code=settings.PAYU_DEFAULT_COUNTRY_CODE,
        )

    @property
    def payment_url(self) -> str:
        """Hosted checkout endpoint for the configured environment."""
        return PAYMENT_URLS[self.environment]

    @property
    def postservice_url(self) -> str:
        """Merchant postback API endpoint for the configured environment."""
        return POSTSERVICE_URLS[self.environment]

    def success_url(self, country_code: str) -> str:
        return f"{self.storefront_url}/{country_code}{self.success_path}"

    def failure_url(self, country_code: str) -> str:
        return f"{self.storefront_url}/{country_code}{self.failure_path}"
