"""
PayU payment provider core: request signing, webhook verification and
payment session reconciliation for redirect checkout.
"""
from payu_provider.config import GatewayConfig, Settings, get_settings
from payu_provider.exceptions import (
    ConfigurationError,
    GatewayError,
    GatewayRejectionError,
    GatewayTimeoutError,
    IntegrityError,
    PaymentProviderError,
    PreconditionError,
    ValidationError,
)
from payu_provider.provider import PAYU_PROVIDER_ID, PayuProvider

__all__ = [
    "PayuProvider", "PAYU_PROVIDER_ID",
    "GatewayConfig", "Settings", "get_settings",
    "PaymentProviderError", "ConfigurationError", "ValidationError", "PreconditionError",
    "GatewayError", "GatewayTimeoutError", "GatewayRejectionError", "IntegrityError",
]
