"""
Provider Errors — Typed failures raised by the PayU core.
"""
from typing import Optional


class PaymentProviderError(Exception):
    """Base class for every error raised by the provider."""


class ConfigurationError(PaymentProviderError):
    """Missing or invalid credentials / redirect URLs. Never retried."""


class ValidationError(PaymentProviderError):
    """Invalid caller input, e.g. a bad amount or unresolvable customer fields."""


class PreconditionError(PaymentProviderError):
    """The session is not in a state that allows the requested operation."""


class GatewayError(PaymentProviderError):
    """Transport or protocol failure talking to the PayU API."""


class GatewayTimeoutError(GatewayError):
    """The PayU API did not answer within the configured timeout. Safe to retry."""


class GatewayRejectionError(GatewayError):
    """PayU answered with a failure status.

    ``reason`` is a coarse classification used for messaging only,
    ``gateway_message`` is the untouched message from PayU.
    """

    def __init__(
        self,
        message: str,
        reason: str = "unknown",
        code: Optional[str] = None,
        gateway_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.code = code
        self.gateway_message = gateway_message if gateway_message is not None else message


class IntegrityError(PaymentProviderError):
    """Hash verification failed or a signed payload does not match its session."""
