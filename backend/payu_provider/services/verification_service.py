"""
Verification Service — On-demand PayU status lookup.
Recovery path when a webhook never arrived; usable outside a session context.
"""
import logging
from typing import Optional

import httpx

from payu_provider.config import ENVIRONMENTS, GatewayConfig, Settings, get_settings
from payu_provider.exceptions import GatewayError
from payu_provider.schemas.schemas import VerificationResult
from payu_provider.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)


class VerificationService:
    """Stateless wrapper around GatewayClient.check_status."""

    @staticmethod
    async def verify(
        txnid: str,
        merchant_key: Optional[str] = None,
        merchant_salt: Optional[str] = None,
        environment: Optional[str] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> VerificationResult:
        """Verify a transaction with PayU.

        Explicit credentials win; otherwise they are read from settings.
        Missing credentials return a failed result instead of raising.

        Returns:
            VerificationResult with status = PayU txn status, "not_found" or "error".
        """
        settings = settings or get_settings()
        key = (merchant_key or settings.PAYU_MERCHANT_KEY or "").strip()
        salt = (merchant_salt or settings.PAYU_MERCHANT_SALT or "").strip()
        env = (environment or settings.PAYU_ENVIRONMENT or "test").strip().lower()

        if not key or not salt:
            return VerificationResult(success=False, status="error", error="PayU configuration missing")
        if env not in ENVIRONMENTS:
            return VerificationResult(success=False, status="error", error=f"Unknown PayU environment: {env}")

        config = GatewayConfig(
            merchant_key=key,
            merchant_salt=salt,
            environment=env,
            timeout_seconds=settings.PAYU_API_TIMEOUT_SECONDS,
            storefront_url=settings.STOREFRONT_URL,
            success_path=settings.PAYU_SUCCESS_PATH,
            failure_path=settings.PAYU_FAILURE_PATH,
        )

        try:
            result = await GatewayClient(config, transport=transport).check_status(txnid)
        except GatewayError as e:
            logger.error("PayU verification of %s failed: %s", txnid, e)
            return VerificationResult(success=False, status="error", error=str(e))

        if result.transaction_details is not None:
            return VerificationResult(success=True, status=result.status, transaction=result.transaction_details)

        return VerificationResult(
            success=False,
            status="not_found" if result.status == "not_found" else "error",
            error=result.message or "Transaction not found",
        )
