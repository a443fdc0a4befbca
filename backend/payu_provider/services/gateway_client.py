"""
Gateway Client — Signed calls to the PayU merchant postback API.
Handles: transaction status verification and refunds.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from payu_provider.config import GatewayConfig
from payu_provider.exceptions import GatewayError, GatewayTimeoutError
from payu_provider.schemas.schemas import RefundResult, StatusCheckResult
from payu_provider.utils.hashing import HashEngine

logger = logging.getLogger(__name__)

VERIFY_COMMAND = "verify_payment"
REFUND_COMMAND = "cancel_refund_transaction"


class GatewayClient:
    """Stateless PayU API client. Holds only immutable configuration."""

    def __init__(self, config: GatewayConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=self._transport,
        )

    async def _post(self, command: str, var1: str, **extra: str) -> Dict[str, Any]:
        """POST a signed, form-encoded command and return the decoded JSON body.

        Raises:
            GatewayTimeoutError: The call exceeded the configured timeout.
            GatewayError: Network failure, HTTP error status or a non-JSON body.
        """
        form = {
            "key": self.config.merchant_key,
            "command": command,
            "var1": var1,
            **extra,
            "hash": HashEngine.sign_command(self.config.merchant_key, command, var1, self.config.merchant_salt),
        }

        # httpx timeouts apply per phase; wait_for caps the whole call
        try:
            async with self._client() as client:
                response = await asyncio.wait_for(
                    client.post(self.config.postservice_url, data=form),
                    timeout=self.config.timeout_seconds,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.error("PayU %s timed out after %ss (var1=%s)", command, self.config.timeout_seconds, var1)
            raise GatewayTimeoutError(
                f"PayU API request timed out after {self.config.timeout_seconds}s"
            )
        except httpx.RequestError as e:
            logger.error("PayU %s request failed: %s", command, e)
            raise GatewayError(f"PayU API request failed: {e}")

        if not response.is_success:
            raise GatewayError(f"PayU API returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            raise GatewayError("PayU API returned a non-JSON response")

        if not isinstance(body, dict):
            raise GatewayError("PayU API returned an unexpected JSON shape")
        return body

    async def check_status(self, txnid: str) -> StatusCheckResult:
        """Look up a transaction with the verify_payment command.

        A txnid missing from ``transaction_details`` (or reported as
        "Not Found") means PayU has no such transaction; that is a normal
        result, not an error.
        """
        body = await self._post(VERIFY_COMMAND, txnid)
        message = str(body.get("msg") or "")

        if _as_int(body.get("status")) != 1:
            return StatusCheckResult(success=False, status="error", message=message or "Verification failed", raw=body)

        details = body.get("transaction_details") or {}
        txn = details.get(txnid) if isinstance(details, dict) else None
        if not isinstance(txn, dict) or str(txn.get("status", "")).strip().lower() == "not found":
            return StatusCheckResult(success=False, status="not_found", message=message or "Transaction not found", raw=body)

        status = str(txn.get("status", "")).strip()
        logger.debug("PayU verify %s -> %s", txnid, status)
        return StatusCheckResult(
            success=status.lower() == "success",
            status=status,
            transaction_details=txn,
            message=message,
            raw=body,
        )

    async def refund(self, gateway_transaction_id: str, token_id: str, amount: str) -> RefundResult:
        """Submit a (partial) refund against a PayU transaction (mihpayid)."""
        body = await self._post(REFUND_COMMAND, gateway_transaction_id, var2=token_id, var3=amount)

        request_id = body.get("request_id")
        return RefundResult(
            success=_as_int(body.get("status")) == 1,
            message=str(body.get("msg") or ""),
            request_id=str(request_id) if request_id is not None else None,
            gateway_transaction_id=str(body["mihpayid"]) if body.get("mihpayid") is not None else None,
            error_code=str(body["error_code"]) if body.get("error_code") is not None else None,
            raw=body,
        )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
