"""
Webhook Reconciler — Normalizes, authenticates and classifies PayU webhooks.
Never raises for a bad payload: anything unparseable or unauthenticated is
classified as ``not_supported`` and leaves every session untouched.
"""
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from payu_provider.config import GatewayConfig
from payu_provider.exceptions import IntegrityError
from payu_provider.schemas.schemas import WebhookAction, WebhookEvent, WebhookResult
from payu_provider.services.audit_service import AuditService
from payu_provider.utils.hashing import HashEngine

logger = logging.getLogger(__name__)

RAW_BODY_KEYS = ("raw_body", "rawBody", "rawData")
NESTED_KEY = "data"
REQUIRED_FIELDS = ("txnid", "status", "hash")

STATUS_ACTIONS = {
    "success": WebhookAction.AUTHORIZED,
    "failure": WebhookAction.FAILED,
    "failed": WebhookAction.FAILED,
    "refund": WebhookAction.REFUND_ACKNOWLEDGED,
    "refunded": WebhookAction.REFUND_ACKNOWLEDGED,
    "dispute": WebhookAction.MANUAL_REVIEW,
    "chargeback": WebhookAction.MANUAL_REVIEW,
}


def _decode_raw(raw: Any) -> Dict[str, Any]:
    """Decode an undecoded webhook body (form-encoded, or JSON)."""
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8")
    text = str(raw).strip()
    if text.startswith("{"):
        decoded = json.loads(text)
        if not isinstance(decoded, dict):
            raise ValueError("JSON webhook body is not an object")
        return decoded
    return dict(httpx.QueryParams(text).items())


def extract_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Pick exactly one payload shape.

    Precedence: raw undecoded body > nested ``data`` object > top-level
    fields. The first shape present wins; shapes are never merged.
    """
    for key in RAW_BODY_KEYS:
        raw = payload.get(key)
        if raw:
            return _decode_raw(raw)

    nested = payload.get(NESTED_KEY)
    if isinstance(nested, Mapping):
        return dict(nested)

    return {k: v for k, v in payload.items() if k not in RAW_BODY_KEYS and k != NESTED_KEY}


def normalize(payload: Mapping[str, Any]) -> WebhookEvent:
    """Turn any accepted payload shape into a canonical WebhookEvent."""
    fields = extract_fields(payload)
    as_strings = {
        str(k): ("" if v is None else str(v))
        for k, v in fields.items()
        if not isinstance(v, (dict, list))
    }
    return WebhookEvent.model_validate(as_strings)


class WebhookReconciler:
    """Single-shot webhook classifier. Holds only immutable configuration."""

    def __init__(self, config: GatewayConfig, session_factory: Optional[Callable[[], Session]] = None):
        self.config = config
        self.session_factory = session_factory

    def _reject(self, reason: str, event: Optional[WebhookEvent] = None) -> WebhookResult:
        return WebhookResult(action=WebhookAction.NOT_SUPPORTED, event=event, reason=reason)

    def reconcile(self, payload: Mapping[str, Any]) -> WebhookResult:
        try:
            event = normalize(payload or {})
        except (AttributeError, ValueError, TypeError, PydanticValidationError) as e:
            logger.warning("PayU webhook: unparseable payload (%s)", e)
            return self._reject(f"Unparseable payload: {e}")

        missing = [name for name in REQUIRED_FIELDS if not getattr(event, name)]
        if missing:
            logger.warning("PayU webhook: missing %s (txnid=%s)", ", ".join(missing), event.txnid or "?")
            return self._reject(f"Missing required fields: {', '.join(missing)}", event)

        logger.info("PayU webhook: txnid=%s, status=%s", event.txnid, event.status)
        correlation_id = event.udf1 or event.txnid

        try:
            HashEngine.require_valid_response(
                salt=self.config.merchant_salt,
                key=self.config.merchant_key,
                status=event.status,
                email=event.email,
                firstname=event.firstname,
                productinfo=event.productinfo,
                amount=event.amount,
                txnid=event.txnid,
                claimed_hash=event.hash,
                udf1=event.udf1, udf2=event.udf2, udf3=event.udf3, udf4=event.udf4, udf5=event.udf5,
                additional_charges=event.additional_charges or None,
            )
        except IntegrityError as e:
            logger.warning("PayU webhook: invalid hash for %s, possible tampering", event.txnid)
            AuditService.record(
                self.session_factory,
                correlation_id,
                "WEBHOOK_REJECTED",
                payload=event.model_dump(exclude={"hash"}),
                metadata={"reason": str(e), "claimed_hash": event.hash},
            )
            return self._reject("Hash verification failed", event)

        action = STATUS_ACTIONS.get(event.status.strip().lower(), WebhookAction.NOT_SUPPORTED)
        if action == WebhookAction.NOT_SUPPORTED:
            logger.info("PayU webhook: unhandled status %r for %s", event.status, event.txnid)
            return self._reject(f"Unhandled status: {event.status}", event)

        amount = None
        if action in (WebhookAction.AUTHORIZED, WebhookAction.FAILED):
            try:
                amount = Decimal(event.amount)
            except InvalidOperation:
                logger.warning("PayU webhook: bad amount %r for %s", event.amount, event.txnid)
                return self._reject(f"Invalid amount: {event.amount}", event)
            if not amount.is_finite():
                return self._reject(f"Invalid amount: {event.amount}", event)

        if action == WebhookAction.MANUAL_REVIEW:
            logger.warning("PayU webhook: %s flagged for manual review (%s)", event.txnid, event.status)

        AuditService.record(
            self.session_factory,
            correlation_id,
            f"WEBHOOK_{action.name}",
            payload=event.model_dump(exclude={"hash"}),
        )
        return WebhookResult(
            action=action,
            session_correlation_id=correlation_id,
            amount=amount,
            event=event,
        )
