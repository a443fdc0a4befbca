"""
Session State Machine — PayU payment session lifecycle.

Flow:
1. initiate  - signs the checkout request, session is ``pending``
2. customer pays on the PayU hosted page, PayU redirects back + sends webhook
3. authorize - confirms with the verify_payment API (or apply_webhook)
4. capture   - bookkeeping only, PayU captures server-side
5. refund / cancel
"""
import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from payu_provider.config import GatewayConfig
from payu_provider.exceptions import (
    GatewayError,
    GatewayRejectionError,
    IntegrityError,
    PreconditionError,
    ValidationError,
)
from payu_provider.schemas.schemas import (
    CheckoutForm,
    CustomerContext,
    PaymentSession,
    PaymentStatus,
    RefundFailureReason,
    RefundRecord,
    SessionStatus,
    WebhookAction,
    WebhookResult,
)
from payu_provider.services.audit_service import AuditService
from payu_provider.services.gateway_client import GatewayClient
from payu_provider.utils.hashing import HashEngine
from payu_provider.utils.identifiers import generate_refund_token, generate_txnid
from payu_provider.utils.validators import clean, first_present, format_amount, resolve_customer_fields, to_decimal

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.AUTHORIZED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.AUTHORIZED: {PaymentStatus.CAPTURED, PaymentStatus.REFUNDED, PaymentStatus.CANCELLED},
    PaymentStatus.CAPTURED: {PaymentStatus.REFUNDED, PaymentStatus.CANCELLED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.CANCELLED: set(),
}

HOST_STATUS = {
    PaymentStatus.PENDING: SessionStatus.PENDING,
    PaymentStatus.AUTHORIZED: SessionStatus.AUTHORIZED,
    PaymentStatus.CAPTURED: SessionStatus.AUTHORIZED,
    PaymentStatus.FAILED: SessionStatus.ERROR,
    PaymentStatus.REFUNDED: SessionStatus.AUTHORIZED,
    PaymentStatus.CANCELLED: SessionStatus.CANCELED,
}

# PayU refund failure messages → reason, user-facing message
REFUND_FAILURE_PATTERNS = [
    (
        re.compile(r"try again|after some time|please wait|too many|in progress|concurren|simultaneous", re.I),
        RefundFailureReason.RETRY_LATER,
        "PayU is still processing this transaction. Please retry the refund in a few minutes.",
    ),
    (
        re.compile(r"token.*(already|used|exist|duplicate)|duplicate.*token", re.I),
        RefundFailureReason.TOKEN_ALREADY_USED,
        "A refund with this token was already submitted. Check for a refund already in flight before retrying.",
    ),
    (
        re.compile(r"not found|does not exist|invalid mihpayid|no transaction", re.I),
        RefundFailureReason.TRANSACTION_NOT_FOUND,
        "PayU could not find the original transaction for this refund.",
    ),
    (
        re.compile(r"amount.*(exceed|greater|more than|invalid)|(exceed|invalid).*amount", re.I),
        RefundFailureReason.INVALID_AMOUNT,
        "The refund amount is invalid or exceeds the amount originally paid.",
    ),
]


def classify_refund_failure(message: str) -> tuple[RefundFailureReason, str]:
    """Map a PayU refund failure message to (reason, human-readable message).

    Unknown messages pass through verbatim.
    """
    for pattern, reason, friendly in REFUND_FAILURE_PATTERNS:
        if pattern.search(message or ""):
            return reason, friendly
    return RefundFailureReason.UNKNOWN, message or "Refund failed"


class SessionStateMachine:
    """Owns PaymentSession transitions. Sessions are never mutated in place."""

    def __init__(
        self,
        config: GatewayConfig,
        client: Optional[GatewayClient] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.config = config
        self.client = client or GatewayClient(config)
        self.session_factory = session_factory

    # ─── Signing helpers ────────────────────────────────────────────

    def _sign(self, session: PaymentSession) -> PaymentSession:
        """Recompute hash and checkout form from the session's signed fields."""
        digest = HashEngine.sign_request(
            self.config.merchant_key,
            self.config.merchant_salt,
            session.txnid,
            session.amount,
            session.productinfo,
            session.firstname,
            session.email,
            udf1=session.udf1, udf2=session.udf2, udf3=session.udf3, udf4=session.udf4, udf5=session.udf5,
        )
        form = CheckoutForm(
            key=self.config.merchant_key,
            txnid=session.txnid,
            amount=session.amount,
            productinfo=session.productinfo,
            firstname=session.firstname,
            email=session.email,
            phone=session.phone,
            surl=self.config.success_url(session.country_code),
            furl=self.config.failure_url(session.country_code),
            hash=digest,
            service_provider=self.config.service_provider,
            udf1=session.udf1, udf2=session.udf2, udf3=session.udf3, udf4=session.udf4, udf5=session.udf5,
        )
        return session.model_copy(update={"hash": digest, "form_data": form, "payment_url": self.config.payment_url})

    def _transition(self, session: PaymentSession, target: PaymentStatus, **changes: Any) -> PaymentSession:
        if target not in ALLOWED_TRANSITIONS[session.status]:
            raise PreconditionError(
                f"Cannot move PayU session {session.txnid} from {session.status.value} to {target.value}"
            )
        return session.model_copy(update={"status": target, **changes})

    def _audit(self, session: PaymentSession, action: str, payload: Optional[Dict] = None) -> None:
        AuditService.record(
            self.session_factory,
            session.udf1 or session.txnid,
            action,
            payload={"txnid": session.txnid, "amount": session.amount, **(payload or {})},
        )

    # ─── Lifecycle ──────────────────────────────────────────────────

    def initiate(
        self,
        amount: Any,
        customer: Optional[CustomerContext] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> PaymentSession:
        """Create a signed ``pending`` session.

        Args:
            amount: Charge amount (int, Decimal or numeric string).
            customer: Customer context supplied by the host platform.
            data: Explicit payload values (email, firstname, phone,
                productinfo, country_code, session_id, udf2..udf5).

        Raises:
            ValidationError: Bad amount or unresolvable email/firstname/phone.
        """
        data = data or {}
        formatted_amount = format_amount(amount)
        fields = resolve_customer_fields(data, customer)

        address = customer.billing_address if customer else None
        country_code = first_present(
            data.get("country_code"),
            address.country_code if address else None,
            self.config.default_country_code,
        ).lower()

        session = PaymentSession(
            txnid=generate_txnid(),
            amount=formatted_amount,
            productinfo=first_present(data.get("productinfo"), self.config.default_product_info),
            firstname=fields["firstname"],
            email=fields["email"],
            phone=fields["phone"],
            hash="",
            payment_url=self.config.payment_url,
            status=PaymentStatus.PENDING,
            country_code=country_code,
            udf1=first_present(data.get("udf1"), data.get("session_id")),
            udf2=clean(data.get("udf2")),
            udf3=clean(data.get("udf3")),
            udf4=clean(data.get("udf4")),
            udf5=clean(data.get("udf5")),
        )
        session = self._sign(session)

        logger.debug("PayU payment initiated: %s (%s)", session.txnid, session.amount)
        return session

    async def authorize(self, session: PaymentSession) -> PaymentSession:
        """Confirm payment with PayU's verify API.

        Already authorized/captured sessions are returned unchanged without a
        network call. Every other outcome resolves a pending session to
        ``authorized`` or ``failed``.
        """
        if session.status in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED):
            return session
        if session.status != PaymentStatus.PENDING:
            raise PreconditionError(f"Cannot authorize PayU session {session.txnid} in status {session.status.value}")

        try:
            result = await self.client.check_status(session.txnid)
        except GatewayError as e:
            logger.error("PayU authorize %s failed: %s", session.txnid, e)
            failed = self._transition(session, PaymentStatus.FAILED, failure_reason=str(e))
            self._audit(failed, "PAYMENT_FAILED", {"reason": str(e)})
            return failed

        if result.success:
            txn = result.transaction_details or {}
            logger.info("PayU authorized: %s", session.txnid)
            authorized = self._transition(
                session,
                PaymentStatus.AUTHORIZED,
                gateway_transaction_id=clean(txn.get("mihpayid")) or None,
                gateway_response=txn,
                failure_reason=None,
            )
            self._audit(authorized, "PAYMENT_AUTHORIZED", {"mihpayid": authorized.gateway_transaction_id})
            return authorized

        reason = _failure_reason(result.status, result.message, result.transaction_details)
        logger.warning("PayU authorize %s not successful: %s", session.txnid, reason)
        failed = self._transition(
            session,
            PaymentStatus.FAILED,
            gateway_response=result.transaction_details or result.raw,
            failure_reason=reason,
        )
        self._audit(failed, "PAYMENT_FAILED", {"reason": reason})
        return failed

    def capture(self, session: PaymentSession) -> PaymentSession:
        """PayU auto-captures; this only records the transition."""
        if session.status == PaymentStatus.CAPTURED:
            return session
        if session.status != PaymentStatus.AUTHORIZED:
            raise PreconditionError(f"Cannot capture PayU session {session.txnid} in status {session.status.value}")
        return self._transition(session, PaymentStatus.CAPTURED)

    async def refund(self, session: PaymentSession, amount: Any = None) -> PaymentSession:
        """Refund (part of) a paid session.

        Raises:
            PreconditionError: No gateway transaction id, or a non-refundable status.
            ValidationError: Amount invalid or larger than the amount paid.
            GatewayTimeoutError: PayU did not answer in time (safe to retry).
            GatewayRejectionError: PayU refused the refund; ``reason`` is classified.
        """
        if not session.gateway_transaction_id:
            raise PreconditionError(f"No PayU transaction ID found for {session.txnid}; nothing to refund")
        if PaymentStatus.REFUNDED not in ALLOWED_TRANSITIONS[session.status]:
            raise PreconditionError(f"Cannot refund PayU session {session.txnid} in status {session.status.value}")

        refund_amount = format_amount(session.amount if amount is None else amount)
        if to_decimal(refund_amount) > to_decimal(session.amount):
            raise ValidationError(f"Refund amount {refund_amount} exceeds paid amount {session.amount}")

        token_id = generate_refund_token(session.gateway_transaction_id)
        result = await self.client.refund(session.gateway_transaction_id, token_id, refund_amount)

        if not result.success:
            reason, message = classify_refund_failure(result.message)
            logger.error("PayU refund %s failed (%s): %s", session.txnid, reason.value, result.message)
            self._audit(session, "REFUND_REJECTED", {"token_id": token_id, "reason": reason.value})
            raise GatewayRejectionError(
                f"Refund failed: {message}",
                reason=reason.value,
                code=result.error_code,
                gateway_message=result.message,
            )

        logger.info("PayU refund successful: %s (%s)", session.txnid, refund_amount)
        record = RefundRecord(
            token_id=token_id,
            amount=refund_amount,
            gateway_request_id=result.request_id,
            raw_response=result.raw,
        )
        refunded = self._transition(session, PaymentStatus.REFUNDED, refund=record)
        self._audit(refunded, "REFUND_COMPLETED", {"token_id": token_id, "refund_amount": refund_amount})
        return refunded

    def cancel(self, session: PaymentSession) -> PaymentSession:
        if session.status == PaymentStatus.CANCELLED:
            return session
        return self._transition(session, PaymentStatus.CANCELLED)

    def update(
        self,
        session: PaymentSession,
        amount: Any = None,
        productinfo: Optional[str] = None,
        firstname: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> PaymentSession:
        """Change signed fields of a pending session and re-sign it."""
        if session.status != PaymentStatus.PENDING:
            raise PreconditionError(f"Cannot update PayU session {session.txnid} in status {session.status.value}")

        changes: Dict[str, Any] = {}
        if amount is not None:
            changes["amount"] = format_amount(amount)
        for name, value in (("productinfo", productinfo), ("firstname", firstname), ("email", email), ("phone", phone)):
            if value is not None:
                if not clean(value):
                    raise ValidationError(f"{name} cannot be blank")
                changes[name] = clean(value)

        if not changes:
            return session
        return self._sign(session.model_copy(update=changes))

    def update_amount(self, session: PaymentSession, new_amount: Any) -> PaymentSession:
        return self.update(session, amount=new_amount)

    def apply_webhook(self, session: PaymentSession, result: WebhookResult) -> PaymentSession:
        """Apply a verified authorized/failed webhook to its session.

        Raises:
            IntegrityError: The event belongs to another transaction or amount.
        """
        if result.action not in (WebhookAction.AUTHORIZED, WebhookAction.FAILED) or result.event is None:
            return session

        event = result.event
        if event.txnid != session.txnid:
            raise IntegrityError(f"Webhook txnid {event.txnid!r} does not match session {session.txnid!r}")
        if result.amount is not None and result.amount != to_decimal(session.amount):
            raise IntegrityError(
                f"Webhook amount {result.amount} does not match session amount {session.amount} for {session.txnid}"
            )

        if result.action == WebhookAction.AUTHORIZED:
            if session.status != PaymentStatus.PENDING:
                if session.status not in (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED):
                    logger.warning(
                        "PayU success webhook ignored for %s in status %s", session.txnid, session.status.value
                    )
                return session
            return self._transition(
                session,
                PaymentStatus.AUTHORIZED,
                gateway_transaction_id=event.mihpayid or None,
                gateway_response=event.model_dump(exclude={"hash"}),
                failure_reason=None,
            )

        if session.status != PaymentStatus.PENDING:
            # stale failure signal; status only moves forward
            logger.warning("PayU failure webhook ignored for %s in status %s", session.txnid, session.status.value)
            return session
        return self._transition(
            session,
            PaymentStatus.FAILED,
            gateway_response=event.model_dump(exclude={"hash"}),
            failure_reason=event.error_message or event.error or event.status,
        )

    def get_status(self, session: PaymentSession) -> SessionStatus:
        return HOST_STATUS.get(session.status, SessionStatus.PENDING)


def _failure_reason(status: str, message: str, txn: Optional[Dict[str, Any]]) -> str:
    if status == "not_found":
        return message or "Transaction not found"
    if txn:
        detail = clean(txn.get("error_Message")) or clean(txn.get("field9"))
        if detail:
            return f"PayU reported {status}: {detail}"
        return f"PayU reported {status}"
    return message or f"PayU reported {status}"
