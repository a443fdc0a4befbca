import re
from decimal import Decimal

import httpx
import pytest

from payu_provider.exceptions import (
    GatewayRejectionError,
    GatewayTimeoutError,
    IntegrityError,
    PreconditionError,
    ValidationError,
)
from payu_provider.models.audit import AuditLog
from payu_provider.schemas.schemas import (
    Address,
    CustomerContext,
    PaymentStatus,
    SessionStatus,
    WebhookAction,
    WebhookEvent,
    WebhookResult,
)
from payu_provider.services.gateway_client import GatewayClient
from payu_provider.services.session_state import SessionStateMachine, classify_refund_failure
from payu_provider.utils.hashing import HashEngine

from conftest import MERCHANT_KEY, MERCHANT_SALT, verify_success

CUSTOMER = {"email": "a@b.com", "firstname": "Jane", "phone": "9999999999"}


@pytest.fixture
def machine(config, payu, session_factory):
    return SessionStateMachine(config, client=GatewayClient(config, transport=payu.transport),
                               session_factory=session_factory)


@pytest.fixture
def pending(machine):
    return machine.initiate(500, data=dict(CUSTOMER, session_id="sess_abc"))


def authorized_copy(session, mihpayid="403993715524045752"):
    return session.model_copy(update={"status": PaymentStatus.AUTHORIZED, "gateway_transaction_id": mihpayid})


# ─── initiate ───────────────────────────────────────────────────────

@pytest.mark.parametrize("amount, expected", [(999, "999.00"), ("1500.5", "1500.50")])
def test_initiate_formats_amount(machine, amount, expected):
    assert machine.initiate(amount, data=CUSTOMER).amount == expected


def test_initiate_builds_signed_pending_session(machine, pending):
    assert pending.status == PaymentStatus.PENDING
    assert re.fullmatch(r"TXN_\d{13}_[0-9a-f]{8}", pending.txnid)
    assert re.fullmatch(r"[0-9a-f]{128}", pending.hash)
    assert pending.udf1 == "sess_abc"
    assert pending.productinfo == "Order Payment"
    assert pending.payment_url == "https://test.payu.in/_payment"
    assert pending.hash == HashEngine.sign_request(
        MERCHANT_KEY, MERCHANT_SALT, pending.txnid, "500.00", "Order Payment", "Jane", "a@b.com", udf1="sess_abc",
    )


def test_initiate_builds_checkout_form(pending):
    form = pending.form_data
    assert form.key == MERCHANT_KEY
    assert form.hash == pending.hash
    assert form.phone == "9999999999"
    assert form.surl == "https://shop.example.com/in/order/confirmed"
    assert form.furl == "https://shop.example.com/in/checkout?payment_status=failed"
    assert form.service_provider == "payu_paisa"
    assert form.udf1 == "sess_abc"


def test_initiate_resolves_fields_from_context(machine):
    customer = CustomerContext(
        email="ctx@example.com",
        billing_address=Address(first_name="Asha", phone="8888888888", country_code="IN"),
    )
    session = machine.initiate("250", customer=customer, data={"productinfo": "Kurta", "country_code": "us"})

    assert (session.email, session.firstname, session.phone) == ("ctx@example.com", "Asha", "8888888888")
    assert session.productinfo == "Kurta"
    assert session.country_code == "us"
    assert session.form_data.surl.startswith("https://shop.example.com/us/")


def test_initiate_requires_customer_fields(machine):
    with pytest.raises(ValidationError) as exc:
        machine.initiate(500, data={"email": "a@b.com", "firstname": "Jane"})
    assert "phone" in str(exc.value)


def test_initiate_rejects_bad_amount(machine):
    with pytest.raises(ValidationError):
        machine.initiate("twelve", data=CUSTOMER)


# ─── authorize ──────────────────────────────────────────────────────

async def test_authorize_success_records_gateway_id(machine, pending, payu, session_factory):
    payu.reply(verify_success(pending.txnid))

    session = await machine.authorize(pending)

    assert session.status == PaymentStatus.AUTHORIZED
    assert session.gateway_transaction_id == "403993715524045752"
    assert session.gateway_response["status"] == "success"
    assert pending.status == PaymentStatus.PENDING

    db = session_factory()
    try:
        actions = [row.action for row in db.query(AuditLog).filter(AuditLog.correlation_id == "sess_abc")]
    finally:
        db.close()
    assert actions == ["PAYMENT_AUTHORIZED"]


async def test_authorize_is_idempotent_without_network(machine, pending, payu):
    payu.reply(verify_success(pending.txnid))
    first = await machine.authorize(pending)

    second = await machine.authorize(first)

    assert second is first
    assert second.status == PaymentStatus.AUTHORIZED
    assert len(payu.requests) == 1


async def test_authorize_captured_session_is_noop(machine, pending, payu):
    captured = pending.model_copy(update={"status": PaymentStatus.CAPTURED})

    assert await machine.authorize(captured) is captured
    assert payu.requests == []


async def test_authorize_not_found_fails_session(machine, pending, payu):
    payu.reply({"status": 1, "msg": "0 out of 1 Transactions Fetched", "transaction_details": {}})

    session = await machine.authorize(pending)

    assert session.status == PaymentStatus.FAILED
    assert session.failure_reason


async def test_authorize_gateway_failure_fails_session(machine, pending, payu):
    body = verify_success(pending.txnid)
    body["transaction_details"][pending.txnid].update(status="failure", error_Message="Bank denied")
    payu.reply(body)

    session = await machine.authorize(pending)

    assert session.status == PaymentStatus.FAILED
    assert "Bank denied" in session.failure_reason


@pytest.mark.parametrize("exc_type", [httpx.ReadTimeout, httpx.ConnectError])
async def test_authorize_network_error_fails_session(machine, pending, payu, exc_type):
    payu.fail_with(exc_type)

    session = await machine.authorize(pending)

    assert session.status == PaymentStatus.FAILED
    assert session.failure_reason


@pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.CANCELLED, PaymentStatus.REFUNDED])
async def test_authorize_rejects_closed_sessions(machine, pending, payu, status):
    with pytest.raises(PreconditionError):
        await machine.authorize(pending.model_copy(update={"status": status}))
    assert payu.requests == []


# ─── capture / cancel ───────────────────────────────────────────────

def test_capture_authorized(machine, pending):
    captured = machine.capture(authorized_copy(pending))
    assert captured.status == PaymentStatus.CAPTURED
    assert machine.capture(captured) is captured


def test_capture_requires_authorization(machine, pending):
    with pytest.raises(PreconditionError):
        machine.capture(pending)


@pytest.mark.parametrize("status", [PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED])
def test_cancel_from_open_states(machine, pending, status):
    cancelled = machine.cancel(pending.model_copy(update={"status": status}))
    assert cancelled.status == PaymentStatus.CANCELLED
    assert machine.cancel(cancelled) is cancelled


@pytest.mark.parametrize("status", [PaymentStatus.FAILED, PaymentStatus.REFUNDED])
def test_cancel_rejects_terminal_states(machine, pending, status):
    with pytest.raises(PreconditionError):
        machine.cancel(pending.model_copy(update={"status": status}))


# ─── refund ─────────────────────────────────────────────────────────

async def test_refund_without_gateway_id_makes_no_call(machine, pending, payu):
    captured = pending.model_copy(update={"status": PaymentStatus.CAPTURED})

    with pytest.raises(PreconditionError):
        await machine.refund(captured, "100")
    assert payu.requests == []


async def test_refund_success_attaches_record(machine, pending, payu):
    payu.reply({"status": 1, "msg": "Refund Request Queued", "request_id": "131045"})

    session = await machine.refund(authorized_copy(pending), "100")

    assert session.status == PaymentStatus.REFUNDED
    assert session.refund.amount == "100.00"
    assert session.refund.gateway_request_id == "131045"
    assert session.refund.token_id.startswith("REF_403993715524045752_")
    assert payu.requests[0]["var2"] == session.refund.token_id


async def test_refund_defaults_to_full_amount(machine, pending, payu):
    payu.reply({"status": 1, "msg": "Refund Request Queued", "request_id": "1"})

    session = await machine.refund(authorized_copy(pending))

    assert session.refund.amount == "500.00"
    assert payu.requests[0]["var3"] == "500.00"


async def test_refund_retry_uses_fresh_token(machine, pending, payu):
    paid = authorized_copy(pending)
    payu.reply({"status": 0, "msg": "Please try again after some time"})
    with pytest.raises(GatewayRejectionError) as exc:
        await machine.refund(paid, "100")
    assert exc.value.reason == "retry_later"

    payu.reply({"status": 1, "msg": "Refund Request Queued", "request_id": "2"})
    await machine.refund(paid, "100")

    assert payu.requests[0]["var2"] != payu.requests[1]["var2"]


async def test_refund_rejects_amount_above_paid(machine, pending, payu):
    with pytest.raises(ValidationError):
        await machine.refund(authorized_copy(pending), "500.01")
    assert payu.requests == []


async def test_refund_timeout_propagates(machine, pending, payu):
    payu.fail_with(httpx.ReadTimeout)

    with pytest.raises(GatewayTimeoutError):
        await machine.refund(authorized_copy(pending), "100")


async def test_refund_unknown_failure_passes_message_through(machine, pending, payu):
    payu.reply({"status": 0, "msg": "Merchant account suspended", "error_code": 232})

    with pytest.raises(GatewayRejectionError) as exc:
        await machine.refund(authorized_copy(pending), "100")

    assert exc.value.reason == "unknown"
    assert exc.value.code == "232"
    assert "Merchant account suspended" in str(exc.value)


async def test_refund_rejects_already_refunded(machine, pending, payu):
    refunded = authorized_copy(pending).model_copy(update={"status": PaymentStatus.REFUNDED})
    with pytest.raises(PreconditionError):
        await machine.refund(refunded, "100")


@pytest.mark.parametrize("message, reason", [
    ("Refund not allowed, please try again after some time", "retry_later"),
    ("Another refund is in progress for this transaction", "retry_later"),
    ("Token ID already used", "token_already_used"),
    ("Duplicate token id", "token_already_used"),
    ("Transaction not found", "transaction_not_found"),
    ("Invalid mihpayid", "transaction_not_found"),
    ("Refund amount exceeds the transaction amount", "invalid_amount"),
    ("Amount greater than captured amount", "invalid_amount"),
    ("Something unexpected", "unknown"),
])
def test_classify_refund_failure(message, reason):
    classified, friendly = classify_refund_failure(message)
    assert classified.value == reason
    if reason == "unknown":
        assert friendly == message


# ─── update ─────────────────────────────────────────────────────────

def test_update_amount_resigns_session(machine, pending):
    updated = machine.update_amount(pending, "750.5")

    assert updated.amount == "750.50"
    assert updated.hash != pending.hash
    assert updated.form_data.amount == "750.50"
    assert updated.form_data.hash == updated.hash
    assert updated.hash == HashEngine.sign_request(
        MERCHANT_KEY, MERCHANT_SALT, pending.txnid, "750.50", "Order Payment", "Jane", "a@b.com", udf1="sess_abc",
    )


def test_update_customer_fields_resigns(machine, pending):
    updated = machine.update(pending, email="new@b.com")
    assert updated.email == "new@b.com"
    assert updated.hash != pending.hash


def test_update_without_changes_returns_same(machine, pending):
    assert machine.update(pending) is pending


def test_update_rejects_non_pending(machine, pending):
    with pytest.raises(PreconditionError):
        machine.update_amount(authorized_copy(pending), 10)


# ─── apply_webhook / status ─────────────────────────────────────────

def _webhook_result(session, action=WebhookAction.AUTHORIZED, amount=None, **event_fields):
    event = WebhookEvent(txnid=session.txnid, status="success", amount=session.amount,
                         mihpayid="403993715524045752", **event_fields)
    return WebhookResult(
        action=action,
        session_correlation_id=session.udf1 or session.txnid,
        amount=Decimal(session.amount) if amount is None else amount,
        event=event,
    )


def test_apply_authorized_webhook(machine, pending):
    session = machine.apply_webhook(pending, _webhook_result(pending))

    assert session.status == PaymentStatus.AUTHORIZED
    assert session.gateway_transaction_id == "403993715524045752"
    assert "hash" not in session.gateway_response


def test_apply_duplicate_authorized_webhook_is_noop(machine, pending):
    result = _webhook_result(pending)
    once = machine.apply_webhook(pending, result)
    assert machine.apply_webhook(once, result) is once


@pytest.mark.parametrize("status", [PaymentStatus.REFUNDED, PaymentStatus.CANCELLED, PaymentStatus.FAILED])
def test_apply_resent_authorized_webhook_to_closed_session_is_noop(machine, pending, status):
    closed = authorized_copy(pending).model_copy(update={"status": status})
    assert machine.apply_webhook(closed, _webhook_result(pending)) is closed


def test_apply_failed_webhook(machine, pending):
    result = _webhook_result(pending, action=WebhookAction.FAILED, error_Message="Card declined")
    session = machine.apply_webhook(pending, result)

    assert session.status == PaymentStatus.FAILED
    assert session.failure_reason == "Card declined"


def test_apply_failed_webhook_after_authorization_is_ignored(machine, pending):
    authorized = authorized_copy(pending)
    assert machine.apply_webhook(authorized, _webhook_result(pending, action=WebhookAction.FAILED)) is authorized


def test_apply_webhook_for_other_txnid_raises(machine, pending):
    other = machine.initiate(500, data=CUSTOMER)
    with pytest.raises(IntegrityError):
        machine.apply_webhook(pending, _webhook_result(other))


def test_apply_webhook_with_wrong_amount_raises(machine, pending):
    with pytest.raises(IntegrityError):
        machine.apply_webhook(pending, _webhook_result(pending, amount=Decimal("1.00")))


def test_apply_non_mutating_actions_returns_session(machine, pending):
    result = WebhookResult(action=WebhookAction.REFUND_ACKNOWLEDGED, session_correlation_id="sess_abc")
    assert machine.apply_webhook(pending, result) is pending


@pytest.mark.parametrize("status, expected", [
    (PaymentStatus.PENDING, SessionStatus.PENDING),
    (PaymentStatus.AUTHORIZED, SessionStatus.AUTHORIZED),
    (PaymentStatus.CAPTURED, SessionStatus.AUTHORIZED),
    (PaymentStatus.FAILED, SessionStatus.ERROR),
    (PaymentStatus.REFUNDED, SessionStatus.AUTHORIZED),
    (PaymentStatus.CANCELLED, SessionStatus.CANCELED),
])
def test_get_status_mapping(machine, pending, status, expected):
    assert machine.get_status(pending.model_copy(update={"status": status})) == expected
