"""
Pydantic Schemas — Payment session, webhook and gateway result records.
"""
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


# ──────────────── Status enums ────────────────

class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class SessionStatus(str, Enum):
    """Status vocabulary the host platform understands."""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    ERROR = "error"
    CANCELED = "canceled"


class WebhookAction(str, Enum):
    AUTHORIZED = "authorized"
    FAILED = "failed"
    REFUND_ACKNOWLEDGED = "refund_acknowledged"
    MANUAL_REVIEW = "manual_review"
    NOT_SUPPORTED = "not_supported"


class RefundFailureReason(str, Enum):
    RETRY_LATER = "retry_later"
    TOKEN_ALREADY_USED = "token_already_used"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    INVALID_AMOUNT = "invalid_amount"
    UNKNOWN = "unknown"


# ──────────────── Customer context ────────────────

class Address(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    country_code: Optional[str] = None


class CustomerContext(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    billing_address: Optional[Address] = None


# ──────────────── Payment session ────────────────

class CheckoutForm(BaseModel):
    """Signed POST body for the PayU hosted checkout page."""
    key: str
    txnid: str
    amount: str
    productinfo: str
    firstname: str
    email: str
    phone: str
    surl: str
    furl: str
    hash: str
    service_provider: str = "payu_paisa"
    udf1: str = ""
    udf2: str = ""
    udf3: str = ""
    udf4: str = ""
    udf5: str = ""


class RefundRecord(BaseModel):
    token_id: str
    amount: str
    gateway_request_id: Optional[str] = None
    raw_response: Dict[str, Any] = {}


class PaymentSession(BaseModel):
    txnid: str
    amount: str                      # "500.00" — always 2 decimals
    productinfo: str
    firstname: str
    email: str
    phone: str
    hash: str                        # outbound request signature
    payment_url: str
    status: PaymentStatus = PaymentStatus.PENDING
    country_code: str = "in"

    # Signed pass-through fields (udf1 = host session id)
    udf1: str = ""
    udf2: str = ""
    udf3: str = ""
    udf4: str = ""
    udf5: str = ""

    form_data: Optional[CheckoutForm] = None
    gateway_transaction_id: Optional[str] = None   # PayU mihpayid
    gateway_response: Optional[Dict[str, Any]] = None
    refund: Optional[RefundRecord] = None
    failure_reason: Optional[str] = None


# ──────────────── Webhook ────────────────

class WebhookEvent(BaseModel):
    """Canonical PayU webhook/callback record. Every field is the raw string PayU sent."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    txnid: str = ""
    status: str = ""
    amount: str = ""
    email: str = ""
    firstname: str = ""
    productinfo: str = ""
    hash: str = ""
    key: str = ""
    phone: str = ""
    udf1: str = ""
    udf2: str = ""
    udf3: str = ""
    udf4: str = ""
    udf5: str = ""
    mihpayid: str = ""
    mode: str = ""
    unmappedstatus: str = ""
    bank_ref_num: str = ""
    bankcode: str = ""
    error: str = ""
    error_message: str = Field("", alias="error_Message")
    additional_charges: str = Field("", alias="additionalCharges")


class WebhookResult(BaseModel):
    action: WebhookAction
    session_correlation_id: Optional[str] = None
    amount: Optional[Decimal] = None
    event: Optional[WebhookEvent] = None
    reason: Optional[str] = None


# ──────────────── Gateway results ────────────────

class StatusCheckResult(BaseModel):
    success: bool
    status: str                                  # gateway txn status, "not_found" or "error"
    transaction_details: Optional[Dict[str, Any]] = None
    message: str = ""
    raw: Dict[str, Any] = {}


class RefundResult(BaseModel):
    success: bool
    message: str = ""
    request_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    raw: Dict[str, Any] = {}


class VerificationResult(BaseModel):
    success: bool
    status: str
    transaction: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ──────────────── Host-facing ────────────────

class ProviderResponse(BaseModel):
    id: Optional[str] = None
    status: Optional[SessionStatus] = None
    data: Dict[str, Any] = {}
