"""
Shared fixtures: deterministic PayU config, a fake PayU API and an
in-memory audit database.
"""
from typing import Callable, List, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from payu_provider.config import GatewayConfig, Settings
from payu_provider.database import init_db
from payu_provider.utils.hashing import HashEngine

MERCHANT_KEY = "gtKFFx"
MERCHANT_SALT = "eCwWELxi"


def make_settings(**overrides) -> Settings:
    values = dict(
        PAYU_MERCHANT_KEY=MERCHANT_KEY,
        PAYU_MERCHANT_SALT=MERCHANT_SALT,
        PAYU_ENVIRONMENT="test",
        PAYU_AUTO_CAPTURE=True,
        PAYU_API_TIMEOUT_SECONDS=30.0,
        STOREFRONT_URL="https://shop.example.com",
        PAYU_SUCCESS_PATH="/order/confirmed",
        PAYU_FAILURE_PATH="/checkout?payment_status=failed",
        AUDIT_ENABLED=False,
    )
    values.update(overrides)
    return Settings(**values)


def signed_webhook(**fields) -> dict:
    """Build a webhook body carrying a valid PayU reverse hash."""
    body = {
        "mihpayid": "403993715524045752",
        "mode": "CC",
        "status": "success",
        "txnid": "TXN_1700000000000_abcdef12",
        "amount": "500.00",
        "productinfo": "Order Payment",
        "firstname": "Jane",
        "email": "a@b.com",
        "phone": "9999999999",
        "udf1": "",
        "udf2": "",
        "udf3": "",
        "udf4": "",
        "udf5": "",
    }
    body.update(fields)
    body["hash"] = HashEngine.response_hash(
        MERCHANT_SALT,
        MERCHANT_KEY,
        body["status"],
        body["email"],
        body["firstname"],
        body["productinfo"],
        body["amount"],
        body["txnid"],
        udf1=body["udf1"], udf2=body["udf2"], udf3=body["udf3"], udf4=body["udf4"], udf5=body["udf5"],
        additional_charges=body.get("additionalCharges"),
    )
    return body


class FakePayu:
    """Stands in for the PayU postservice API via httpx.MockTransport."""

    def __init__(self):
        self.requests: List[dict] = []
        self.urls: List[str] = []
        self.handler: Optional[Callable[[httpx.Request, dict], httpx.Response]] = None

    def reply(self, payload: dict, status_code: int = 200) -> None:
        self.handler = lambda request, form: httpx.Response(status_code, json=payload)

    def fail_with(self, exc_type: type) -> None:
        def raise_error(request, form):
            raise exc_type("simulated failure", request=request)
        self.handler = raise_error

    def _handle(self, request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode("utf-8")))
        self.requests.append(form)
        self.urls.append(str(request.url))
        if self.handler is None:
            raise AssertionError(f"Unexpected PayU call: {form}")
        return self.handler(request, form)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


def verify_success(txnid: str, amount: str = "500.00", mihpayid: str = "403993715524045752") -> dict:
    return {
        "status": 1,
        "msg": "1 out of 1 Transactions Fetched Successfully",
        "transaction_details": {
            txnid: {
                "mihpayid": mihpayid,
                "status": "success",
                "amt": amount,
                "txnid": txnid,
                "mode": "UPI",
            }
        },
    }


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def config(settings) -> GatewayConfig:
    return GatewayConfig.from_settings(settings)


@pytest.fixture
def payu() -> FakePayu:
    return FakePayu()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()
