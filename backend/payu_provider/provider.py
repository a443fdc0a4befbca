"""
PayU Payment Provider — the capability set a host platform calls.

The host stores the opaque ``data`` dict returned by each call and hands it
back on the next one; this class never keeps session state itself.
"""
import logging
from typing import Any, Callable, Mapping, Optional

import httpx
from sqlalchemy.orm import Session

from payu_provider.config import GatewayConfig, Settings, get_settings
from payu_provider.schemas.schemas import (
    CustomerContext,
    PaymentSession,
    PaymentStatus,
    ProviderResponse,
    WebhookResult,
)
from payu_provider.services.gateway_client import GatewayClient
from payu_provider.services.session_state import SessionStateMachine
from payu_provider.services.webhook_reconciler import WebhookReconciler
from payu_provider.utils.log import configure_logging

logger = logging.getLogger(__name__)

PAYU_PROVIDER_ID = "payu"


class PayuProvider:
    """PayU redirect-checkout provider: initiate, authorize, capture, refund,
    cancel, update, get_status and webhook handling."""

    identifier = PAYU_PROVIDER_ID

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.config = config
        self.client = GatewayClient(config, transport=transport)
        self.sessions = SessionStateMachine(config, client=self.client, session_factory=session_factory)
        self.webhooks = WebhookReconciler(config, session_factory=session_factory)

        logger.info("PayU initialized in %s mode", config.environment)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PayuProvider":
        """Validate configuration once, set up logging and the audit database."""
        settings = settings or get_settings()
        config = GatewayConfig.from_settings(settings)
        configure_logging(settings)

        session_factory = None
        if settings.AUDIT_ENABLED:
            from payu_provider.database import SessionLocal, init_db
            init_db()
            session_factory = SessionLocal

        return cls(config, session_factory=session_factory)

    # ─── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _load(data: Mapping[str, Any]) -> PaymentSession:
        return PaymentSession.model_validate(dict(data))

    def _respond(self, session: PaymentSession, with_status: bool = True) -> ProviderResponse:
        return ProviderResponse(
            id=session.txnid,
            status=self.sessions.get_status(session) if with_status else None,
            data=session.model_dump(mode="json"),
        )

    # ─── Capability set ─────────────────────────────────────────────

    async def initiate(
        self,
        amount: Any,
        context: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> ProviderResponse:
        customer_data = (context or {}).get("customer")
        customer = CustomerContext.model_validate(customer_data) if customer_data else None
        session = self.sessions.initiate(amount, customer=customer, data=data)
        return self._respond(session)

    def _auto_capture(self, session: PaymentSession) -> PaymentSession:
        if self.config.auto_capture and session.status == PaymentStatus.AUTHORIZED:
            return self.sessions.capture(session)
        return session

    async def authorize(self, data: Mapping[str, Any]) -> ProviderResponse:
        session = await self.sessions.authorize(self._load(data))
        return self._respond(self._auto_capture(session))

    async def capture(self, data: Mapping[str, Any]) -> ProviderResponse:
        return self._respond(self.sessions.capture(self._load(data)), with_status=False)

    async def refund(self, data: Mapping[str, Any], amount: Any = None) -> ProviderResponse:
        session = await self.sessions.refund(self._load(data), amount)
        return self._respond(session, with_status=False)

    async def cancel(self, data: Mapping[str, Any]) -> ProviderResponse:
        return self._respond(self.sessions.cancel(self._load(data)), with_status=False)

    async def delete(self, data: Mapping[str, Any]) -> ProviderResponse:
        return ProviderResponse(data=dict(data))

    async def retrieve(self, data: Mapping[str, Any]) -> ProviderResponse:
        return ProviderResponse(data=dict(data))

    async def update(
        self,
        data: Mapping[str, Any],
        amount: Any = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> ProviderResponse:
        customer = (context or {}).get("customer") or {}
        session = self.sessions.update(
            self._load(data),
            amount=amount,
            firstname=customer.get("first_name"),
            email=customer.get("email"),
            phone=customer.get("phone"),
        )
        return self._respond(session, with_status=False)

    async def get_status(self, data: Mapping[str, Any]) -> ProviderResponse:
        return ProviderResponse(status=self.sessions.get_status(self._load(data)))

    async def on_webhook(self, payload: Mapping[str, Any]) -> WebhookResult:
        return self.webhooks.reconcile(payload)

    async def apply_webhook(self, data: Mapping[str, Any], result: WebhookResult) -> ProviderResponse:
        session = self.sessions.apply_webhook(self._load(data), result)
        return self._respond(self._auto_capture(session))
