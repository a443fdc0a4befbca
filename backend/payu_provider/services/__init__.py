from payu_provider.services.gateway_client import GatewayClient
from payu_provider.services.session_state import SessionStateMachine
from payu_provider.services.webhook_reconciler import WebhookReconciler
from payu_provider.services.verification_service import VerificationService
from payu_provider.services.audit_service import AuditService

__all__ = ["GatewayClient", "SessionStateMachine", "WebhookReconciler", "VerificationService", "AuditService"]
