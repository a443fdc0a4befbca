from payu_provider.models.audit import AuditLog

__all__ = ["AuditLog"]
