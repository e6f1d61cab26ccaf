from .models import AuditCategory
from .service import AuditService, AuditLevel, get_audit_service

__all__ = ["AuditCategory", "AuditService", "AuditLevel", "get_audit_service"]
