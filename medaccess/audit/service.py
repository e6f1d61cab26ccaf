"""
Audit logging for the delegation protocol.

Every code redemption, grant change and access decision is emitted as a
structured `audit_event=` log line. Details are sanitized first: one-time
codes, seeds and tokens never reach the log, and free-text values that look
like contact data are masked. A bounded in-memory buffer backs the audit
listing used in development and tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import json
import logging
import re

from .models import AuditCategory


class AuditLevel(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"


logger = logging.getLogger(__name__)

_EVENT_BUFFER: list[dict] = []
_EVENT_BUFFER_LIMIT = 1000

_CONTACT_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+|\+\d[\d\s().-]{7,}\d|\(\d{2,4}\)\s*\d")


class AuditService:
    SENSITIVE_KEYS = {
        "code",
        "otp",
        "seed",
        "secret",
        "token",
        "exchange_token",
        "authorization",
        "password",
        "email",
        "phone",
        "ssn",
        "dob",
        "diagnosis",
    }

    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        """Recursively sanitize potentially sensitive structures."""
        if isinstance(data, str):
            return "[REDACTED]" if _CONTACT_RE.search(data) else data
        if isinstance(data, bytes):
            return "[REDACTED]"
        if isinstance(data, dict):
            out: Dict[str, Any] = {}
            for k, v in data.items():
                key_l = str(k).lower()
                if key_l in cls.SENSITIVE_KEYS or any(
                    t in key_l for t in ("secret", "token", "password", "seed")
                ):
                    out[k] = "[REDACTED]"
                else:
                    out[k] = cls._sanitize(v)
            return out
        if isinstance(data, (list, tuple)):
            return [cls._sanitize(x) for x in list(data)[:50]]
        if isinstance(data, (int, float, bool)) or data is None:
            return data
        if isinstance(data, datetime):
            return data.isoformat()
        return "[REDACTED]"

    async def log_event(
        self,
        event_type: str,
        category: Any,
        action: str,
        result: str,
        description: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        user_id: Optional[str] = None,
        level: AuditLevel = AuditLevel.STANDARD,
        phi_involved: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        category_str = category.value if isinstance(category, AuditCategory) else str(category)

        payload = {
            "type": event_type,
            "category": category_str,
            "action": action,
            "result": result,
            "level": level.value,
            "phi_involved": bool(phi_involved),
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "description": description,
            "details": self._sanitize(details or {}),
            "ts": datetime.now(tz=timezone.utc).isoformat(),
        }
        logger.info(
            "audit_event=%s",
            json.dumps(payload, separators=(",", ":")),
            extra={"trace_id": user_id or "system"},
        )
        _EVENT_BUFFER.append(payload)
        if len(_EVENT_BUFFER) > _EVENT_BUFFER_LIMIT:
            del _EVENT_BUFFER[: len(_EVENT_BUFFER) - _EVENT_BUFFER_LIMIT]

    async def list_events(
        self, limit: int = 100, offset: int = 0, event_type: Optional[str] = None
    ) -> dict:
        items = [e for e in _EVENT_BUFFER if event_type is None or e["type"] == event_type]
        items.reverse()
        slice_ = items[offset : offset + limit]
        return {
            "items": slice_,
            "total": len(items),
            "limit": limit,
            "offset": offset,
        }


_AUDIT_SERVICE: Optional[AuditService] = None


async def get_audit_service() -> AuditService:
    global _AUDIT_SERVICE
    if _AUDIT_SERVICE is None:
        _AUDIT_SERVICE = AuditService()
    return _AUDIT_SERVICE
