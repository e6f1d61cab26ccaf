from enum import Enum


class AuditCategory(str, Enum):
    SYSTEM = "system"
    SECURITY = "security"
    ACCESS = "access"
    USER_ACTION = "user_action"
