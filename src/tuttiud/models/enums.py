"""Enumerations shared by the gateway and the onboarding orchestrator."""

from enum import Enum


class Role(str, Enum):
    """Membership role, totally ordered member < admin < owner."""

    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {Role.MEMBER: 0, Role.ADMIN: 1, Role.OWNER: 2}


class StepStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class DiagnosticsStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


class IssueType(str, Enum):
    TABLE = "table"
    POLICY = "policy"
    PERMISSION = "permission"
    OTHER = "other"


class ChecklistItem(str, Enum):
    """Manual preparation steps the user confirms before validation."""

    SCHEMA_EXPOSED = "schema_exposed"
    SCRIPT_EXECUTED = "script_executed"
    KEY_CAPTURED = "key_captured"


CONNECTED = "connected"
STORED_MARKER = "stored"
