"""Per-step state held by the onboarding orchestrator."""

from __future__ import annotations

from dataclasses import dataclass

from tuttiud.models.enums import ChecklistItem, DiagnosticsStatus, StepStatus
from tuttiud.models.setup import SetupDiagnostics


@dataclass(frozen=True)
class StepState:
    """Status of one wizard step plus its user-facing message and technical detail."""

    status: StepStatus = StepStatus.IDLE
    message: str | None = None
    error: str | None = None

    @classmethod
    def idle(cls, message: str | None = None) -> StepState:
        return cls(StepStatus.IDLE, message)

    @classmethod
    def loading(cls, message: str | None = None) -> StepState:
        return cls(StepStatus.LOADING, message)

    @classmethod
    def success(cls, message: str | None = None) -> StepState:
        return cls(StepStatus.SUCCESS, message)

    @classmethod
    def warning(cls, message: str | None = None, error: str | None = None) -> StepState:
        return cls(StepStatus.WARNING, message, error)

    @classmethod
    def failed(cls, message: str | None = None, error: str | None = None) -> StepState:
        return cls(StepStatus.ERROR, message, error)


@dataclass(frozen=True)
class SchemaState(StepState):
    exists: bool | None = None
    last_bootstrapped_at: str | None = None


@dataclass(frozen=True)
class DiagnosticsState(StepState):
    diagnostics: SetupDiagnostics | None = None


def empty_checklist() -> dict[ChecklistItem, bool]:
    return {item: False for item in ChecklistItem}


def severity_for(diagnostics: SetupDiagnostics | None) -> StepStatus:
    """Map a diagnostics severity onto a step status; no payload counts as success."""
    if diagnostics is None or diagnostics.status == DiagnosticsStatus.OK:
        return StepStatus.SUCCESS
    if diagnostics.status == DiagnosticsStatus.WARNING:
        return StepStatus.WARNING
    return StepStatus.ERROR


@dataclass(frozen=True)
class WizardSnapshot:
    """Immutable view of every step and gate; equal snapshots mean equal wizard state."""

    has_dedicated_key: bool
    connection_status: str | None
    needs_preparation: bool
    preparation_acknowledged: bool
    checklist: tuple[tuple[str, bool], ...]
    preparation: StepState
    preparation_details: str | None
    credential: StepState
    connection: StepState
    schema: SchemaState
    diagnostics: DiagnosticsState
    commit: StepState
    auto_verify_pending: bool
    refresh_token: int
    preparation_visible: bool
    credential_step_visible: bool
    can_request_validation: bool
