"""Onboarding wizard state machine.

Steps, in order:

0. Preparation (manual): expose the schema, run the setup script, capture the key.
1. Credential submission.
2. Connectivity check: credential-backed verify, already connected, or initialize.
3. Schema existence check (automatic after 2), with a bootstrap remedy.
4. Diagnostics (automatic after 3).
5. Connection-flag commit (automatic, once per settings snapshot).

Every entry state is re-derived from server data on ``load``/``refresh``.
Network calls only start from an explicit user action, the success of the
previous step, or the single auto-verify scheduled on load; failures are
never retried automatically.
"""

from __future__ import annotations

import logging

from tuttiud.models.enums import CONNECTED, ChecklistItem, StepStatus
from tuttiud.models.setup import OrganizationSetupSettings, SetupDiagnostics
from tuttiud.onboarding.gateway import GatewayError, SetupGateway
from tuttiud.onboarding.state import (
    DiagnosticsState,
    SchemaState,
    StepState,
    WizardSnapshot,
    empty_checklist,
    severity_for,
)

logger = logging.getLogger(__name__)

MSG_PREPARE_FIRST = "Before checking the connection, follow the preparation steps and enter the application key."
MSG_COMPLETE_CHECKLIST = "Complete the manual preparation steps to continue."
MSG_CHECKLIST_ACKNOWLEDGED = "Preparation marked as done. Continue by entering the application key."
MSG_SETTINGS_MISSING = "The organization's connection settings were not found. Contact support."
MSG_KEY_ALREADY_STORED = "An application key is already stored. Verify the existing setup."
MSG_KEY_STORED = "The application key is stored. Continue with the connection check."
MSG_KEY_SAVED = "The key was saved and passed its first validation. Continue with the full connection check."
MSG_KEY_REQUIRED = "Paste and save the application key before checking the connection."
MSG_RUN_VERIFICATION = "Run the verification to confirm the data store is ready."
MSG_ALREADY_CONNECTED = "The data store connection is already active. Running checks to confirm."
MSG_VERIFIED = "The connection was verified with the stored key."
MSG_VERIFY_FAILED = "Verification with the stored key failed. Run the setup script again and retry."
MSG_CONNECTED = "Connected to the data store."
MSG_INIT_FAILED = "Could not connect to the data store. Check the permissions and try again."
MSG_SCRIPT_REQUIRED = "Run the setup script in the data store before continuing."
MSG_SCHEMA_READY = "The data schema is available."
MSG_SCHEMA_MISSING = "The data schema has not been created yet."
MSG_SCHEMA_CREATED = "The data schema was created."
MSG_SCHEMA_NOT_CREATED = "The data schema could not be created. Check the database permissions and try again."
MSG_COMMITTED = "Setup is complete and the connection is marked active."
MSG_COMMIT_FAILED = "Updating the connection status failed. Try again and contact support if it persists."
MSG_CHECKING = "Checking the data store connection..."
MSG_RECHECKING = "Confirming the data store connection is still active..."
MSG_SETTINGS_LOADING = "The organization settings are still loading. Try again in a moment."
MSG_ADDRESS_MISSING = "The organization's data store address must be set before saving the key."


class OnboardingOrchestrator:
    """Drives the onboarding wizard for one organization.

    Args:
        gateway: Setup gateway client.
        org_id: Organization being onboarded.
        provider: Provider key used in the settings metadata.
    """

    def __init__(self, gateway: SetupGateway, org_id: str, provider: str = "tuttiud"):
        self.gateway = gateway
        self.org_id = org_id
        self.provider = provider
        self.active = True
        self.refresh_token = 0
        self._reset()

    def _reset(self) -> None:
        self.has_dedicated_key = False
        self.settings: OrganizationSetupSettings | None = None
        self.settings_version = 0
        self.needs_preparation = False
        self.preparation = StepState.idle()
        self.checklist = empty_checklist()
        self.preparation_acknowledged = False
        self.preparation_details: str | None = None
        self.credential = StepState.idle()
        self.connection = StepState.idle()
        self.schema = SchemaState()
        self.diagnostics = DiagnosticsState()
        self.commit = StepState.idle()
        self.auto_verify_pending = False
        self.auto_verify_fired = False
        self.commit_fired_version: int | None = None

    def close(self) -> None:
        """Deactivate; responses arriving afterwards are discarded."""
        self.active = False

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def connection_status(self) -> str | None:
        if self.settings is None:
            return None
        return self.settings.metadata.connection_status(self.provider)

    @property
    def is_connected(self) -> bool:
        return self.connection_status == CONNECTED

    @property
    def has_stored_credential(self) -> bool:
        if self.has_dedicated_key:
            return True
        return self.settings is not None and self.settings.metadata.has_stored_credential(self.provider)

    @property
    def checklist_complete(self) -> bool:
        return all(self.checklist.values())

    @property
    def preparation_visible(self) -> bool:
        return self.needs_preparation

    @property
    def credential_step_visible(self) -> bool:
        # Hidden only on the return-visit fast path while the gate is closed
        return self.needs_preparation or not self.has_dedicated_key

    @property
    def can_request_validation(self) -> bool:
        if self.settings is None:
            return False
        gate_open = self.has_dedicated_key or not self.needs_preparation or self.preparation_acknowledged
        return gate_open and (self.is_connected or self.has_stored_credential)

    def snapshot(self) -> WizardSnapshot:
        return WizardSnapshot(
            has_dedicated_key=self.has_dedicated_key,
            connection_status=self.connection_status,
            needs_preparation=self.needs_preparation,
            preparation_acknowledged=self.preparation_acknowledged,
            checklist=tuple((item.value, self.checklist[item]) for item in ChecklistItem),
            preparation=self.preparation,
            preparation_details=self.preparation_details,
            credential=self.credential,
            connection=self.connection,
            schema=self.schema,
            diagnostics=self.diagnostics,
            commit=self.commit,
            auto_verify_pending=self.auto_verify_pending and not self.auto_verify_fired,
            refresh_token=self.refresh_token,
            preparation_visible=self.preparation_visible,
            credential_step_visible=self.credential_step_visible,
            can_request_validation=self.can_request_validation,
        )

    # ------------------------------------------------------------------
    # Gate transitions
    # ------------------------------------------------------------------

    def _require_manual_preparation(self, state: StepState | None = None) -> None:
        self.needs_preparation = True
        self.checklist = empty_checklist()
        self.preparation_acknowledged = False
        self.preparation = state or StepState.idle(MSG_COMPLETE_CHECKLIST)

    def _mark_preparation_satisfied(self, message: str) -> None:
        self.needs_preparation = False
        self.preparation = StepState.success(message)
        self.preparation_acknowledged = True

    def set_checklist_item(self, item: ChecklistItem | str, checked: bool) -> WizardSnapshot:
        self.checklist[ChecklistItem(item)] = checked
        if not self.checklist_complete:
            self.preparation_acknowledged = False
            if self.preparation.status == StepStatus.SUCCESS:
                self.preparation = StepState.idle(MSG_COMPLETE_CHECKLIST)
        return self.snapshot()

    def acknowledge_preparation(self) -> WizardSnapshot:
        """Confirm the manual steps; a no-op until every checklist item is checked."""
        if self.checklist_complete:
            self.preparation_acknowledged = True
            self.preparation = StepState.success(MSG_CHECKLIST_ACKNOWLEDGED)
        return self.snapshot()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> WizardSnapshot:
        """Derive every step from server state, as on a fresh page load."""
        self._reset()
        try:
            has_key = await self.gateway.fetch_status(self.org_id)
            settings = await self.gateway.fetch_settings(self.org_id)
        except GatewayError as exc:
            if not self.active:
                return self.snapshot()
            logger.warning("Loading setup state for org %s failed: %s", self.org_id, exc.kind)
            self.connection = StepState.failed(exc.message, exc.detail)
            return self.snapshot()

        if not self.active:
            return self.snapshot()

        self.has_dedicated_key = has_key
        self._apply_settings(settings)
        self._derive_entry_state()
        return self.snapshot()

    async def refresh(self) -> WizardSnapshot:
        self.refresh_token += 1
        return await self.load()

    def _apply_settings(self, settings: OrganizationSetupSettings | None) -> None:
        self.settings = settings
        self.settings_version += 1

    def _derive_entry_state(self) -> None:
        if self.settings is None:
            self._require_manual_preparation(StepState.warning(MSG_SETTINGS_MISSING))
            self.credential = StepState.idle()
            self.connection = StepState.warning(MSG_SETTINGS_MISSING)
            return

        if self.has_dedicated_key:
            self.credential = StepState.success(MSG_KEY_ALREADY_STORED)
            self.preparation_acknowledged = True
            self.preparation = StepState.success(MSG_KEY_ALREADY_STORED)
            self.connection = StepState.idle(MSG_RUN_VERIFICATION)
            if self.is_connected:
                self.auto_verify_pending = True
            return

        if self.has_stored_credential:
            self.credential = StepState.success(MSG_KEY_STORED)

        if self.is_connected:
            self._mark_preparation_satisfied(MSG_ALREADY_CONNECTED)
            self.connection = StepState.success(MSG_ALREADY_CONNECTED)
            self.auto_verify_pending = True
        else:
            self._require_manual_preparation(StepState.idle(MSG_PREPARE_FIRST))
            self.connection = StepState.idle(MSG_PREPARE_FIRST)

    # ------------------------------------------------------------------
    # Step 1: credential submission
    # ------------------------------------------------------------------

    async def submit_credential(self, app_key: str) -> WizardSnapshot:
        app_key = (app_key or "").strip()
        if not app_key:
            self.credential = StepState.failed(MSG_KEY_REQUIRED)
            return self.snapshot()
        if self.settings is None:
            self.credential = StepState.failed(MSG_SETTINGS_LOADING)
            return self.snapshot()
        if not self.settings.tenant_store_url:
            self.credential = StepState.failed(MSG_ADDRESS_MISSING)
            return self.snapshot()

        self.credential = StepState.loading()
        try:
            metadata, _ = await self.gateway.store_credential(
                self.org_id,
                app_key,
                self.settings.tenant_store_url,
                current_metadata=self.settings.metadata.raw,
            )
        except GatewayError as exc:
            if self.active:
                self.credential = StepState.failed(exc.message, exc.detail)
            return self.snapshot()

        if not self.active:
            return self.snapshot()

        self.settings = self.settings.model_copy(update={"metadata": metadata})
        self.credential = StepState.success(MSG_KEY_SAVED)
        logger.info("Application key stored for org %s", self.org_id)
        return self.snapshot()

    # ------------------------------------------------------------------
    # Steps 2-5: validation chain
    # ------------------------------------------------------------------

    async def run_pending(self) -> WizardSnapshot:
        """Run the auto-verify scheduled by ``load`` if it has not fired yet."""
        if self.active and self.auto_verify_pending and not self.auto_verify_fired:
            self.auto_verify_fired = True
            self.auto_verify_pending = False
            await self._run_validation(automatic=True)
        return self.snapshot()

    async def request_validation(self) -> WizardSnapshot:
        """User-triggered connectivity check."""
        if self.needs_preparation and not self.preparation_acknowledged:
            self.preparation = StepState.failed(MSG_COMPLETE_CHECKLIST)
            return self.snapshot()
        if self.needs_preparation and not self.has_stored_credential:
            self.credential = StepState.failed(MSG_KEY_REQUIRED)
            return self.snapshot()

        await self._run_validation(automatic=False)
        return self.snapshot()

    async def _run_validation(self, automatic: bool) -> None:
        self.preparation_details = None
        self.connection = StepState.loading(MSG_RECHECKING if automatic else MSG_CHECKING)
        self.schema = SchemaState()
        self.diagnostics = DiagnosticsState()
        self.commit = StepState.idle()

        try:
            settings = await self.gateway.fetch_settings(self.org_id)
        except GatewayError as exc:
            if self.active:
                self.connection = StepState.failed(exc.message, exc.detail)
            return
        if not self.active:
            return

        self._apply_settings(settings)
        if settings is None:
            self._require_manual_preparation(StepState.warning(MSG_SETTINGS_MISSING))
            self.credential = StepState.idle()
            self.connection = StepState.warning(MSG_SETTINGS_MISSING)
            return

        if self.has_dedicated_key or self.has_stored_credential:
            if self.credential.status != StepStatus.ERROR:
                self.credential = StepState.success(MSG_KEY_STORED)
        elif not self.is_connected:
            self._require_manual_preparation(StepState.failed(MSG_KEY_REQUIRED))
            self.credential = StepState.failed(MSG_KEY_REQUIRED)
            self.connection = StepState.failed(MSG_KEY_REQUIRED)
            return

        verification: SetupDiagnostics | None = None
        if self.has_dedicated_key:
            verification = await self._verify_stored_credential()
            if verification is None:
                return
        elif self.is_connected:
            self._mark_preparation_satisfied(MSG_ALREADY_CONNECTED)
            self.connection = StepState.success(MSG_ALREADY_CONNECTED)
        elif not await self._initialize():
            return

        if not await self._check_schema():
            return
        if not await self._run_diagnostics(verification):
            return
        await self._maybe_commit()

    async def _verify_stored_credential(self) -> SetupDiagnostics | None:
        try:
            diagnostics = await self.gateway.verify_stored(self.org_id)
        except GatewayError as exc:
            if self.active:
                logger.warning("Stored-key verification failed for org %s; reopening preparation", self.org_id)
                self._require_manual_preparation(StepState.failed(MSG_VERIFY_FAILED))
                self.preparation_details = exc.detail
                self.connection = StepState.failed(exc.message, exc.detail)
            return None
        if not self.active:
            return None
        self._mark_preparation_satisfied(MSG_VERIFIED)
        self.connection = StepState.success(MSG_VERIFIED)
        return diagnostics

    async def _initialize(self) -> bool:
        try:
            result = await self.gateway.initialize(self.org_id)
        except GatewayError as exc:
            if not self.active:
                return False
            if exc.is_missing_function:
                self._require_manual_preparation(StepState.warning(MSG_SCRIPT_REQUIRED))
                self.preparation_details = exc.detail
                self.connection = StepState.warning(MSG_SCRIPT_REQUIRED)
            else:
                self.connection = StepState.failed(exc.message, exc.detail)
            return False
        if not self.active:
            return False

        if not result.initialized:
            message = result.message or MSG_INIT_FAILED
            self._require_manual_preparation(StepState.failed(message))
            self.connection = StepState.failed(message)
            return False

        message = result.message or MSG_CONNECTED
        self._mark_preparation_satisfied(message)
        self.connection = StepState.success(message)
        return True

    async def _check_schema(self) -> bool:
        self.schema = SchemaState(StepStatus.LOADING)
        try:
            result = await self.gateway.schema_status(self.org_id)
        except GatewayError as exc:
            if self.active:
                self.schema = SchemaState(StepStatus.ERROR, exc.message, exc.detail)
            return False
        if not self.active:
            return False

        if not result.exists:
            self.schema = SchemaState(
                StepStatus.WARNING,
                MSG_SCHEMA_MISSING,
                exists=False,
                last_bootstrapped_at=result.last_bootstrapped_at,
            )
            self.diagnostics = DiagnosticsState()
            return False

        self.schema = SchemaState(
            StepStatus.SUCCESS,
            MSG_SCHEMA_READY,
            exists=True,
            last_bootstrapped_at=result.last_bootstrapped_at,
        )
        return True

    async def _run_diagnostics(self, verification: SetupDiagnostics | None) -> bool:
        if verification is not None:
            # Reuse the verify result instead of a second privileged call
            diagnostics = verification
        else:
            self.diagnostics = DiagnosticsState(StepStatus.LOADING)
            try:
                diagnostics = await self.gateway.diagnostics(self.org_id)
            except GatewayError as exc:
                if self.active:
                    self.diagnostics = DiagnosticsState(StepStatus.ERROR, exc.message, exc.detail)
                return False
            if not self.active:
                return False

        self.diagnostics = DiagnosticsState(
            severity_for(diagnostics),
            diagnostics.summary if diagnostics else None,
            diagnostics=diagnostics,
        )
        return True

    # ------------------------------------------------------------------
    # Step 3 remedy: bootstrap
    # ------------------------------------------------------------------

    async def bootstrap_schema(self) -> WizardSnapshot:
        """Create the schema; on success re-derive from the server and re-run the chain."""
        self.schema = SchemaState(StepStatus.LOADING)
        try:
            result = await self.gateway.bootstrap(self.org_id)
        except GatewayError as exc:
            if self.active:
                self.schema = SchemaState(StepStatus.ERROR, exc.message, exc.detail)
            return self.snapshot()
        if not self.active:
            return self.snapshot()

        if not result.executed:
            self.schema = SchemaState(StepStatus.ERROR, result.message or MSG_SCHEMA_NOT_CREATED, exists=False)
            return self.snapshot()

        self.schema = SchemaState(StepStatus.SUCCESS, result.message or MSG_SCHEMA_CREATED, exists=True)
        logger.info("Schema bootstrapped for org %s", self.org_id)

        await self.refresh()
        if self.active and self.connection.status != StepStatus.ERROR and self.can_request_validation:
            self.auto_verify_pending = False
            await self._run_validation(automatic=True)
        return self.snapshot()

    # ------------------------------------------------------------------
    # Step 5: connection-flag commit
    # ------------------------------------------------------------------

    def _commit_allowed(self) -> bool:
        return (
            self.active
            and self.settings is not None
            and not self.is_connected
            and not self.needs_preparation
            and self.connection.status == StepStatus.SUCCESS
            and self.schema.status == StepStatus.SUCCESS
            and self.schema.exists is True
            and self.diagnostics.status == StepStatus.SUCCESS
            and self.commit.status == StepStatus.IDLE
        )

    async def _maybe_commit(self) -> None:
        if not self._commit_allowed() or self.commit_fired_version == self.settings_version:
            return
        self.commit_fired_version = self.settings_version
        await self._commit()

    async def _commit(self) -> None:
        self.commit = StepState.loading()
        try:
            metadata = await self.gateway.update_connection_status(self.org_id, CONNECTED)
        except GatewayError as exc:
            if self.active:
                self.commit = StepState.failed(MSG_COMMIT_FAILED, exc.detail or exc.message)
            return
        if not self.active:
            return

        if self.settings is not None:
            self.settings = self.settings.model_copy(update={"metadata": metadata})
        self.commit = StepState.success(MSG_COMMITTED)
        logger.info("Connection committed for org %s", self.org_id)

    async def retry_connection_commit(self) -> WizardSnapshot:
        """Explicit retry after a failed commit."""
        if self.commit.status != StepStatus.ERROR:
            return self.snapshot()
        self.commit = StepState.idle()
        if self._commit_allowed():
            self.commit_fired_version = self.settings_version
            await self._commit()
        return self.snapshot()
