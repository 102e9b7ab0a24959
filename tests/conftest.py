"""Shared test fixtures."""

import json
import time
from urllib.parse import unquote

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tuttiud.config import Settings
from tuttiud.crypto.cipher import CredentialCipher
from tuttiud.db.base import Base
# Import all models to register with Base.metadata
import tuttiud.db.models  # noqa: F401
from tuttiud.db.models import OrganizationRow, OrgMembershipRow, OrgSettingsRow
from tuttiud.models.setup import (
    BootstrapResult,
    InitializeResult,
    OrganizationSetupSettings,
    SchemaCheckResult,
    SetupDiagnostics,
)
from tuttiud.onboarding.gateway import GatewayError, SetupGateway
from tuttiud.services.metadata import (
    normalise_metadata,
    with_connection_status,
    with_stored_credential_flag,
)

JWT_SECRET = "test-identity-signing-secret"
ENCRYPTION_KEY = "test-credentials-passphrase"
TENANT_URL = "https://tenant-one.example.test"
ORG_ID = "org_1"
ADMIN_ID = "user_admin"
MEMBER_ID = "user_member"
OWNER_ID = "user_owner"
OUTSIDER_ID = "user_outsider"

HEALTHY_DIAGNOSTICS = [
    {"check_name": 'Schema "tuttiud" exists', "success": True, "details": "OK"},
    {"check_name": 'Role "app_user" exists', "success": True, "details": "OK"},
]


def make_token(user_id: str, secret: str = JWT_SECRET, audience: str = "authenticated", **claims) -> str:
    """Mint an access token the way the control store's identity service does."""
    payload = {"sub": user_id, "aud": audience, "exp": int(time.time()) + 3600, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeTenantStore:
    """In-process PostgREST stand-in served through ``httpx.MockTransport``.

    Keys in ``valid_keys`` authenticate; RPC results come from ``rpc_results``
    (functions not listed there answer PGRST202) and tables from ``tables``.
    """

    def __init__(self):
        self.valid_keys: set[str] = set()
        self.rpc_results: dict[str, object] = {
            "setup_assistant_diagnostics": HEALTHY_DIAGNOSTICS,
            "setup_assistant_initialize": {"initialized": True, "message": "Connection verified."},
            "setup_assistant_schema_status": {"exists": True, "last_bootstrapped_at": None},
            "setup_assistant_run_bootstrap": {"executed": True, "message": "Schema created."},
        }
        self.tables: dict[str, list[dict]] = {"Students": [], "Instructors": [], "SessionRecords": []}
        self.requests: list[httpx.Request] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.headers.get("apikey") not in self.valid_keys:
            return httpx.Response(401, json={"code": "PGRST301", "message": "JWT could not be decoded"})

        path = unquote(request.url.path).removeprefix("/rest/v1/")

        if path.startswith("rpc/"):
            function_name = path.removeprefix("rpc/")
            if function_name not in self.rpc_results:
                return httpx.Response(
                    404,
                    json={
                        "code": "PGRST202",
                        "message": f"Could not find the function tuttiud.{function_name}",
                        "hint": None,
                        "details": None,
                    },
                )
            return httpx.Response(200, json=self.rpc_results[function_name])

        rows = self.tables.setdefault(path, [])
        if request.method == "GET":
            selected = rows
            for column, value in request.url.params.items():
                if column in ("select", "order"):
                    continue
                expected = value.removeprefix("eq.")
                selected = [row for row in selected if str(row.get(column)) == expected]
            return httpx.Response(200, json=selected)

        if request.method == "POST":
            row = json.loads(request.content)
            row = {"id": f"{path.lower()}_{len(rows) + 1}", **row}
            rows.append(row)
            return httpx.Response(201, json=[row])

        return httpx.Response(405, json={"message": "Method not allowed"})

    def calls_to(self, function_name: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(f"/rpc/{function_name}")]


OK_DIAGNOSTICS = SetupDiagnostics(status="ok", summary="All 2 setup checks passed.")


class FakeGateway(SetupGateway):
    """Server-side state for one organization, mutated the way the real gateway would."""

    def __init__(self, has_key=False, metadata=None, tenant_store_url="https://tenant.example.test", settings=True):
        self.has_key = has_key
        self.metadata = metadata or {}
        self.tenant_store_url = tenant_store_url
        self.has_settings = settings
        self.schema_exists = True
        self.errors: dict[str, GatewayError] = {}
        self.hooks: dict[str, object] = {}
        self.initialize_result = InitializeResult(initialized=True, message=None)
        self.diagnostics_result = OK_DIAGNOSTICS
        self.calls: list[str] = []

    def _enter(self, name):
        self.calls.append(name)
        hook = self.hooks.get(name)
        if hook:
            hook()
        if name in self.errors:
            raise self.errors[name]

    def count(self, name):
        return self.calls.count(name)

    async def fetch_status(self, org_id):
        self._enter("fetch_status")
        return self.has_key

    async def fetch_settings(self, org_id):
        self._enter("fetch_settings")
        if not self.has_settings:
            return None
        return OrganizationSetupSettings(
            org_id=org_id,
            tenant_store_url=self.tenant_store_url,
            metadata=normalise_metadata(self.metadata, "tuttiud"),
        )

    async def store_credential(self, org_id, app_key, tenant_store_url, current_metadata=None):
        self._enter("store_credential")
        self.has_key = True
        self.metadata = with_stored_credential_flag(self.metadata, "tuttiud")
        return normalise_metadata(self.metadata, "tuttiud"), OK_DIAGNOSTICS

    async def verify_stored(self, org_id):
        self._enter("verify_stored")
        return self.diagnostics_result

    async def initialize(self, org_id):
        self._enter("initialize")
        return self.initialize_result

    async def schema_status(self, org_id):
        self._enter("schema_status")
        return SchemaCheckResult(exists=self.schema_exists)

    async def bootstrap(self, org_id):
        self._enter("bootstrap")
        self.schema_exists = True
        return BootstrapResult(executed=True, message="Schema created.")

    async def diagnostics(self, org_id):
        self._enter("diagnostics")
        return self.diagnostics_result

    async def update_connection_status(self, org_id, status):
        self._enter("update_connection_status")
        self.metadata = with_connection_status(self.metadata, "tuttiud", status)
        return normalise_metadata(self.metadata, "tuttiud")


@pytest.fixture
def app_settings():
    return Settings(
        _env_file=None,
        control_store_url="sqlite+aiosqlite:///",
        control_store_service_key=JWT_SECRET,
        credentials_encryption_key=ENCRYPTION_KEY,
    )


@pytest.fixture
def cipher():
    return CredentialCipher(ENCRYPTION_KEY)


@pytest.fixture
def tenant_store():
    return FakeTenantStore()


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(db_engine, session_factory, app_settings, tenant_store):
    """Create a test application instance with in-memory DB and a fake tenant store."""
    from tuttiud.main import create_app

    _app = create_app(app_settings, tenant_transport=tenant_store.transport())
    _app.state.db_engine = db_engine
    _app.state.db_session_factory = session_factory
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def seed_org(db_session, cipher):
    """Seed one organization with owner/admin/member memberships.

    Returns a coroutine taking the stored key (plaintext, encrypted here),
    the tenant address and the metadata document.
    """

    async def _seed(
        org_id: str = ORG_ID,
        app_key: str | None = None,
        tenant_store_url: str | None = TENANT_URL,
        metadata: dict | None = None,
        with_settings: bool = True,
    ) -> OrganizationRow:
        org = OrganizationRow(
            id=org_id,
            name="Music School",
            dedicated_key_encrypted=cipher.encrypt(app_key) if app_key else None,
        )
        db_session.add(org)
        db_session.add_all(
            [
                OrgMembershipRow(org_id=org_id, user_id=OWNER_ID, role="owner"),
                OrgMembershipRow(org_id=org_id, user_id=ADMIN_ID, role="admin"),
                OrgMembershipRow(org_id=org_id, user_id=MEMBER_ID, role="member"),
            ]
        )
        if with_settings:
            db_session.add(
                OrgSettingsRow(
                    org_id=org_id,
                    tenant_store_url=tenant_store_url,
                    tenant_anon_key="anon-public-key",
                    metadata_=metadata if metadata is not None else {},
                )
            )
        await db_session.commit()
        return org

    return _seed


@pytest.fixture
def auth():
    """Build Authorization headers for a user id."""
    return auth_headers


@pytest.fixture
def mint_token():
    return make_token


@pytest.fixture
def load_org(session_factory):
    """Load an organization through a fresh session (bypasses identity-map caching)."""

    async def _load(org_id: str = ORG_ID) -> OrganizationRow | None:
        async with session_factory() as session:
            return await session.get(OrganizationRow, org_id)

    return _load


@pytest.fixture
def load_settings(session_factory):
    async def _load(org_id: str = ORG_ID) -> OrgSettingsRow | None:
        async with session_factory() as session:
            return await session.get(OrgSettingsRow, org_id)

    return _load


@pytest.fixture
def make_gateway():
    """Build an in-memory setup gateway holding one organization's server state."""
    return FakeGateway
