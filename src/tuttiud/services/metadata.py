"""Read-merge-write helpers for the ``org_settings.metadata`` document.

Every update copies the existing document and replaces only the one key it
owns, so unrelated substructures survive.
"""

from typing import Any

from tuttiud.models.enums import STORED_MARKER
from tuttiud.models.setup import OrganizationSetupMetadata


def _is_record(value: Any) -> bool:
    return isinstance(value, dict)


def credential_flag_key(provider: str) -> str:
    return f"{provider}AppJwt"


def normalise_metadata(metadata: Any, provider: str) -> OrganizationSetupMetadata:
    """Return a normalised view; a non-string provider status becomes ``None``."""
    if not _is_record(metadata):
        return OrganizationSetupMetadata(
            connections={provider: None},
            credentials={},
            raw={},
        )

    connections = dict(metadata["connections"]) if _is_record(metadata.get("connections")) else {}
    credentials = dict(metadata["credentials"]) if _is_record(metadata.get("credentials")) else {}

    status = connections.get(provider)
    connections[provider] = status if isinstance(status, str) else None

    raw = {**metadata, "connections": dict(connections)}
    return OrganizationSetupMetadata(connections=connections, credentials=credentials, raw=raw)


def with_connection_status(metadata: Any, provider: str, status: str) -> dict:
    """Return a copy of ``metadata`` with ``connections.<provider> = status``."""
    base = dict(metadata) if _is_record(metadata) else {}
    connections = dict(base["connections"]) if _is_record(base.get("connections")) else {}
    connections[provider] = status
    return {**base, "connections": connections}


def with_stored_credential_flag(metadata: Any, provider: str) -> dict:
    """Return a copy of ``metadata`` flagging that a credential is stored.

    The flag is a placeholder marker; the secret itself lives only on the
    organization row, encrypted.
    """
    base = dict(metadata) if _is_record(metadata) else {}
    connections = dict(base["connections"]) if _is_record(base.get("connections")) else {}
    credentials = dict(base["credentials"]) if _is_record(base.get("credentials")) else {}
    credentials[credential_flag_key(provider)] = STORED_MARKER
    return {**base, "connections": connections, "credentials": credentials}
