"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings

# Values the gateway cannot serve privileged requests without
REQUIRED_SETTINGS = (
    "control_store_url",
    "control_store_service_key",
    "credentials_encryption_key",
)


class Settings(BaseSettings):
    # Control store
    control_store_url: str = ""
    control_store_service_key: str = ""

    # Local development mode (set TUTTIUD_LOCAL_MODE=1 to use SQLite)
    local_mode: bool = False

    # Tenant credential encryption
    credentials_encryption_key: str = ""
    credentials_previous_encryption_keys: list[str] = []

    # Bearer tokens issued by the control store's identity service
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Tenant store
    tenant_schema: str = "tuttiud"
    provider_name: str = "tuttiud"
    tenant_request_timeout: float = 10.0

    # CORS
    cors_allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "info"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "TUTTIUD_",
    }

    @property
    def effective_control_store_url(self) -> str:
        """Return SQLite URL in local mode, the configured control store otherwise."""
        if self.local_mode:
            return "sqlite+aiosqlite:///tuttiud_local.db"
        return self.control_store_url

    def missing_required(self, *names: str) -> list[str]:
        """Return the names of required settings that are empty.

        Args:
            names: Subset of settings to check; all required settings when omitted.
        """
        checked = names or REQUIRED_SETTINGS
        missing = []
        for name in checked:
            if name == "control_store_url" and self.local_mode:
                continue
            if not getattr(self, name):
                missing.append(name)
        return missing


settings = Settings()
