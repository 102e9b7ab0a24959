"""Custom exception classes for the onboarding gateway."""


class TuttiudError(Exception):
    """Base exception for the onboarding gateway."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class BadRequestError(TuttiudError):
    """Request is missing required input."""

    def __init__(self, message: str, details=None):
        super().__init__("BAD_REQUEST", message, details, status_code=400)


class UnauthenticatedError(TuttiudError):
    """Bearer token missing, malformed or rejected."""

    def __init__(self, message: str = "Your session has expired. Sign in again and retry."):
        super().__init__("UNAUTHENTICATED", message, status_code=401)


class ForbiddenError(TuttiudError):
    """Caller lacks a membership or a sufficient role."""

    def __init__(self, message: str = "You do not have permission to act in this organization."):
        super().__init__("FORBIDDEN", message, status_code=403)


class NotFoundError(TuttiudError):
    """Resource not found."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class SetupIncompleteError(TuttiudError):
    """Organization has not finished onboarding (no tenant address or credential)."""

    def __init__(self, message: str):
        super().__init__("SETUP_INCOMPLETE", message, status_code=409)


class MissingFunctionError(TuttiudError):
    """A tenant-side setup RPC has not been deployed yet."""

    def __init__(self, function_name: str, details=None):
        super().__init__(
            "MISSING_FUNCTION",
            f"The tenant function '{function_name}' is not installed. Run the setup script and retry.",
            details,
            status_code=424,
        )


class ConfigurationMissingError(TuttiudError):
    """Server-side configuration is incomplete. Never carries the missing values."""

    def __init__(self, message: str = "Server configuration is incomplete. Contact support."):
        super().__init__("CONFIGURATION_MISSING", message, status_code=500)


class DecryptionFailedError(TuttiudError):
    """Stored credential could not be decrypted (tampered blob or wrong key)."""

    def __init__(self, message: str = "Decrypting the stored application key failed. Contact support.", details=None):
        super().__init__("DECRYPTION_FAILED", message, details, status_code=500)


class ValidationFailedError(TuttiudError):
    """A newly submitted credential failed its diagnostics check."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_FAILED", message, details, status_code=400)


class VerificationFailedError(TuttiudError):
    """Diagnostics under the already-stored credential failed."""

    def __init__(self, message: str, details=None):
        super().__init__("VERIFICATION_FAILED", message, details, status_code=400)


class UpdateFailedError(TuttiudError):
    """A control-store write did not complete."""

    def __init__(self, message: str, details=None):
        super().__init__("UPDATE_FAILED", message, details, status_code=500)


class UnknownUpstreamError(TuttiudError):
    """An upstream store failed in an unclassified way."""

    def __init__(self, message: str, details=None):
        super().__init__("UNKNOWN_UPSTREAM", message, details, status_code=502)


class ConnectionFailedError(TuttiudError):
    """The tenant connectivity RPC failed."""

    def __init__(self, message: str, details=None):
        super().__init__("CONNECTION_FAILED", message, details, status_code=502)


class CheckFailedError(TuttiudError):
    """The tenant schema existence check failed."""

    def __init__(self, message: str, details=None):
        super().__init__("CHECK_FAILED", message, details, status_code=502)


class BootstrapFailedError(TuttiudError):
    """The tenant schema provisioning RPC failed."""

    def __init__(self, message: str, details=None):
        super().__init__("BOOTSTRAP_FAILED", message, details, status_code=502)
