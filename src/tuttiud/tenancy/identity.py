"""Bearer token validation against the control store's identity service."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping

from jose import JWTError, jwt

from tuttiud.errors.exceptions import UnauthenticatedError

logger = logging.getLogger(__name__)

_BEARER_PATTERN = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None


def get_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    header = headers.get("authorization") or headers.get("Authorization")
    if not header:
        return None
    match = _BEARER_PATTERN.match(header)
    if not match:
        return None
    token = match.group(1).strip()
    return token or None


class IdentityService:
    """Validates control-store access tokens (HS-signed JWTs)."""

    def __init__(self, signing_key: str, algorithm: str = "HS256", audience: str | None = "authenticated"):
        self._signing_key = signing_key
        self._algorithm = algorithm
        self._audience = audience or None

    def verify(self, token: str) -> Identity:
        """Return the identity behind ``token`` or raise :class:`UnauthenticatedError`."""
        try:
            payload = jwt.decode(
                token,
                self._signing_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )
        except JWTError as exc:
            logger.debug("JWT decode failed: %s", exc)
            raise UnauthenticatedError(
                "We could not verify your identity. Sign in again and retry."
            ) from exc

        user_id = payload.get("sub")
        if not user_id:
            raise UnauthenticatedError("We could not verify your identity. Sign in again and retry.")

        return Identity(user_id=str(user_id), email=payload.get("email"))
