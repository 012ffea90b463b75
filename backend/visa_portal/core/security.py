from datetime import datetime, timedelta, timezone
from typing import Any, Optional
import jwt

from visa_portal.core.config import settings


class TokenPayloadError(ValueError):
    """The token verified but carries no usable user identity."""


def create_access_token(subject: str | Any, roles: list[str], expires_delta: Optional[timedelta] = None) -> str:
    """Issue a token the way the primary auth service does (used by scripts and tests)."""
    expire = datetime.now(tz=timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode: dict[str, Any] = {"sub": str(subject), "exp": expire, "roles": roles}
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode an access token without role verification.
    Raises jwt.PyJWTError if invalid and returns the payload as a dict.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    return payload


def identity_from_payload(payload: Any) -> str:
    """Return the user id carried by a decoded token.

    ``sub`` is the current claim; ``id`` is accepted for tokens minted by the
    legacy Node service. Raises TokenPayloadError when neither is usable.
    """
    if not isinstance(payload, dict):
        raise TokenPayloadError("Token payload is not an object")
    for claim in ("sub", "id"):
        value = payload.get(claim)
        # bool is an int subclass but never a user id
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise TokenPayloadError("Missing subject")


def roles_from_payload(payload: dict[str, Any]) -> list[str]:
    roles = payload.get("roles")
    if roles is None:
        # Legacy tokens carry a single ``role`` string
        roles = payload.get("role") or []
    if not isinstance(roles, list):
        roles = [roles]
    return [str(r) for r in roles]
