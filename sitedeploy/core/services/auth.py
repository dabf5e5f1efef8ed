"""
Bearer tokens — who is calling.

Tokens are signed, timestamped payloads (itsdangerous), carrying the
owner id every registry call is scoped to::

    token = issue_token(secret, "user-1", email="a@example.com")
    identity = verify_token(secret, token, max_age=86400)

Issuing tokens to end users (registration, password checks) happens
elsewhere; the CLI ``token`` command mints them for operators.
"""

from __future__ import annotations

from dataclasses import dataclass

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

_SALT = "sitedeploy-auth"


class AuthError(Exception):
    """Base for rejected credentials."""

    http_status = 401


class MissingCredentials(AuthError):
    http_status = 401


class InvalidCredentials(AuthError):
    http_status = 403


@dataclass(frozen=True)
class Identity:
    """The authenticated caller."""

    owner_id: str
    email: str = ""


def _serializer(secret: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret, salt=_SALT)


def issue_token(secret: str, owner_id: str, email: str = "") -> str:
    """Sign a token for ``owner_id``."""
    if not owner_id:
        raise ValueError("owner_id is required")
    return _serializer(secret).dumps({"uid": owner_id, "email": email})


def verify_token(secret: str, token: str, max_age: int | None = None) -> Identity:
    """Check a token's signature and age.

    Raises:
        MissingCredentials: Empty token.
        InvalidCredentials: Bad signature, expired, or malformed payload.
    """
    if not token:
        raise MissingCredentials("Access token required")
    try:
        payload = _serializer(secret).loads(token, max_age=max_age)
    except SignatureExpired as e:
        raise InvalidCredentials("Token expired") from e
    except BadSignature as e:
        raise InvalidCredentials("Invalid token") from e

    if not isinstance(payload, dict) or not payload.get("uid"):
        raise InvalidCredentials("Invalid token")
    return Identity(owner_id=str(payload["uid"]), email=str(payload.get("email", "")))


def token_from_header(header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header:
        return ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()
