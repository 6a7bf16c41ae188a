"""Password hashing and access-token helpers."""
from __future__ import annotations

import base64
import secrets
from datetime import timedelta

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from jose import JWTError, jwt

from parley_stage.core.errors import UnauthorizedError
from parley_stage.core.settings import settings
from parley_stage.db.time import utcnow

PASSWORD_SCHEME = "scrypt"
PASSWORD_SALT_BYTES = 16
PASSWORD_HASH_BYTES = 32


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _unb64(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def hash_password(password: str) -> str:
    """Return a salted scrypt hash of ``password``.

    The cost parameters are stored with the hash so that raising them later
    does not invalidate existing accounts.
    """
    salt = secrets.token_bytes(PASSWORD_SALT_BYTES)
    n, r, p = settings.kdf_scrypt_n, settings.kdf_scrypt_r, settings.kdf_scrypt_p
    digest = Scrypt(salt=salt, length=PASSWORD_HASH_BYTES, n=n, r=r, p=p).derive(
        password.encode("utf-8")
    )
    return "$".join((PASSWORD_SCHEME, str(n), str(r), str(p), _b64(salt), _b64(digest)))


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if ``password`` matches a hash produced by :func:`hash_password`."""
    try:
        scheme, n, r, p, salt, digest = password_hash.split("$")
        if scheme != PASSWORD_SCHEME:
            return False
        kdf = Scrypt(
            salt=_unb64(salt),
            length=PASSWORD_HASH_BYTES,
            n=int(n),
            r=int(r),
            p=int(p),
        )
        kdf.verify(password.encode("utf-8"), _unb64(digest))
        return True
    except (InvalidKey, ValueError):
        return False


def create_access_token(subject: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token for ``subject`` (a user id)."""
    to_encode: dict[str, object] = {"sub": subject}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str | None) -> str:
    """Validate a bearer token and return its subject.

    Raises:
        UnauthorizedError: If the token is missing, malformed, expired, or has no subject
    """
    if not token:
        raise UnauthorizedError()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise UnauthorizedError() from err

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise UnauthorizedError()
    return subject
