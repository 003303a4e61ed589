import hashlib
import hmac
from typing import Any

import jwt
from pwdlib import PasswordHash

from talentpay.config import settings

# Initialize hasher with Argon2
pwd_context = PasswordHash.recommended()


def verify_secret(plain_secret: str, hashed_secret: str) -> bool:
    """Verify a secret (e.g. a verification code) against a hash."""
    return pwd_context.verify(plain_secret, hashed_secret)


def hash_secret(secret: str) -> str:
    """Hash a secret using Argon2."""
    return pwd_context.hash(secret)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate a session JWT. Tokens are issued by the session provider."""
    return jwt.decode(
        token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
    )


def is_admin(claims: dict[str, Any]) -> bool:
    """Admin if the token carries the admin claim or belongs to ADMIN_EMAIL."""
    if claims.get("admin") is True:
        return True
    email = claims.get("email") or claims.get("sub")
    return bool(settings.ADMIN_EMAIL) and email == settings.ADMIN_EMAIL


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a webhook body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_webhook(
    body: bytes,
    secret: str,
    signature: str | None = None,
    shared_secret: str | None = None,
) -> bool:
    """
    Check a webhook delivery against the configured secret.

    Accepts either an HMAC-SHA256 signature of the raw body or the secret
    itself in a header. Both comparisons are constant-time.
    """
    if signature:
        expected = sign_payload(body, secret)
        candidate = signature.strip().lower().removeprefix("sha256=")
        return hmac.compare_digest(expected, candidate)
    if shared_secret:
        return hmac.compare_digest(shared_secret.encode(), secret.encode())
    return False
