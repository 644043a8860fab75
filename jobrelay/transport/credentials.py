"""
Short-lived bearer credentials for worker requests.

Each dispatched request carries a JWT scoped to the job's owner, so the
worker acts with the owner's identity. Signing is delegated to python-jose.
"""

from datetime import timedelta

from jose import jwt

from jobrelay.clock import utcnow
from jobrelay.config import get_settings


def mint_credential(
    owner_id: str,
    role: str | None = None,
    email: str | None = None,
    ttl: timedelta | None = None,
) -> str:
    """
    Mint a bearer credential for an owner.

    Args:
        owner_id: The owner the worker acts on behalf of (``sub``).
        role: Role and audience claim. Defaults to the configured role.
        email: Optional email claim.
        ttl: Lifetime of the token. Defaults to the configured TTL.

    Returns:
        The ``Authorization`` header value, ``"Bearer <jwt>"``.
    """
    settings = get_settings()
    role = role or settings.credential_role
    if ttl is None:
        ttl = timedelta(seconds=settings.credential_ttl_seconds)

    issued_at = utcnow()
    claims = {
        "sub": owner_id,
        "aud": role,
        "role": role,
        "email": email,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + ttl).timestamp()),
    }

    token = jwt.encode(
        claims,
        settings.credential_secret_key,
        algorithm=settings.credential_algorithm,
    )
    return f"Bearer {token}"
