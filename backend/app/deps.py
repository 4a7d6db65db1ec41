"""FastAPI dependency functions shared across routers.

Authentication
--------------
* Members and admins present ``Authorization: Bearer <api-key>``. The key is
  hashed (SHA-256) and resolved to an ``ApiKey`` row, then to its ``User``.
* Packaging workers present the shared secret in ``x-worker-key``.

Authorization
-------------
* ``require_active_member`` — ``users.member_status == "active"``.
* ``require_roles(...)`` — at least one matching ``user_roles`` row
  (``has_role``).
"""

import hashlib
import hmac
import logging
from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models.api_key import ApiKey
from app.models.job import utcnow
from app.models.user import MEMBER_STATUS_ACTIVE, User, UserRole

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def hash_key(raw_key: str) -> str:
    """SHA-256 hex digest of the raw API key."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def has_role(db: Session, user_id: int, role: str) -> bool:
    """True when the user holds ``role``."""
    return (
        db.query(UserRole.id)
        .filter(UserRole.user_id == user_id, UserRole.role == role)
        .first()
        is not None
    )


# ── API key auth ──────────────────────────────────────────────────────────────


def get_api_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Security(_bearer_scheme)
    ] = None,
) -> User:
    """Resolve Bearer token → User.

    Raises HTTP 401 for missing/invalid tokens and 403 for revoked keys.
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization header. Use: Bearer <api-key>",
        )

    raw_key = credentials.credentials
    key_hash = hash_key(raw_key)

    db = get_db()
    try:
        api_key = db.query(ApiKey).filter(ApiKey.key_hash == key_hash).first()
        if api_key is None:
            logger.warning("Invalid API key presented", extra={"key_prefix": raw_key[:8]})
            raise HTTPException(status_code=401, detail="Invalid API key.")
        if api_key.revoked:
            logger.warning(
                "Revoked API key used",
                extra={"api_key_id": api_key.id, "user_id": api_key.user_id},
            )
            raise HTTPException(status_code=403, detail="API key has been revoked.")

        api_key.last_used_at = utcnow()
        db.commit()

        user = db.query(User).filter(User.id == api_key.user_id).first()
        if user is None:
            raise HTTPException(status_code=401, detail="User not found.")

        # Detach from session so we can return safely after db.close()
        db.expunge(user)
        return user
    finally:
        db.close()


def require_active_member(user: Annotated[User, Depends(get_api_user)]) -> User:
    """Reject callers whose membership is not active (403)."""
    if user.member_status != MEMBER_STATUS_ACTIVE:
        raise HTTPException(status_code=403, detail="Active membership required")
    return user


def require_roles(*roles: str) -> Callable[..., User]:
    """Dependency factory: the caller must hold at least one of ``roles``.

    Usage::

        @router.get("/admin-only")
        def endpoint(user: User = Depends(require_roles("admin"))):
            ...
    """

    def _dependency(user: Annotated[User, Depends(get_api_user)]) -> User:
        db = get_db()
        try:
            allowed = any(has_role(db, user.id, role) for role in roles)
        finally:
            db.close()
        if not allowed:
            needed = " or ".join(roles)
            logger.warning("Role check failed: requires %s", needed, extra={"user_id": user.id})
            raise HTTPException(status_code=403, detail=f"Requires role: {needed}")
        return user

    return _dependency


# ── Worker auth ───────────────────────────────────────────────────────────────


def verify_worker_key(x_worker_key: Annotated[str | None, Header()] = None) -> None:
    """Check ``x-worker-key`` against WORKER_KEY. Unset WORKER_KEY rejects everyone."""
    expected = settings.worker_key
    if not expected or not x_worker_key or not hmac.compare_digest(x_worker_key, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
