"""Bearer token helpers for resolving the calling account."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from .config import Settings, settings as default_settings
from .errors import AccountNotFoundError, UnauthenticatedError
from .catalog import AccountDirectory
from .models import Account


ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    account_id: UUID,
    expires_hours: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> str:
    settings = settings or default_settings
    now = datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24)
    claims: Dict[str, Any] = {
        "sub": str(account_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=max(ttl_hours, 1))).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or default_settings
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise UnauthenticatedError("Invalid token.") from exc

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise UnauthenticatedError("Invalid token type.")
    if not str(payload.get("sub", "")).strip():
        raise UnauthenticatedError("Token missing subject.")
    return payload


def resolve_identity(token: Optional[str], accounts: AccountDirectory, settings: Optional[Settings] = None) -> Account:
    """Map a bearer credential to the account it was issued for."""
    if not token:
        raise UnauthenticatedError("Access denied. No token provided.")

    payload = decode_access_token(token, settings)
    try:
        return accounts.get(UUID(payload["sub"]))
    except (ValueError, AccountNotFoundError) as exc:
        raise UnauthenticatedError("Invalid token. User not found.") from exc
