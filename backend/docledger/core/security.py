"""
Security Module - Signed storage tokens and caller identity
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import Header, HTTPException, status
from docledger.core.config import settings

STORAGE_TOKEN_PURPOSE = "storage"


def create_signed_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed, expiring JWT"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(seconds=settings.SIGNED_URL_EXPIRE_SECONDS)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_signed_token(token: str) -> Optional[dict]:
    """Decode and validate a signed token; None when invalid or expired"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def create_storage_token(storage_path: str, expires_in: int) -> str:
    return create_signed_token(
        {"sub": storage_path, "purpose": STORAGE_TOKEN_PURPOSE},
        timedelta(seconds=expires_in)
    )


def decode_storage_token(token: str) -> Optional[str]:
    payload = decode_signed_token(token)
    if not payload or payload.get("purpose") != STORAGE_TOKEN_PURPOSE:
        return None
    return payload.get("sub")


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Dependency returning the caller's user id.
    Authentication happens in front of this service; the platform forwards
    the verified identity in the X-User-Id header.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return x_user_id.strip()
