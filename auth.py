import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
SESSION_HOURS = 24

ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD_HASH = os.getenv("ADMIN_PASSWORD_HASH")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def authenticate_admin(username: str, password: str) -> bool:
    if not ADMIN_PASSWORD_HASH:
        logger.warning("admin login attempted but ADMIN_PASSWORD_HASH is not set")
        return False
    if username != ADMIN_USERNAME:
        return False
    return pwd_context.verify(password, ADMIN_PASSWORD_HASH)


def create_token(username: str, now: Optional[datetime] = None):
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=SESSION_HOURS)
    payload = {
        "sub": username,
        "is_admin": True,
        "iat": now,
        "exp": expires_at,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG), expires_at


def require_admin(authorization: Optional[str] = Header(None)):
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    if not payload.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return payload
