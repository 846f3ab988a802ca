from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt

from app.core.config import settings

ADMIN_ROLE = "admin"


def create_access_token(subject: str, *, email: str, role: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    payload = {
        "sub": subject,
        "email": email,
        "role": role,
        "exp": expire,
        "type": "access",
        "jti": str(uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def is_platform_admin(claims: dict) -> bool:
    if claims.get("role") == ADMIN_ROLE:
        return True
    email = str(claims.get("email") or "").strip().lower()
    return bool(email) and email in settings.platform_admin_email_list
