from datetime import datetime, timedelta, timezone

from jose import jwt

from core.config import settings


def create_access_token(user_id: int, expires_minutes: int = None):
    """توکن JWT برای هدر Bearer و پارامتر token سوکت"""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES
    )
    payload = {"sub": str(user_id), "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
