from typing import List

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError

from core.config import settings
from models.user import User
from services.chat_service import ChatService

security = HTTPBearer()


def _decode_user_id(token: str):
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None

    user_id = payload.get("sub")
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> User:
    # استخراج توکن از آبجکت credentials
    token = credentials.credentials

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = _decode_user_id(token)
    if user_id is None:
        raise credentials_exception

    user = await User.get_or_none(id=user_id, is_active=True)
    if user is None:
        raise credentials_exception
    return user


async def get_current_user_from_token(token: str):
    """نسخه سوکت: به جای خطا None برمی‌گرداند تا اتصال با 1008 بسته شود"""
    if not token:
        return None

    user_id = _decode_user_id(token)
    if user_id is None:
        return None

    return await User.get_or_none(id=user_id, is_active=True)


def require_role(allowed_roles: List[str]):
    async def role_checker(
            current_user: User = Depends(get_current_user)
    ) -> User:
        if not current_user.role:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User has no role assigned"
            )

        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {', '.join(allowed_roles)}"
            )

        return current_user

    return role_checker


def get_chat_service() -> ChatService:
    return ChatService()
