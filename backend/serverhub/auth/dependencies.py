# serverhub/auth/dependencies.py
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
import jwt
import logging
from serverhub.auth.utils import decode_token
from serverhub.database.repositories import user_repo
from serverhub.models.user import User, UserRole

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> User:
    """Получение текущего пользователя из токена"""
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        logger.warning("Попытка использования истёкшего токена")
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        logger.warning("Попытка использования невалидного токена")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_data = await user_repo.get_user(payload.get("sub"))
    if not user_data or not user_data.get("is_active", True):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    logger.debug(f"Авторизован пользователь: {user_data['login']}")
    return User(**user_data)


async def require_operator(current_user: User = Depends(get_current_user)) -> User:
    """Изменять реестр и выполнять команды могут только admin и operator"""
    if current_user.role == UserRole.VIEWER:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return current_user
