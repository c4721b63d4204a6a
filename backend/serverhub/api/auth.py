# serverhub/api/auth.py
from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm
import logging
from serverhub.auth import verify_password, create_access_token
from serverhub.database.repositories import user_repo

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/token")
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    """Авторизация и получение токена"""
    user = await user_repo.get_user(form_data.username)
    if user and user["is_active"] and verify_password(form_data.password, user["password_hash"]):
        token = create_access_token({"sub": user["login"], "role": user["role"]})
        await user_repo.update_last_login(user["login"])
        logger.info(f"Успешная авторизация: {user['login']}")
        return {"access_token": token, "token_type": "bearer"}

    logger.warning(f"Неудачная попытка авторизации: {form_data.username}")
    raise HTTPException(status_code=401, detail="Invalid credentials")
