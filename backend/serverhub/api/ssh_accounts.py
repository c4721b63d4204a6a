# serverhub/api/ssh_accounts.py
from fastapi import APIRouter, Depends, HTTPException
from typing import List
import logging
from serverhub.auth.dependencies import get_current_user, require_operator
from serverhub.database.repositories import ssh_account_repo
from serverhub.models import SSHAccount, SSHAccountCreate
from serverhub.models.user import User
from serverhub.services import ssh_key_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ssh-accounts", tags=["ssh-accounts"])


@router.get("", response_model=List[SSHAccount])
async def list_ssh_accounts(current_user: User = Depends(get_current_user)):
    """Список SSH-аккаунтов без ключей"""
    return await ssh_account_repo.list_accounts()


@router.post("")
async def create_ssh_account(data: SSHAccountCreate, current_user: User = Depends(require_operator)):
    """Создать SSH-аккаунт. Публичный ключ возвращается только для сгенерированной пары"""
    if await ssh_account_repo.get_account_by_name(data.name):
        raise HTTPException(status_code=400, detail=f"SSH account '{data.name}' already exists")

    account, public_key = await ssh_key_manager.create_account(data)
    logger.info(f"Пользователь {current_user.login} создал SSH-аккаунт {account['seoname']}")
    return {"account": SSHAccount(**account), "public_key": public_key}


@router.get("/{account}", response_model=SSHAccount)
async def get_ssh_account(account: str, current_user: User = Depends(get_current_user)):
    """SSH-аккаунт по id или seoname"""
    if account.isdigit():
        record = await ssh_account_repo.get_account(int(account))
    else:
        record = await ssh_account_repo.get_account_by_seoname(account)
    if not record:
        raise HTTPException(status_code=404, detail=f"SSH account '{account}' not found")
    return record


@router.delete("/{account_id}")
async def delete_ssh_account(account_id: int, current_user: User = Depends(require_operator)):
    if not await ssh_account_repo.delete_account(account_id):
        raise HTTPException(status_code=404, detail="SSH account not found")
    logger.info(f"Пользователь {current_user.login} удалил SSH-аккаунт id={account_id}")
    return {"status": "deleted"}
