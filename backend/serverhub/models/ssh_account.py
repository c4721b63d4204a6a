# serverhub/models/ssh_account.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class SSHAccount(BaseModel):
    """SSH-аккаунт, которым реестр ходит на серверы"""
    id: int
    name: str
    seoname: str
    username: str
    status: Optional[str] = None
    description: Optional[str] = None
    fingerprint: Optional[str] = None
    created_at: Optional[datetime] = None


class SSHAccountCreate(BaseModel):
    """Модель для создания SSH-аккаунта"""
    name: str
    username: str
    ssh_key: Optional[str] = None  # приватный ключ; если не указан - генерируется
    key_type: str = "ed25519"
    description: Optional[str] = None
