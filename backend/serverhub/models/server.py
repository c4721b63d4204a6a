# serverhub/models/server.py
from pydantic import BaseModel, ConfigDict
from typing import Optional, Union
from datetime import date, datetime

# Поля с секретами, которые не должны уходить наружу
SECRET_FIELDS = {"ssh_key", "password", "db_password", "db_root_password", "identity_file"}


class ServerProxy(BaseModel):
    """Укороченная запись сервера, через который идёт SSH-туннель"""
    id: Optional[int] = None
    domain: Optional[str] = None
    port: Optional[int] = None
    ipv4: Optional[str] = None
    proxies_id: Optional[int] = None


class Server(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    created_at: Optional[datetime] = None
    status: Optional[str] = None
    domain: Optional[str] = None
    seodomain: Optional[str] = None
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None
    port: Optional[int] = None
    ssh_accounts_id: Optional[int] = None
    database_accounts_id: Optional[int] = None
    providers_id: Optional[int] = None
    customers_id: Optional[int] = None
    allow_sshd_modification: bool = False
    description: Optional[str] = None
    bill_duedate: Optional[date] = None
    cost: Optional[float] = None
    interval: Optional[str] = None

    # Из связанных таблиц
    username: Optional[str] = None
    ssh_key: Optional[str] = None
    ssh_account: Optional[str] = None
    provider: Optional[str] = None
    customer: Optional[str] = None
    seoprovider: Optional[str] = None
    seocustomer: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    db_root_password: Optional[str] = None

    # Только на время выполнения
    proxies: list[ServerProxy] = []
    persist: bool = False
    identity_file: Optional[str] = None
    password: Optional[str] = None
    hostkey_check: bool = True

    def public_dict(self) -> dict:
        """Запись без ключей и паролей (для API и логов)"""
        data = self.model_dump(exclude=SECRET_FIELDS)
        data["has_ssh_key"] = bool(self.ssh_key)
        return data


class ServerInput(BaseModel):
    """Данные сервера до и после servers.validate()"""
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = None
    domain: Optional[str] = None
    url: Optional[str] = None
    domains: Optional[Union[str, list[str]]] = None
    ipv4: Optional[str] = None
    ipv6: Optional[str] = None
    port: Optional[int] = None
    seoprovider: Optional[str] = None
    seocustomer: Optional[str] = None
    ssh_account: Optional[str] = None
    description: Optional[str] = None
    database_accounts_id: Optional[int] = None
    bill_duedate: Optional[date] = None
    cost: Optional[float] = None
    interval: Optional[str] = None
    allow_sshd_modification: bool = False
    register_host: bool = False
    db_password: Optional[str] = None

    # Заполняются при валидации
    seodomain: Optional[str] = None
    providers_id: Optional[int] = None
    customers_id: Optional[int] = None
    ssh_accounts_id: Optional[int] = None
