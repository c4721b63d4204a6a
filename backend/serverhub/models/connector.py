# serverhub/models/connector.py
from pydantic import BaseModel, field_validator
from typing import Optional, Union


class SSHTunnel(BaseModel):
    """
    SSH-туннель коннектора: локальный порт source_port перенаправляется через
    зарегистрированный сервер server на hostname:порт коннектора.
    source_port=0 - свободный порт выбирается автоматически,
    hostname=None - используется host коннектора.
    """
    server: Union[int, str]
    source_port: int = 0
    hostname: Optional[str] = None
    required: bool = True

    @field_validator("source_port")
    @classmethod
    def _check_source_port(cls, value: int) -> int:
        if value < 0 or value > 65535:
            raise ValueError(f"Порт должен быть в диапазоне 0-65535, получено {value}")
        return value


class Connector(BaseModel):
    """Именованная конфигурация подключения к БД"""
    name: str
    host: str
    port: int = 5432
    user: str
    password: Optional[str] = None
    database: str = "postgres"
    minconn: int = 1
    maxconn: int = 5
    ssh_tunnel: Optional[SSHTunnel] = None

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if value < 1 or value > 65535:
            raise ValueError(f"Порт должен быть в диапазоне 1-65535, получено {value}")
        return value
