# serverhub/api/servers.py
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List, Optional, Union
import logging
from serverhub.auth import get_current_user, require_operator
from serverhub.models import CommandSpec, ServerInput
from serverhub.models.user import User
from serverhub.services import servers
from serverhub.services.known_hosts import known_hosts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/servers", tags=["servers"])


class DomainsBody(BaseModel):
    domains: Union[str, List[str]] = []


class ProxyBody(BaseModel):
    proxies_id: int


class SSHAccessBody(BaseModel):
    account: str
    password: Optional[str] = None


def _input_dict(server: ServerInput) -> dict:
    return server.model_dump(exclude={"db_password"})


async def _server_id(server: str) -> int:
    servers_id = await servers.get_id(server)
    if not servers_id:
        raise HTTPException(status_code=400, detail="Server not specified")
    return servers_id


@router.get("", response_model=List[dict])
async def list_servers(current_user: User = Depends(get_current_user)):
    """Active servers"""
    return await servers.list_servers()


@router.get("/{server}")
async def get_server(server: str, proxies: bool = True, current_user: User = Depends(get_current_user)):
    """Server record by id, domain or seodomain"""
    record = await servers.get(server, return_proxies=proxies)
    return record.public_dict()


@router.post("")
async def create_server(data: ServerInput, current_user: User = Depends(require_operator)):
    record = await servers.insert(data)
    logger.info(f"Пользователь {current_user.login} добавил сервер {record.domain}")
    return _input_dict(record)


@router.put("/{server}")
async def update_server(server: str, data: ServerInput, current_user: User = Depends(require_operator)):
    data.id = await _server_id(server)
    record = await servers.update(data)
    logger.info(f"Пользователь {current_user.login} обновил сервер {record.domain}")
    return _input_dict(record)


@router.delete("/{server}")
async def delete_server(server: str, current_user: User = Depends(require_operator)):
    record = await servers.erase(server)
    logger.info(f"Пользователь {current_user.login} удалил сервер {record.domain}")
    return {"status": "deleted", "id": record.id, "domain": record.domain}


@router.post("/{server}/exec")
async def exec_command(server: str, spec: CommandSpec, current_user: User = Depends(require_operator)):
    """Run a command on the server and return its output lines"""
    logger.info(f"Пользователь {current_user.login} выполняет команду на {server}")
    return {"output": await servers.execute(server, spec)}


@router.post("/{server}/test")
async def test_server(server: str, current_user: User = Depends(require_operator)):
    return {"ok": await servers.test(server)}


@router.post("/{server}/ssh-access")
async def check_ssh_access(server: str, body: SSHAccessBody, current_user: User = Depends(require_operator)):
    return {"access": await servers.check_ssh_access(server, body.account, body.password)}


@router.get("/{server}/os")
async def detect_os(server: str, current_user: User = Depends(require_operator)):
    return await servers.detect_os(server)


@router.get("/{server}/public-ip")
async def get_public_ip(server: str, current_user: User = Depends(require_operator)):
    return {"ip": await servers.get_public_ip(server)}


@router.post("/{server}/known-host")
async def register_known_host(server: str, current_user: User = Depends(require_operator)):
    """Scan and register host keys for the server and its linked domains"""
    return {"added": await servers.register_host(server)}


@router.get("/{server}/known-host")
async def host_is_known(server: str, current_user: User = Depends(get_current_user)):
    record = await servers.get(server, return_proxies=False)
    known = await known_hosts.host_is_known(record.domain, record.port, auto_register=False)
    return {"known": bool(known)}


# --- Domains ---

@router.get("/{server}/domains")
async def list_domains(server: str, current_user: User = Depends(get_current_user)):
    return await servers.list_domains(server)


@router.put("/{server}/domains")
async def replace_domains(server: str, body: DomainsBody, current_user: User = Depends(require_operator)):
    record = await servers.get(server, return_proxies=False)
    return {"linked": await servers.update_domains(record, body.domains)}


@router.post("/{server}/domains/{domain}")
async def add_domain(server: str, domain: str, current_user: User = Depends(require_operator)):
    return {"added": await servers.add_domain(server, domain)}


@router.delete("/{server}/domains")
async def remove_all_domains(server: str, current_user: User = Depends(require_operator)):
    return {"removed": await servers.remove_domain(server)}


@router.delete("/{server}/domains/{domain}")
async def remove_domain(server: str, domain: str, current_user: User = Depends(require_operator)):
    return {"removed": await servers.remove_domain(server, domain)}


# --- SSH proxies ---

@router.get("/{server}/proxies")
async def list_proxies(server: str, current_user: User = Depends(get_current_user)):
    return await servers.list_proxies(await _server_id(server))


@router.post("/{server}/proxies")
async def add_proxy(server: str, body: ProxyBody, current_user: User = Depends(require_operator)):
    return {"id": await servers.add_ssh_proxy(await _server_id(server), body.proxies_id)}


@router.put("/{server}/proxies/{proxies_id}")
async def update_proxy(server: str, proxies_id: int, body: ProxyBody,
                       current_user: User = Depends(require_operator)):
    edge_id = await servers.update_ssh_proxy(await _server_id(server), proxies_id, body.proxies_id)
    return {"id": edge_id}


@router.delete("/{server}/proxies/{proxies_id}")
async def delete_proxy(server: str, proxies_id: int, current_user: User = Depends(require_operator)):
    if not await servers.delete_ssh_proxy(await _server_id(server), proxies_id):
        raise HTTPException(status_code=404, detail="Proxy edge not found")
    return {"status": "deleted"}
