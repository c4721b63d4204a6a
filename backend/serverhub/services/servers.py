# serverhub/services/servers.py
"""
Реестр серверов: поиск, валидация, CRUD, прокси-цепочки, связи с доменами
и выполнение команд на серверах.

Сервер можно указать так:
    None            - локальная машина, сеть не нужна
    Server / dict   - с id возвращается как есть, с domain ищется по domain
    int, "12"       - поиск по id
    "domain"        - поиск по domain или seodomain
    "+domain"       - то же, но с постоянным SSH-соединением
"""
import asyncio
import inspect
import re
import socket
import logging
from pydantic import BaseModel
from serverhub.config import settings
from serverhub.database.repositories import (
    domain_repo,
    proxy_repo,
    reference_repo,
    server_repo,
    ssh_account_repo,
)
from serverhub.exceptions import (
    AccessDeniedError,
    AmbiguousError,
    ExecutionFailedError,
    InvalidError,
    MissingCredentialsError,
    NotFoundError,
    NotSpecifiedError,
    RegistryError,
    UnknownError,
)
from serverhub.models import CommandSpec, Server, ServerInput, ServerProxy
from serverhub.services import domains as domains_service
from serverhub.services import seo, system_logger
from serverhub.services.identity import vault as default_vault
from serverhub.services.known_hosts import known_hosts
from serverhub.services.ssh import run_local
from serverhub.services.validation import Validator, is_domain

logger = logging.getLogger(__name__)

_OS_GROUP_RE = re.compile(r"(ubuntu |debian |red hat )", re.IGNORECASE)
_OS_NAME_RE = re.compile(
    r"((?:[kxl]|edu)?ubuntu|mint|debian|red hat enterprise|fedora|centos)", re.IGNORECASE
)
_OS_VERSION_RE = re.compile(r"\d*\.?\d+")


def _default_runner():
    from serverhub.services.ssh import runner
    return runner


def _is_numeric(value) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, str) and value.isdigit())


def _is_record(value) -> bool:
    return isinstance(value, (dict, BaseModel))


def _field(record, name):
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _as_dict(record) -> dict:
    if isinstance(record, BaseModel):
        return record.model_dump()
    return dict(record)


# --- Поиск ---------------------------------------------------------------

async def resolve_proxies(servers_id: int) -> list[ServerProxy]:
    """
    Прокси-цепочка сервера. На каждом хопе выбирается случайное ребро;
    цепочка обрывается, если хоп возвращается на сервер, уже стоящий в пути.
    """
    proxies = []
    visited = {servers_id}
    current = servers_id
    while True:
        proxy = await proxy_repo.get_random_proxy(current)
        if not proxy:
            break
        if proxy["id"] in visited:
            logger.warning(f"Цикл в прокси-цепочке сервера {servers_id} на сервере {proxy['id']}")
            break
        visited.add(proxy["id"])
        proxies.append(ServerProxy(**proxy))
        current = proxy["proxies_id"]
    return proxies


async def get(server, database: bool = False, return_proxies: bool = True,
              limited_columns: bool = False) -> Server | None:
    """Одна запись сервера; NotFoundError если нет, AmbiguousError если несколько"""
    if server is None:
        return None

    persist = False
    lookup = None

    if _is_record(server):
        domain = _field(server, "domain")
        if not domain:
            return None
        if _field(server, "id"):
            return server if isinstance(server, Server) else Server(**_as_dict(server))
        if _is_numeric(domain):
            rows = await server_repo.fetch_by_id(int(domain), database=database, limited=limited_columns)
        elif isinstance(domain, str):
            rows = await server_repo.fetch_by_domain(domain, seodomain=False, database=database,
                                                     limited=limited_columns)
        else:
            raise InvalidError(f"Домен сервера должен быть id или доменом, получено {type(domain).__name__}")
        lookup = domain

    elif not isinstance(server, (str, int)) or isinstance(server, bool):
        raise InvalidError(f"Неверно указан сервер: {server!r}")

    else:
        if isinstance(server, str) and server.startswith("+"):
            server = server[1:]
            persist = True
        lookup = server
        if _is_numeric(server):
            rows = await server_repo.fetch_by_id(int(server), database=database, limited=limited_columns)
        else:
            rows = await server_repo.fetch_by_domain(server, database=database, limited=limited_columns)

    if not rows:
        raise NotFoundError(f"Сервер {lookup} не существует")
    if len(rows) > 1:
        raise AmbiguousError(f"Домен {lookup} соответствует нескольким серверам, укажите точнее")

    row = rows[0]
    if _is_record(server):
        row = {**_as_dict(server), **row}
    if return_proxies:
        row["proxies"] = await resolve_proxies(row["id"])
    if persist:
        row["persist"] = True
    return Server(**row)


async def get_id(server) -> int | None:
    if not server:
        return None
    if _is_record(server) and _field(server, "id"):
        return _field(server, "id")
    if _is_numeric(server):
        return int(server)
    record = await get(server, return_proxies=False, limited_columns=True)
    return record.id if record else None


async def like(term):
    """Домен сервера, похожего на term (ipv4, domain, seodomain, связанные домены)"""
    if term == "" or term is None:
        # "" - локальный сервер, None - без сервера
        return term
    if _is_record(term):
        return term

    if _is_numeric(term):
        domain = await server_repo.get_domain(int(term))
        found = [domain] if domain is not None else []
    else:
        found = await server_repo.like_servers(term)

    if not found:
        found = await server_repo.like_linked_domains(str(term))
    if not found:
        raise NotFoundError(f"Сервер {term} не существует")
    if len(found) > 1:
        raise AmbiguousError(f"{term} соответствует нескольким серверам, укажите точнее")
    return found[0]


async def list_servers() -> list[dict]:
    return await server_repo.list_servers()


async def get_key(username: str) -> str | None:
    return await ssh_account_repo.get_key(username)


# --- Валидация и CRUD ----------------------------------------------------

async def resolve_ipv4(domain: str) -> list[str]:
    """IPv4-адреса домена через DNS (пустой список, если не резолвится)"""
    loop = asyncio.get_running_loop()
    try:
        _, _, addresses = await loop.run_in_executor(None, socket.gethostbyname_ex, domain)
    except (socket.gaierror, socket.herror):
        return []
    return addresses


def _split_domains(domains) -> list[str]:
    if isinstance(domains, str):
        domains = domains.split("\n")
    return [d.strip() for d in domains if d and d.strip()]


async def validate(data, structure_only: bool = False, password_strength: bool = False) -> ServerInput:
    """Проверить запись сервера; все ошибки собираются в один ValidationError"""
    server = data if isinstance(data, ServerInput) else ServerInput(**_as_dict(data))
    if structure_only:
        return server

    v = Validator()

    if password_strength:
        v.is_password(server.db_password, "Укажите надёжный пароль")

    if server.database_accounts_id:
        if not await reference_repo.database_account_exists(server.database_accounts_id):
            v.set_error("Указанный аккаунт БД не существует")
    else:
        server.database_accounts_id = None

    # Домен
    if v.is_not_empty(server.domain, "Укажите домен"):
        v.is_domain(server.domain, f"Домен {server.domain} неверен")
    if server.url:
        v.set_error(f"Указаны и домен {server.domain}, и URL {server.url}, укажите что-то одно")

    # Описание
    if not server.description:
        server.description = ""
    else:
        v.has_min_chars(server.description, 16, "Описание должно быть не короче 16 символов")
        v.has_max_chars(server.description, 2047, "Описание должно быть не длиннее 2047 символов")
        server.description = server.description.strip()

    # IPv4
    if server.ipv4:
        v.is_ip(server.ipv4, "Укажите корректный IP-адрес")
    elif is_domain(server.domain):
        addresses = await resolve_ipv4(server.domain)
        if len(addresses) == 1:
            server.ipv4 = addresses[0]
        elif addresses:
            server.ipv4 = None
            v.set_error("Не удалось автоматически определить IPv4 (несколько адресов), укажите IP-адрес")
        else:
            server.ipv4 = None

    # Порт
    if not server.port:
        server.port = settings.ssh_default_port
        logger.info(f"SSH порт не указан, используется порт по умолчанию {server.port}")
    if server.port < 1 or server.port > 65535:
        v.set_error(f"Порт {server.port} неверен")

    server.allow_sshd_modification = bool(server.allow_sshd_modification)

    # Список доменов сервера
    if server.domains:
        names = _split_domains(server.domains)
        for name in names:
            v.is_domain(name, f"Домен {name} неверен")

        # Дальше домены создаются в БД, поэтому неверные имена останавливают проверку здесь
        v.is_valid()

        for name in names:
            await domains_service.ensure(name)
        await domains_service.ensure(server.domain)
        server.domains = list(dict.fromkeys(names + [server.domain]))
    else:
        server.domains = [server.domain] if server.domain else []

    v.is_scalar(server.seoprovider, "Укажите корректного провайдера")
    v.is_scalar(server.seocustomer, "Укажите корректного клиента")
    v.is_scalar(server.ssh_account, "Укажите корректный SSH-аккаунт")
    v.is_valid()

    # Провайдер, клиент, SSH-аккаунт
    server.providers_id = None
    if server.seoprovider:
        server.providers_id = await reference_repo.get_provider_id(server.seoprovider)
        if not server.providers_id:
            v.set_error(f"Провайдер {server.seoprovider} не существует")

    server.customers_id = None
    if server.seocustomer:
        server.customers_id = await reference_repo.get_customer_id(server.seocustomer)
        if not server.customers_id:
            v.set_error(f"Клиент {server.seocustomer} не существует")

    server.ssh_accounts_id = None
    if server.ssh_account:
        server.ssh_accounts_id = await ssh_account_repo.get_active_id(server.ssh_account)
        if not server.ssh_accounts_id:
            v.set_error(f"SSH-аккаунт {server.ssh_account} не существует")

    # Уже существует?
    if server.domain and await server_repo.domain_taken(server.domain, server.id):
        v.set_error(f"Сервер с доменом {server.domain} уже существует")

    async def _seodomain_taken(candidate: str) -> bool:
        return await server_repo.seodomain_exists(candidate, server.id)

    server.seodomain = await seo.seo_unique(server.domain or "", _seodomain_taken)

    v.is_valid()
    return server


def _write_record(server: ServerInput) -> dict:
    record = server.model_dump()
    record["status"] = "testing" if server.ssh_accounts_id else None
    return record


async def insert(data) -> ServerInput:
    """Создать сервер; возвращает проверенную запись с id"""
    server = await validate(data)
    server.id = await server_repo.insert_server(_write_record(server))
    logger.info(f"Добавлен сервер {server.domain} с id {server.id}")

    if server.register_host:
        await known_hosts.add_known_host(server.domain, server.port)

    await update_domains(server, server.domains)
    return server


async def update(data) -> ServerInput:
    server = await validate(data)
    if not server.id:
        raise NotSpecifiedError("Не указан id обновляемого сервера")
    if not await server_repo.update_server(server.id, _write_record(server)):
        raise NotFoundError(f"Сервер с id {server.id} не существует")
    logger.info(f"Обновлён сервер {server.domain} с id {server.id}")
    await update_domains(server, server.domains)
    return server


async def erase(server) -> Server:
    """Удалить сервер вместе с отпечатками, связями доменов и рёбрами прокси"""
    record = await get(server, return_proxies=False)
    if record is None:
        raise NotSpecifiedError("Сервер не указан")

    await unregister_host(record)
    await remove_domain(record)
    await proxy_repo.delete_for_server(record.id)
    await server_repo.delete_server(record.id)
    logger.info(f"Удалён сервер {record.domain} с id {record.id}")
    return record


# --- Выполнение команд ---------------------------------------------------

async def execute(server, commands, *, vault=None, runner=None) -> list[str]:
    """
    Выполнить команду на сервере и вернуть строки вывода.

    Если у сервера есть только ssh_key, он выкладывается во временный
    identity-файл, который удаляется в любом случае, даже при ошибке.
    Ошибка удаления файла пишется в журнал и не заменяет исходную ошибку.
    """
    spec = CommandSpec.coerce(commands)
    vault = vault or default_vault
    runner = runner or _default_runner()
    loop = asyncio.get_running_loop()

    record = await get(server)
    if record is None:
        return await loop.run_in_executor(None, run_local, spec)
    record = record.model_copy()

    identity_file = None
    try:
        if not record.identity_file:
            if not record.ssh_key and not record.password:
                raise MissingCredentialsError(
                    f"У сервера {record.domain} нет identity-файла, SSH-ключа или пароля"
                )
            if record.ssh_key:
                identity_file = vault.create_identity_file(record)
                record.identity_file = identity_file

        return await loop.run_in_executor(None, runner.execute, record, spec)

    except RegistryError:
        raise
    except Exception as e:
        raise ExecutionFailedError(f"Не удалось выполнить команду на {record.domain}: {e}") from e
    finally:
        if identity_file:
            try:
                vault.remove_identity_file(identity_file)
            except Exception as f:
                logger.error(f"Не удалось удалить identity-файл {identity_file}: {f}")
                await system_logger.notify("servers", f, f"Не удалось удалить identity-файл для {record.domain}")


async def test(server) -> bool:
    """Проверить SSH-доступ: echo 1 должен вернуть 1"""
    record = await get(server, return_proxies=False)
    if record is None:
        raise NotSpecifiedError("Сервер не указан")

    await server_repo.set_status_by_id(record.id, "testing")
    output = await execute(server, CommandSpec(commands=["echo", ["1"]]))
    if not output or output[-1].strip() != "1":
        raise ExecutionFailedError(f"Не удалось подключиться по SSH к {record.domain}",
                                   output=output, code="failed-connect")
    await server_repo.set_status_by_id(record.id, None)
    return True


async def exec_on_all(callback, status: str | None = None) -> int:
    """callback(server) для каждого сервера со статусом status; ошибки не прерывают цикл"""
    rows = await server_repo.fetch_all(status)
    failed = []
    for row in rows:
        server = Server(**row)
        try:
            result = callback(server)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            failed.append(server.domain)
            logger.error(f"Ошибка обработки сервера {server.domain}: {e}")
            await system_logger.notify("servers", e, f"exec_on_all: сервер {server.domain}")
    if failed:
        logger.warning(f"exec_on_all: ошибки на {len(failed)} из {len(rows)} серверов: {', '.join(failed)}")
    return len(rows)


async def _host_domains(server) -> tuple[Server, list[str]]:
    record = await get(server, return_proxies=False)
    if record is None:
        raise NotSpecifiedError("Сервер не указан")
    linked = [d["domain"] for d in await domain_repo.list_server_domains(record.id)]
    return record, list(dict.fromkeys([record.domain] + linked))


async def register_host(server) -> int:
    """Добавить отпечатки хоста для всех доменов сервера"""
    record, domains = await _host_domains(server)
    count = 0
    for domain in domains:
        try:
            count += await known_hosts.add_known_host(domain, record.port)
        except RegistryError as e:
            logger.error(f"Не удалось зарегистрировать {domain}:{record.port}: {e}")
            await system_logger.notify("known_hosts", e)
    return count


async def unregister_host(server) -> int:
    """Удалить отпечатки хоста для всех доменов сервера"""
    record, domains = await _host_domains(server)
    count = 0
    for domain in domains:
        count += await known_hosts.remove_known_host(domain, record.port)
    return count


async def detect_os(server) -> dict:
    """Определить ОС: {type, group, name, version}"""
    version = "\n".join(await execute(server, CommandSpec(commands=["cat", ["/proc/version"]])))
    if not version.strip():
        raise UnknownError(f"/proc/version на {server} пуст")

    match = _OS_GROUP_RE.search(version)
    if not match:
        raise UnknownError("Не удалось определить семейство ОС")

    group = match.group(0).strip().lower()
    if group in ("debian", "ubuntu"):
        release_file = "/etc/issue"
    elif group == "red hat":
        group = "redhat"
        release_file = "/etc/redhat-release"
    else:
        raise InvalidError(f"Неподдерживаемое семейство ОС {group}")

    release = "\n".join(await execute(server, CommandSpec(commands=["cat", [release_file]])))
    if not release.strip():
        raise NotFoundError(f"Нет данных о релизе для семейства {group}")

    name = _OS_NAME_RE.search(release)
    if not name:
        raise NotFoundError(f"Не удалось определить название ОС семейства {group}")

    number = _OS_VERSION_RE.search(release)
    if not number:
        raise NotFoundError(f"Не удалось определить версию ОС {name.group(0).lower()}")

    return {
        "type": "linux",
        "group": group,
        "name": name.group(0).lower(),
        "version": number.group(0),
    }


async def get_public_ip(server) -> str | None:
    output = await execute(
        server,
        CommandSpec(commands=["dig", ["+short", "myip.opendns.com", "@resolver1.opendns.com"]]),
    )
    return output[0] if output else None


async def check_ssh_access(server, account: str, password: str | None = None) -> bool:
    """Есть ли у аккаунта SSH-доступ к серверу"""
    record = await get(server)
    if record is None:
        raise NotSpecifiedError("Сервер не указан")
    record = record.model_copy()
    record.identity_file = None

    if password:
        record.username = account
        record.password = password
        record.ssh_key = None
    else:
        ssh_account = await ssh_account_repo.get_account_with_key(account)
        if not ssh_account:
            raise NotFoundError(f"SSH-аккаунт {account} не существует")
        record.username = ssh_account["username"]
        record.ssh_key = ssh_account["ssh_key"]
        record.password = None

    try:
        output = await execute(record, CommandSpec(commands=["echo", ["1"]]))
    except AccessDeniedError:
        return False
    return bool(output) and output[-1].strip() == "1"


# --- Прокси-цепочки ------------------------------------------------------

async def get_proxy(servers_id: int) -> dict | None:
    return await proxy_repo.get_random_proxy(servers_id)


async def list_proxies(servers_id: int) -> list[dict]:
    return await proxy_repo.list_proxies(servers_id)


async def add_ssh_proxy(servers_id: int, proxies_id: int) -> int:
    if not servers_id:
        raise NotSpecifiedError("Не указан сервер")
    if not proxies_id:
        raise NotSpecifiedError("Не указан прокси-сервер")
    if int(servers_id) == int(proxies_id):
        raise InvalidError(f"Сервер {servers_id} не может быть прокси для самого себя")
    return await proxy_repo.add_proxy(int(servers_id), int(proxies_id))


async def update_ssh_proxy(servers_id: int, old_proxies_id: int, new_proxies_id: int) -> int:
    """Заменить прокси на ребре; если ребра нет, оно создаётся"""
    if not servers_id:
        raise NotSpecifiedError("Не указан сервер")
    if not old_proxies_id:
        raise NotSpecifiedError("Не указан текущий прокси-сервер")
    if not new_proxies_id:
        raise NotSpecifiedError("Не указан новый прокси-сервер")
    if int(servers_id) == int(new_proxies_id):
        raise InvalidError(f"Сервер {servers_id} не может быть прокси для самого себя")

    edge_id = await proxy_repo.find_edge(int(servers_id), int(old_proxies_id))
    if edge_id:
        await proxy_repo.update_edge(edge_id, int(new_proxies_id))
        return edge_id
    return await add_ssh_proxy(servers_id, new_proxies_id)


async def delete_ssh_proxy(servers_id: int, proxies_id: int) -> bool:
    return await proxy_repo.delete_proxy(int(servers_id), int(proxies_id)) > 0


# --- Домены сервера ------------------------------------------------------

async def update_domains(server, domains=None) -> int:
    """
    Заменить набор доменов сервера. Неизвестные домены создаются
    с клиентом и провайдером сервера.
    """
    servers_id = await get_id(server)
    if not domains:
        await domain_repo.unlink(servers_id)
        return 0

    customers_id = _field(server, "customers_id") if _is_record(server) else None
    providers_id = _field(server, "providers_id") if _is_record(server) else None

    ids = []
    for domain in _split_domains(domains) if isinstance(domains, str) else domains:
        domains_id = await domains_service.get_id(domain)
        if not domains_id:
            created = await domains_service.insert(domain, customers_id=customers_id,
                                                   providers_id=providers_id)
            domains_id = created["id"]
        ids.append(domains_id)
    return await domain_repo.replace_links(servers_id, ids)


async def add_domain(server, domain) -> bool:
    """False, если домен уже связан с сервером"""
    servers_id = await get_id(server)
    domains_id = await domains_service.get_id(domain)
    if not domains_id:
        raise NotFoundError(f"Домен {domain} не существует")
    if await domain_repo.link_exists(servers_id, domains_id):
        return False
    await domain_repo.link(servers_id, domains_id)
    return True


async def remove_domain(server, domain=None) -> int:
    """Без domain удаляются все связи сервера; возвращает число удалённых связей"""
    if not domain:
        if not server:
            raise NotSpecifiedError("Не указаны ни сервер, ни домен")
        return await domain_repo.unlink(await get_id(server))

    servers_id = await get_id(server)
    domains_id = await domains_service.get_id(domain)
    if servers_id:
        return await domain_repo.unlink(servers_id, domains_id)
    if domains_id:
        return await domain_repo.unlink_domain(domains_id)
    raise NotSpecifiedError("Не указаны ни сервер, ни домен")


async def list_domains(server) -> list[dict]:
    return await domain_repo.list_server_domains(await get_id(server))
