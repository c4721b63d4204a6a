# serverhub/cli.py
"""
Командная строка реестра.

    python -m serverhub.cli servers list
    python -m serverhub.cli servers exec +web1.example.com "uptime"
    python -m serverhub.cli proxies add 12 7
    python -m serverhub.cli known-hosts rebuild --clear
"""
import argparse
import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path.cwd() / ".env")

from serverhub.auth import hash_password
from serverhub.config import settings, LOG_FORMAT
from serverhub.database import local_db
from serverhub.database.repositories import user_repo
from serverhub.exceptions import ExecutionFailedError, RegistryError, ValidationError
from serverhub.services import servers
from serverhub.services.known_hosts import known_hosts
from serverhub.services.ssh import connection_cache

logger = logging.getLogger(__name__)


def _print(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def _servers(args):
    if args.action == "list":
        for row in await servers.list_servers():
            print(f"{row['id']:>5}  {row['domain'] or '(local)'}")
    elif args.action == "show":
        _print((await servers.get(args.server)).public_dict())
    elif args.action == "exec":
        for line in await servers.execute(args.server, " ".join(args.command)):
            print(line)
    elif args.action == "test":
        await servers.test(args.server)
        print(f"{args.server}: ok")
    elif args.action == "erase":
        record = await servers.erase(args.server)
        print(f"Сервер {record.domain} (id={record.id}) удалён")


async def _proxies(args):
    servers_id = await servers.get_id(args.server)
    if args.action == "list":
        _print(await servers.list_proxies(servers_id))
    elif args.action == "add":
        edge_id = await servers.add_ssh_proxy(servers_id, await servers.get_id(args.proxy))
        print(f"Добавлено ребро {edge_id}")
    elif args.action == "delete":
        deleted = await servers.delete_ssh_proxy(servers_id, await servers.get_id(args.proxy))
        print("Удалено" if deleted else "Ребро не найдено")


async def _known_hosts(args):
    if args.action == "add":
        print(f"Добавлено строк: {await known_hosts.add_known_host(args.domain, args.port)}")
    elif args.action == "remove":
        print(f"Удалено строк: {await known_hosts.remove_known_host(args.domain, args.port)}")
    elif args.action == "rebuild":
        print(f"Добавлено строк: {await known_hosts.rebuild_known_hosts(clear=args.clear)}")


async def _users(args):
    password = getpass.getpass(f"Пароль для {args.login}: ")
    if not password:
        raise ValidationError(["Пустой пароль"])
    await user_repo.create_user(args.login, hash_password(password), args.role)
    print(f"Пользователь {args.login} создан")


async def _init_db(args):
    print("Схема БД проверена/создана")


HANDLERS = {
    "servers": _servers,
    "proxies": _proxies,
    "known-hosts": _known_hosts,
    "users": _users,
    "init-db": _init_db,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="serverhub", description="Server registry")
    sub = parser.add_subparsers(dest="group", required=True)

    p = sub.add_parser("servers")
    actions = p.add_subparsers(dest="action", required=True)
    actions.add_parser("list")
    for name in ("show", "test", "erase"):
        actions.add_parser(name).add_argument("server")
    p_exec = actions.add_parser("exec")
    p_exec.add_argument("server", help="id, домен, seodomain; '+' в начале - постоянное соединение")
    p_exec.add_argument("command", nargs="+")

    p = sub.add_parser("proxies")
    actions = p.add_subparsers(dest="action", required=True)
    actions.add_parser("list").add_argument("server")
    for name in ("add", "delete"):
        p_edge = actions.add_parser(name)
        p_edge.add_argument("server")
        p_edge.add_argument("proxy")

    p = sub.add_parser("known-hosts")
    actions = p.add_subparsers(dest="action", required=True)
    for name in ("add", "remove"):
        p_host = actions.add_parser(name)
        p_host.add_argument("domain")
        p_host.add_argument("--port", type=int)
    actions.add_parser("rebuild").add_argument("--clear", action="store_true")

    p = sub.add_parser("users")
    actions = p.add_subparsers(dest="action", required=True)
    p_create = actions.add_parser("create")
    p_create.add_argument("login")
    p_create.add_argument("--role", default="admin", choices=["admin", "operator", "viewer"])

    sub.add_parser("init-db")
    return parser


async def run(args) -> int:
    await local_db.init_pool()
    try:
        await HANDLERS[args.group](args)
        return 0
    except ValidationError as e:
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
        return 1
    except ExecutionFailedError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        for line in e.output:
            print(line, file=sys.stderr)
        return 1
    except RegistryError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    finally:
        connection_cache.close_all()
        await local_db.close_pool()


def main(argv=None) -> int:
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
