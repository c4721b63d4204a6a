# serverhub/services/known_hosts.py
"""
Отпечатки SSH-хостов: таблица ssh_fingerprints и файл known_hosts.

Строка файла: "[domain]:port algorithm base64key". Если для хоста уже есть
отпечатки в БД, каждый новый просканированный ключ обязан с ними совпасть.
"""
import asyncio
import os
import logging
from pathlib import Path
from serverhub.config import settings
from serverhub.database.repositories import fingerprint_repo, server_repo
from serverhub.exceptions import HostVerificationError, NotFoundError, NotSpecifiedError
from serverhub.services import seo

logger = logging.getLogger(__name__)


def get_port(port=None) -> int:
    """Порт SSH или порт по умолчанию"""
    if port:
        port = int(port)
        if port < 1 or port > 65535:
            raise NotSpecifiedError(f"Неверный SSH порт {port}")
        return port
    return settings.ssh_default_port


def format_line(entry: dict) -> str:
    return f"[{entry['domain']}]:{entry['port']} {entry['algorithm']} {entry['fingerprint']}"


class KnownHosts:
    def __init__(self, known_hosts_file: Path | str | None = None, runner=None):
        self.known_hosts_file = Path(known_hosts_file or settings.known_hosts_file)
        self._runner = runner

    @property
    def runner(self):
        if self._runner is None:
            from serverhub.services.ssh import runner
            self._runner = runner
        return self._runner

    def _ensure_file(self):
        self.known_hosts_file.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
        if not self.known_hosts_file.exists():
            self.known_hosts_file.touch(mode=0o640)

    def _read_lines(self) -> list[str]:
        self._ensure_file()
        with open(self.known_hosts_file) as f:
            return f.readlines()

    def append_fingerprint(self, entry: dict) -> bool:
        """Дописать отпечаток в known_hosts. False, если строка уже есть"""
        line = format_line(entry)
        if any(existing.strip() == line for existing in self._read_lines()):
            logger.debug(f"Отпечаток для {entry['domain']} уже есть в known_hosts")
            return False
        with open(self.known_hosts_file, "a") as f:
            f.write(line + "\n")
        logger.info(f"Добавлен отпечаток {entry['algorithm']} для {entry['domain']} в known_hosts")
        return True

    def remove_lines(self, domain: str, port: int | None = None) -> int:
        """Переписать known_hosts без строк хоста. Возвращает число удалённых строк"""
        prefix = f"[{domain}]:{port} " if port else f"[{domain}]:"
        kept, removed = [], 0
        for line in self._read_lines():
            if line.startswith(prefix):
                removed += 1
            else:
                kept.append(line)

        tmp = self.known_hosts_file.with_name(self.known_hosts_file.name + "~update")
        with open(tmp, "w") as f:
            f.writelines(kept)
        os.chmod(tmp, 0o640)
        os.replace(tmp, self.known_hosts_file)
        return removed

    def count_lines(self, domain: str, port: int) -> int:
        prefix = f"[{domain}]:{port} "
        return sum(1 for line in self._read_lines() if line.startswith(prefix))

    async def get_fingerprints(self, domain: str, port=None) -> list[dict]:
        if not domain:
            raise NotSpecifiedError("Домен не указан")
        port = get_port(port)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.runner.scan_host_keys, domain, port)

    async def add_known_host(self, domain: str, port=None) -> int:
        """Зарегистрировать ключи хоста в БД и known_hosts. Возвращает число новых строк"""
        port = get_port(port)
        fingerprints = await self.get_fingerprints(domain, port)
        if not fingerprints:
            raise NotFoundError(f"Не найдено публичных ключей для {domain}")

        registered = await fingerprint_repo.list_for_host(domain, port)
        if registered:
            known = {r["fingerprint"]: r["algorithm"] for r in registered}
            for entry in fingerprints:
                if entry["fingerprint"] not in known:
                    raise HostVerificationError(
                        f"{domain} вернул отпечаток, не совпадающий с зарегистрированными"
                    )
                if known[entry["fingerprint"]] != entry["algorithm"]:
                    raise HostVerificationError(
                        f"{domain} вернул зарегистрированный отпечаток с другим алгоритмом "
                        f"{entry['algorithm']}"
                    )
        else:
            rows = await server_repo.fetch_by_domain(domain, seodomain=False, limited=True)
            servers_id = rows[0]["id"] if len(rows) == 1 else None
            seodomain = seo.seo_string(domain)
            for entry in fingerprints:
                await fingerprint_repo.insert(
                    servers_id, entry["domain"], seodomain, entry["port"],
                    entry["algorithm"], entry["fingerprint"],
                )
            if servers_id:
                logger.info(f"Добавлено {len(fingerprints)} отпечатков для {domain} (сервер id={servers_id})")
            else:
                logger.info(f"Добавлено {len(fingerprints)} отпечатков для незарегистрированного {domain}")

        count = sum(1 for entry in fingerprints if self.append_fingerprint(entry))
        await server_repo.set_status(domain, None)
        return count

    async def remove_known_host(self, domain: str, port=None) -> int:
        if not domain:
            raise NotSpecifiedError("Домен не указан")
        port = get_port(port) if port else None
        await fingerprint_repo.delete_for_host(domain, port)
        return self.remove_lines(domain, port)

    async def rebuild_known_hosts(self, clear: bool = False) -> int:
        """Пересобрать known_hosts из таблицы ssh_fingerprints"""
        if clear and self.known_hosts_file.exists():
            logger.info(f"Удаление файла {self.known_hosts_file}")
            self.known_hosts_file.unlink()

        count = 0
        for entry in await fingerprint_repo.list_all():
            try:
                if self.append_fingerprint(entry):
                    count += 1
            except OSError as e:
                logger.error(f"Не удалось записать отпечаток {entry['domain']}: {e}")
        logger.info(f"known_hosts пересобран, добавлено {count} строк")
        return count

    async def host_is_known(self, domain: str, port=None, auto_register: bool = True):
        """
        True, если хост есть в known_hosts. Если он есть только в БД и
        auto_register включён, ключи добавляются и возвращается число строк.
        """
        port = get_port(port)
        if self.count_lines(domain, port):
            return True
        registered = await fingerprint_repo.list_for_host(domain, port)
        if not registered or not auto_register:
            return False
        logger.warning(f"Хост {domain}:{port} есть в ssh_fingerprints, но не в known_hosts. Добавляем")
        return await self.add_known_host(domain, port)


known_hosts = KnownHosts()
