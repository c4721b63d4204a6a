# serverhub/services/ssh.py
"""
SSH-выполнение команд через paramiko.

Прокси-цепочка строится из direct-tcpip каналов: клиент подключается к первому
хопу, через него открывает канал к следующему и так до целевого сервера.
На каждом хопе используются те же username и ключ/пароль, что и для цели.
"""
import select
import socket
import subprocess
import threading
import time
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Optional

import paramiko
from paramiko.hostkeys import HostKeyEntry

from serverhub.config import settings
from serverhub.exceptions import (
    AccessDeniedError,
    ExecutionFailedError,
    HostVerificationError,
    InvalidError,
)
from serverhub.models import CommandSpec

logger = logging.getLogger(__name__)

# Типы ключей в порядке перебора при загрузке identity-файла
_KEY_CLASSES = [paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey]

# Группы алгоритмов для сканирования ключей хоста
_SCAN_KEY_TYPES = [
    ["ssh-ed25519"],
    ["ecdsa-sha2-nistp256", "ecdsa-sha2-nistp384", "ecdsa-sha2-nistp521"],
    ["rsa-sha2-512", "rsa-sha2-256", "ssh-rsa"],
]


def _get(server, field, default=None):
    if isinstance(server, dict):
        value = server.get(field, default)
    else:
        value = getattr(server, field, default)
    return default if value is None else value


class ConnectionCache:
    """
    Кэш постоянных SSH-соединений: FIFO с ограничением размера и TTL.
    Значение: список клиентов цепочки, последний из них подключён к цели.
    """

    def __init__(self, max_size: int | None = None, ttl: int | None = None):
        self.max_size = max_size or settings.ssh_persist_max
        self.ttl = ttl or settings.ssh_persist_ttl
        self.connections: OrderedDict[str, dict] = OrderedDict()
        self.lock = threading.Lock()

    @staticmethod
    def _close(key: str, clients: list):
        for client in reversed(clients):
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Ошибка закрытия SSH-соединения {key}: {e}")

    def clear_expired(self):
        """Закрыть и удалить соединения старше TTL"""
        current_time = time.time()
        with self.lock:
            expired = [key for key, value in self.connections.items()
                       if current_time - value["timestamp"] > self.ttl]
            removed = [(key, self.connections.pop(key)["clients"]) for key in expired]
        for key, clients in removed:
            logger.debug(f"Удаление устаревшего SSH-соединения из кэша: {key}")
            self._close(key, clients)

    def get(self, key: str) -> Optional[list]:
        self.clear_expired()
        with self.lock:
            entry = self.connections.get(key)
            if not entry:
                return None
            transport = entry["clients"][-1].get_transport()
            if transport is None or not transport.is_active():
                del self.connections[key]
                dead = entry["clients"]
            else:
                return entry["clients"]
        logger.debug(f"SSH-соединение {key} в кэше неактивно, переподключение")
        self._close(key, dead)
        return None

    def put(self, key: str, clients: list):
        evicted = []
        with self.lock:
            if key in self.connections:
                old = self.connections.pop(key)["clients"]
                if old is not clients:
                    evicted.append((key, old))
            while len(self.connections) >= self.max_size:
                evicted.append(self.connections.popitem(last=False))
            self.connections[key] = {"clients": clients, "timestamp": time.time()}
        for old_key, old in evicted:
            if isinstance(old, dict):
                old = old["clients"]
            logger.debug(f"Вытеснение SSH-соединения из кэша: {old_key}")
            self._close(old_key, old)

    def close_all(self):
        with self.lock:
            items = list(self.connections.items())
            self.connections.clear()
        logger.info(f"Закрытие всех постоянных SSH-соединений ({len(items)})")
        for key, entry in items:
            self._close(key, entry["clients"])

    def __len__(self):
        with self.lock:
            return len(self.connections)


class _RejectUnknownHost(paramiko.MissingHostKeyPolicy):
    def missing_host_key(self, client, hostname, key):
        raise HostVerificationError(
            f"Ключ хоста {hostname} ({key.get_name()}) не найден в known_hosts"
        )


def run_local(spec: CommandSpec) -> list[str]:
    """Выполнить команду локально (сервер не указан)"""
    command = spec.build()
    logger.debug(f"Локальное выполнение: {command}")
    try:
        result = subprocess.run(
            command, shell=True, capture_output=True, text=True, timeout=spec.timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise ExecutionFailedError(f"Команда превысила таймаут {spec.timeout}с") from e

    output = result.stdout.splitlines()
    if result.returncode not in spec.ok_exitcodes:
        raise ExecutionFailedError(
            f"Команда завершилась с кодом {result.returncode}: {result.stderr.strip()}",
            output=output, exit_code=result.returncode,
        )
    return output


class PortForward:
    """
    Локальный порт 127.0.0.1:local_port. Каждое входящее соединение уходит
    через direct-tcpip канал последнего клиента цепочки на remote_host:remote_port.
    """

    def __init__(self, clients: list, remote_host: str, remote_port: int, source_port: int = 0):
        self.clients = clients
        self.remote = (remote_host, int(remote_port))
        self.closed = False

        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.listener.bind(("127.0.0.1", int(source_port or 0)))
        except OSError as e:
            self.listener.close()
            raise InvalidError(f"Локальный порт {source_port} для туннеля недоступен: {e}") from e
        self.listener.listen(16)
        self.listener.settimeout(0.5)
        self.local_port = self.listener.getsockname()[1]

        self.thread = threading.Thread(target=self._serve, name=f"tunnel-{self.local_port}", daemon=True)
        self.thread.start()
        logger.info(f"Туннель 127.0.0.1:{self.local_port} -> {remote_host}:{remote_port} открыт")

    @property
    def is_active(self) -> bool:
        if self.closed:
            return False
        transport = self.clients[-1].get_transport()
        return transport is not None and transport.is_active()

    def _serve(self):
        while not self.closed:
            try:
                sock, peer = self.listener.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            sock.settimeout(None)

            transport = self.clients[-1].get_transport()
            try:
                if transport is None:
                    raise paramiko.SSHException("SSH-соединение закрыто")
                channel = transport.open_channel("direct-tcpip", self.remote, peer)
            except (paramiko.SSHException, OSError) as e:
                logger.error(f"Туннель {self.local_port}: не удалось открыть канал к {self.remote[0]}:{self.remote[1]}: {e}")
                sock.close()
                continue

            threading.Thread(target=self._pipe, args=(sock, channel), daemon=True).start()

    @staticmethod
    def _pipe(sock, channel):
        try:
            while True:
                readable, _, _ = select.select([sock, channel], [], [], 1.0)
                if sock in readable:
                    data = sock.recv(32768)
                    if not data:
                        break
                    channel.sendall(data)
                if channel in readable:
                    data = channel.recv(32768)
                    if not data:
                        break
                    sock.sendall(data)
        except OSError as e:
            logger.debug(f"Соединение туннеля прервано: {e}")
        finally:
            channel.close()
            sock.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.listener.close()
        for client in reversed(self.clients):
            client.close()
        logger.info(f"Туннель 127.0.0.1:{self.local_port} закрыт")


class SSHRunner:
    def __init__(self, known_hosts_file: Path | str | None = None,
                 connect_timeout: int | None = None,
                 connection_cache: ConnectionCache | None = None):
        self.known_hosts_file = Path(known_hosts_file or settings.known_hosts_file)
        self.connect_timeout = connect_timeout or settings.ssh_connect_timeout
        self.connection_cache = connection_cache or ConnectionCache()

    @staticmethod
    def load_private_key(identity_file: str) -> paramiko.PKey:
        """Загрузка ключа: пробуем поддерживаемые типы по очереди"""
        for key_class in _KEY_CLASSES:
            try:
                return key_class.from_private_key_file(identity_file)
            except paramiko.SSHException:
                continue
        raise InvalidError("Не удалось загрузить приватный ключ из identity-файла")

    def _load_known_hosts(self, client: paramiko.SSHClient):
        """
        known_hosts хранит записи вида [domain]:port. paramiko для порта 22
        ищет ключ по голому имени хоста, поэтому такие записи дублируются.
        """
        if not self.known_hosts_file.exists():
            return
        host_keys = client.get_host_keys()
        with open(self.known_hosts_file) as f:
            for line in f:
                try:
                    entry = HostKeyEntry.from_line(line)
                except paramiko.SSHException:
                    continue
                if entry is None:
                    continue
                for hostname in entry.hostnames:
                    host_keys.add(hostname, entry.key.get_name(), entry.key)
                    if hostname.startswith("[") and hostname.endswith("]:22"):
                        host_keys.add(hostname[1:-4], entry.key.get_name(), entry.key)

    def _new_client(self, hostkey_check: bool) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        if hostkey_check:
            self._load_known_hosts(client)
            client.set_missing_host_key_policy(_RejectUnknownHost())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        return client

    def _connect(self, server, hostkey_check: bool) -> list:
        """Подключение к серверу через всю прокси-цепочку"""
        # proxies[0] соседствует с целью, последний прокси: первый хоп
        hops = [(_get(p, "domain"), _get(p, "port", 22))
                for p in reversed(_get(server, "proxies", []))]
        hops.append((_get(server, "domain"), _get(server, "port", settings.ssh_default_port)))

        connect_kwargs = {
            "username": _get(server, "username"),
            "timeout": self.connect_timeout,
            "banner_timeout": self.connect_timeout,
            "auth_timeout": self.connect_timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        identity_file = _get(server, "identity_file")
        if identity_file:
            connect_kwargs["pkey"] = self.load_private_key(identity_file)
        else:
            connect_kwargs["password"] = _get(server, "password")

        clients = []
        sock = None
        try:
            for index, (host, port) in enumerate(hops):
                client = self._new_client(hostkey_check)
                logger.debug(f"SSH подключение к {host}:{port} (хоп {index + 1}/{len(hops)})")
                client.connect(hostname=host, port=int(port), sock=sock, **connect_kwargs)
                clients.append(client)
                if index + 1 < len(hops):
                    next_host, next_port = hops[index + 1]
                    sock = client.get_transport().open_channel(
                        "direct-tcpip", (next_host, int(next_port)), ("127.0.0.1", 0),
                        timeout=self.connect_timeout,
                    )
        except Exception:
            for client in reversed(clients):
                client.close()
            raise
        return clients

    def execute(self, server, spec: CommandSpec) -> list[str]:
        """Выполнить команду на сервере и вернуть строки stdout"""
        spec = CommandSpec.coerce(spec)
        command = spec.build()
        domain = _get(server, "domain")
        port = _get(server, "port", settings.ssh_default_port)
        key = f"{_get(server, 'username')}@{domain}:{port}"
        persist = bool(_get(server, "persist", False))
        hostkey_check = spec.hostkey_check and _get(server, "hostkey_check", True)

        clients = None
        completed = False
        try:
            if persist:
                clients = self.connection_cache.get(key)
            if not clients:
                clients = self._connect(server, hostkey_check)

            logger.debug(f"SSH {key}: {command}")
            stdin, stdout, stderr = clients[-1].exec_command(command, timeout=spec.timeout)
            output = stdout.read().decode(errors="replace").splitlines()
            error_output = stderr.read().decode(errors="replace").strip()
            exit_code = stdout.channel.recv_exit_status()
            completed = True

        except (HostVerificationError, InvalidError):
            raise
        except paramiko.BadHostKeyException as e:
            raise HostVerificationError(f"Ключ хоста {domain} не совпадает с known_hosts") from e
        except paramiko.AuthenticationException as e:
            logger.error(f"SSH ошибка аутентификации для {key}")
            raise AccessDeniedError(f"Доступ к {key} запрещён") from e
        except socket.timeout as e:
            logger.error(f"SSH таймаут для {key}")
            raise ExecutionFailedError(f"Таймаут SSH для {key}") from e
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"SSH ошибка для {key}: {e}")
            raise ExecutionFailedError(f"SSH ошибка для {key}: {e}") from e
        finally:
            if clients and not (persist and completed):
                for client in reversed(clients):
                    client.close()

        if persist:
            self.connection_cache.put(key, clients)

        if exit_code not in spec.ok_exitcodes:
            if "permission denied" in error_output.lower() and not error_output.lower().startswith("bash:"):
                raise AccessDeniedError(f"Доступ к {key} запрещён: {error_output}")
            raise ExecutionFailedError(
                f"Команда на {key} завершилась с кодом {exit_code}: {error_output}",
                output=output, exit_code=exit_code,
            )
        return output

    def open_tunnel(self, server, remote_host: str, remote_port: int,
                    source_port: int = 0, hostkey_check: bool = True) -> PortForward:
        """Локальный проброс порта через сервер (и его прокси-цепочку)"""
        domain = _get(server, "domain")
        try:
            clients = self._connect(server, hostkey_check and _get(server, "hostkey_check", True))
        except paramiko.BadHostKeyException as e:
            raise HostVerificationError(f"Ключ хоста {domain} не совпадает с known_hosts") from e
        except paramiko.AuthenticationException as e:
            raise AccessDeniedError(f"Доступ к {domain} для туннеля запрещён") from e
        except (paramiko.SSHException, OSError) as e:
            raise ExecutionFailedError(f"Не удалось открыть туннель через {domain}: {e}") from e

        try:
            return PortForward(clients, remote_host, remote_port, source_port)
        except Exception:
            for client in reversed(clients):
                client.close()
            raise

    def scan_host_keys(self, domain: str, port: int) -> list[dict]:
        """Публичные ключи хоста (аналог ssh-keyscan)"""
        entries = []
        for key_types in _SCAN_KEY_TYPES:
            transport = None
            try:
                sock = socket.create_connection((domain, port), timeout=self.connect_timeout)
                transport = paramiko.Transport(sock)
                transport.get_security_options().key_types = key_types
                transport.start_client(timeout=self.connect_timeout)
                key = transport.get_remote_server_key()
                entries.append({
                    "domain": domain,
                    "port": port,
                    "algorithm": key.get_name(),
                    "fingerprint": key.get_base64(),
                })
            except paramiko.SSHException:
                # сервер не поддерживает этот тип ключа
                continue
            except OSError as e:
                raise ExecutionFailedError(f"Не удалось подключиться к {domain}:{port}: {e}") from e
            finally:
                if transport is not None:
                    transport.close()
        return entries


connection_cache = ConnectionCache()
runner = SSHRunner(connection_cache=connection_cache)
