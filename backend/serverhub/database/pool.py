# serverhub/database/pool.py
import asyncio
import psycopg2
from psycopg2 import pool
import threading
import logging
from contextlib import contextmanager
from typing import Dict, Optional
from serverhub.config import POOL_CONFIGS
from serverhub.exceptions import MissingCredentialsError, NotFoundError, NotSpecifiedError
from serverhub.models import Connector, Server
from serverhub.services.identity import vault as default_vault

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """
    Именованные коннекторы к внешним БД и их пулы psycopg2.
    Пул создаётся при первом запросе соединения. Коннектор с ssh_tunnel
    подключается через локальный проброс порта, который открывается вместе
    с пулом и переоткрывается, если SSH-соединение оборвалось.
    """

    def __init__(self, pool_configs: dict | None = None, runner=None, vault=None):
        self.pool_configs = pool_configs or POOL_CONFIGS
        self.connectors: Dict[str, Connector] = {}
        self.pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
        self.tunnels: Dict[str, object] = {}
        self.tunnel_servers: Dict[str, Server] = {}
        self.runner = runner
        self.vault = vault or default_vault
        self.lock = threading.Lock()

    def _runner(self):
        if self.runner is None:
            from serverhub.services.ssh import runner
            return runner
        return self.runner

    def make_connector(self, name: str, host: str, user: str, password: str | None = None,
                       database: str = "postgres", port: int = 5432,
                       profile: str = "default", ssh_tunnel=None) -> Connector:
        """Зарегистрировать коннектор. Существующий с тем же именем заменяется"""
        if not name:
            raise NotSpecifiedError("Не указано имя коннектора")
        config = self.pool_configs.get(profile, self.pool_configs["default"])
        connector = Connector(
            name=name, host=host, port=port, user=user, password=password,
            database=database, minconn=config["minconn"], maxconn=config["maxconn"],
            ssh_tunnel=ssh_tunnel,
        )
        self.close(name)
        with self.lock:
            self.connectors[name] = connector
            self.tunnel_servers.pop(name, None)
        tunnel = f" через туннель {connector.ssh_tunnel.server}" if connector.ssh_tunnel else ""
        logger.info(f"Коннектор {name} зарегистрирован ({host}:{port}/{database}){tunnel}")
        return connector

    def get_connector(self, name: str) -> Connector:
        with self.lock:
            connector = self.connectors.get(name)
        if connector is None:
            raise NotFoundError(f"Коннектор {name} не существует")
        return connector

    def ensure_connector(self, connector) -> Connector:
        """Коннектор по имени, модели или словарю параметров"""
        if isinstance(connector, Connector):
            with self.lock:
                self.connectors.setdefault(connector.name, connector)
            return connector
        if isinstance(connector, dict):
            name = connector.get("name")
            with self.lock:
                existing = self.connectors.get(name)
            if existing:
                return existing
            return self.make_connector(**connector)
        return self.get_connector(connector)

    async def connector_for_server(self, server, database: str = "postgres",
                                   ssh_tunnel: bool = False) -> Connector:
        """
        Коннектор к БД сервера на основе его аккаунта БД.
        С ssh_tunnel=True БД доступна через туннель к 127.0.0.1 самого сервера.
        """
        from serverhub.services import servers

        record = await servers.get(server, database=True, return_proxies=ssh_tunnel)
        if record is None:
            raise NotSpecifiedError("Сервер не указан")
        if not record.db_username:
            raise MissingCredentialsError(f"У сервера {record.domain} нет аккаунта БД")
        name = f"{record.seodomain or record.domain}:{database}"
        with self.lock:
            existing = self.connectors.get(name)
        if existing:
            return existing

        tunnel = {"server": record.id, "hostname": "127.0.0.1"} if ssh_tunnel else None
        connector = self.make_connector(
            name, host=record.ipv4 or record.domain, user=record.db_username,
            password=record.db_password, database=database, ssh_tunnel=tunnel,
        )
        if ssh_tunnel:
            with self.lock:
                self.tunnel_servers[name] = record
        return connector

    async def open_tunnel(self, name: str) -> int:
        """
        Загрузить сервер туннеля из реестра и открыть проброс порта.
        Возвращает локальный порт.
        """
        from serverhub.services import servers

        connector = self.get_connector(name)
        if not connector.ssh_tunnel or not connector.ssh_tunnel.required:
            raise NotSpecifiedError(f"Коннектор {name} не использует SSH-туннель")

        record = await servers.get(connector.ssh_tunnel.server)
        if record is None:
            raise NotSpecifiedError(f"Не указан сервер туннеля коннектора {name}")
        with self.lock:
            self.tunnel_servers[name] = record

        loop = asyncio.get_running_loop()
        forward = await loop.run_in_executor(None, self._locked_tunnel, name, connector)
        return forward.local_port

    def _locked_tunnel(self, name: str, connector: Connector):
        with self.lock:
            return self._ensure_tunnel(name, connector)

    def _ensure_tunnel(self, name: str, connector: Connector):
        """Рабочий туннель коннектора. Вызывается под self.lock"""
        forward = self.tunnels.get(name)
        if forward is not None and forward.is_active:
            return forward

        if forward is not None:
            logger.warning(f"Туннель коннектора {name} оборван, переподключение...")
            forward.close()
            # пул держит соединения к старому локальному порту
            stale = self.pools.pop(name, None)
            if stale is not None:
                stale.closeall()

        record = self.tunnel_servers.get(name)
        if record is None:
            raise NotSpecifiedError(f"Сервер туннеля коннектора {name} не загружен, сначала вызовите open_tunnel")

        tunnel = connector.ssh_tunnel
        record = record.model_copy()
        identity_file = None
        try:
            if not record.identity_file:
                if not record.ssh_key and not record.password:
                    raise MissingCredentialsError(f"У сервера {record.domain} нет SSH-ключа или пароля")
                if record.ssh_key:
                    identity_file = self.vault.create_identity_file(record)
                    record.identity_file = identity_file
            forward = self._runner().open_tunnel(
                record, tunnel.hostname or connector.host, connector.port, tunnel.source_port,
            )
        finally:
            if identity_file:
                try:
                    self.vault.remove_identity_file(identity_file)
                except Exception as e:
                    logger.error(f"Не удалось удалить identity-файл {identity_file}: {e}")

        self.tunnels[name] = forward
        return forward

    def _get_pool(self, name: str) -> psycopg2.pool.ThreadedConnectionPool:
        connector = self.get_connector(name)
        with self.lock:
            host, port = connector.host, connector.port
            if connector.ssh_tunnel and connector.ssh_tunnel.required:
                forward = self._ensure_tunnel(name, connector)
                host, port = "127.0.0.1", forward.local_port

            if name not in self.pools:
                logger.info(f"Создание пула подключений для {name} ({connector.database})")
                try:
                    self.pools[name] = psycopg2.pool.ThreadedConnectionPool(
                        connector.minconn,
                        connector.maxconn,
                        host=host,
                        database=connector.database,
                        user=connector.user,
                        password=connector.password,
                        port=port,
                        connect_timeout=5,
                        options='-c statement_timeout=5000 -c tcp_user_timeout=5000',
                        keepalives=1,
                        keepalives_idle=30,
                        keepalives_interval=5,
                        keepalives_count=5
                    )
                except Exception as e:
                    logger.error(f"Ошибка создания пула для {name}: {e}")
                    raise
            return self.pools[name]

    @contextmanager
    def get_connection(self, name: str):
        """Контекстный менеджер для безопасной работы с подключением"""
        pool = self._get_pool(name)
        conn = None
        try:
            conn = pool.getconn()

            # Проверяем, что соединение живое
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
            except (psycopg2.OperationalError, psycopg2.InterfaceError):
                logger.warning(f"Мёртвое соединение обнаружено для {name}, переподключение...")
                try:
                    pool.putconn(conn, close=True)
                except Exception as e:
                    logger.debug(f"Не удалось закрыть мёртвое соединение {name}: {e}")
                conn = pool.getconn()
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()

            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Ошибка при работе с БД {name}: {e}")
            raise
        finally:
            if conn:
                pool.putconn(conn)

    def test_connector(self, name: str) -> bool:
        """True, если через коннектор выполняется SELECT 1"""
        try:
            with self.get_connection(name) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    return cur.fetchone()[0] == 1
        except psycopg2.Error as e:
            logger.warning(f"Коннектор {name} недоступен: {e}")
            return False

    def close(self, name: str) -> bool:
        """Закрыть пул и туннель коннектора. Сам коннектор остаётся зарегистрированным"""
        with self.lock:
            pool_obj: Optional[psycopg2.pool.ThreadedConnectionPool] = self.pools.pop(name, None)
            forward = self.tunnels.pop(name, None)
        if pool_obj is None and forward is None:
            return False
        if pool_obj is not None:
            logger.info(f"Закрытие пула для {name}")
            pool_obj.closeall()
        if forward is not None:
            forward.close()
        return True

    def close_all(self):
        """Закрыть все пулы и туннели"""
        with self.lock:
            logger.info(f"Закрытие всех пулов подключений ({len(self.pools)} пулов)")
            for pool_obj in self.pools.values():
                pool_obj.closeall()
            self.pools.clear()
            for forward in self.tunnels.values():
                forward.close()
            self.tunnels.clear()

    def get_status(self) -> dict:
        """Статус коннекторов, их пулов и туннелей"""
        with self.lock:
            status = {}
            for name, connector in self.connectors.items():
                pool_obj = self.pools.get(name)
                forward = self.tunnels.get(name)
                status[name] = {
                    "host": connector.host,
                    "port": connector.port,
                    "database": connector.database,
                    "minconn": connector.minconn,
                    "maxconn": connector.maxconn,
                    "open": pool_obj is not None and not pool_obj.closed,
                    "tunnel": forward.local_port if forward is not None and forward.is_active else None,
                }
            return status


connectors = ConnectorRegistry()
