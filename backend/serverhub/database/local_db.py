# serverhub/database/local_db.py
"""
Модуль для работы с БД реестра через asyncpg.
Хранит серверы, SSH-аккаунты, прокси-цепочки, домены и отпечатки хостов.
"""
import asyncpg
import logging
from serverhub.config import settings

logger = logging.getLogger(__name__)

# Глобальный пул asyncpg
_pool: asyncpg.Pool | None = None

_SCHEMA = [
    "CREATE EXTENSION IF NOT EXISTS pgcrypto;",
    """
    CREATE TABLE IF NOT EXISTS providers (
        id       serial PRIMARY KEY,
        name     text NOT NULL,
        seoname  text NOT NULL UNIQUE,
        status   text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS customers (
        id       serial PRIMARY KEY,
        name     text NOT NULL,
        seoname  text NOT NULL UNIQUE,
        status   text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ssh_accounts (
        id           serial PRIMARY KEY,
        created_at   timestamptz NOT NULL DEFAULT now(),
        name         text NOT NULL,
        seoname      text NOT NULL UNIQUE,
        username     text NOT NULL,
        ssh_key_enc  bytea,
        fingerprint  text,
        status       text,
        description  text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS database_accounts (
        id                 serial PRIMARY KEY,
        name               text NOT NULL,
        username           text NOT NULL,
        password_enc       bytea,
        root_password_enc  bytea,
        status             text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS servers (
        id                       serial PRIMARY KEY,
        created_at               timestamptz NOT NULL DEFAULT now(),
        status                   text,
        domain                   text NOT NULL,
        seodomain                text NOT NULL UNIQUE,
        ipv4                     text,
        ipv6                     text,
        port                     integer NOT NULL DEFAULT 22 CHECK (port BETWEEN 1 AND 65535),
        ssh_accounts_id          integer REFERENCES ssh_accounts (id),
        database_accounts_id     integer REFERENCES database_accounts (id),
        providers_id             integer REFERENCES providers (id),
        customers_id             integer REFERENCES customers (id),
        allow_sshd_modification  boolean NOT NULL DEFAULT false,
        description              text NOT NULL DEFAULT '',
        bill_duedate             date,
        cost                     numeric(12, 2),
        "interval"               text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS servers_ssh_proxies (
        id          serial PRIMARY KEY,
        servers_id  integer NOT NULL REFERENCES servers (id) ON DELETE CASCADE,
        proxies_id  integer NOT NULL REFERENCES servers (id) ON DELETE CASCADE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS domains (
        id            serial PRIMARY KEY,
        created_at    timestamptz NOT NULL DEFAULT now(),
        domain        text NOT NULL,
        seodomain     text NOT NULL UNIQUE,
        customers_id  integer REFERENCES customers (id),
        providers_id  integer REFERENCES providers (id),
        status        text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS domains_servers (
        id          serial PRIMARY KEY,
        domains_id  integer NOT NULL REFERENCES domains (id) ON DELETE CASCADE,
        servers_id  integer NOT NULL REFERENCES servers (id) ON DELETE CASCADE,
        UNIQUE (domains_id, servers_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS ssh_fingerprints (
        id           serial PRIMARY KEY,
        created_at   timestamptz NOT NULL DEFAULT now(),
        servers_id   integer REFERENCES servers (id) ON DELETE SET NULL,
        domain       text NOT NULL,
        seodomain    text NOT NULL,
        port         integer NOT NULL,
        fingerprint  text NOT NULL,
        algorithm    text NOT NULL,
        status       text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS system_log (
        id         bigserial   PRIMARY KEY,
        timestamp  timestamptz NOT NULL DEFAULT now(),
        level      text        NOT NULL,
        source     text        NOT NULL,
        message    text        NOT NULL,
        details    text
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        login          text PRIMARY KEY,
        password_hash  text NOT NULL,
        role           text NOT NULL DEFAULT 'viewer',
        is_active      boolean NOT NULL DEFAULT true,
        created_at     timestamptz NOT NULL DEFAULT now(),
        last_login     timestamptz
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_servers_domain ON servers (domain);",
    "CREATE INDEX IF NOT EXISTS idx_proxies_servers ON servers_ssh_proxies (servers_id);",
    "CREATE INDEX IF NOT EXISTS idx_fingerprints_domain ON ssh_fingerprints (domain, port);",
    "CREATE INDEX IF NOT EXISTS idx_system_log_timestamp ON system_log (timestamp DESC);",
]


async def init_pool(dsn: str | None = None) -> asyncpg.Pool:
    """Инициализация пула подключений asyncpg."""
    global _pool
    if _pool is not None:
        return _pool

    dsn = dsn or settings.local_db_dsn
    logger.info(f"Создание asyncpg пула: {dsn.split('@')[1] if '@' in dsn else dsn}")
    _pool = await asyncpg.create_pool(
        dsn,
        min_size=2,
        max_size=10,
        command_timeout=30,
    )
    await init_schema()
    logger.info("asyncpg пул и схема инициализированы")
    return _pool


async def close_pool():
    """Закрытие пула подключений."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("asyncpg пул закрыт")


def get_pool() -> asyncpg.Pool:
    """Получить текущий пул. Вызывать после init_pool()."""
    if _pool is None:
        raise RuntimeError("asyncpg пул не инициализирован. Вызовите init_pool() сначала.")
    return _pool


async def init_schema():
    """Создание таблиц и индексов если не существуют."""
    async with get_pool().acquire() as conn:
        async with conn.transaction():
            for statement in _SCHEMA:
                await conn.execute(statement)
    logger.info("Схема БД проверена/создана")
