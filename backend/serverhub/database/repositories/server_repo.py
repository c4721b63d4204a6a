# serverhub/database/repositories/server_repo.py
"""
Репозиторий серверов: SQL через asyncpg, ключи и пароли расшифровываются pgcrypto.
"""
import logging
from serverhub.config import settings

logger = logging.getLogger(__name__)

# Колонки, которые пишутся при insert/update
_WRITE_COLUMNS = (
    "status", "domain", "seodomain", "port", "database_accounts_id",
    "bill_duedate", "cost", "interval", "providers_id", "customers_id",
    "ssh_accounts_id", "allow_sshd_modification", "description", "ipv4",
)

# $1 всегда ключ шифрования
_SELECT_LIMITED = """
    SELECT servers.id,
           servers.domain,
           servers.port,
           servers.ipv4,
           ssh_accounts.username,
           CASE WHEN ssh_accounts.ssh_key_enc IS NOT NULL
                THEN pgp_sym_decrypt(ssh_accounts.ssh_key_enc, $1)
                END AS ssh_key
"""

_SELECT_FULL = """
    SELECT servers.id,
           servers.created_at,
           servers.port,
           servers.cost,
           servers.status,
           servers."interval",
           servers.domain,
           servers.seodomain,
           servers.bill_duedate,
           servers.ssh_accounts_id,
           servers.database_accounts_id,
           servers.providers_id,
           servers.customers_id,
           servers.description,
           servers.ipv4,
           servers.ipv6,
           servers.allow_sshd_modification,

           ssh_accounts.username,
           CASE WHEN ssh_accounts.ssh_key_enc IS NOT NULL
                THEN pgp_sym_decrypt(ssh_accounts.ssh_key_enc, $1)
                END AS ssh_key,

           providers.name       AS provider,
           customers.name       AS customer,
           providers.seoname    AS seoprovider,
           customers.seoname    AS seocustomer,
           ssh_accounts.seoname AS ssh_account
"""

_SELECT_DATABASE = """,
           database_accounts.username AS db_username,
           CASE WHEN database_accounts.password_enc IS NOT NULL
                THEN pgp_sym_decrypt(database_accounts.password_enc, $1)
                END AS db_password,
           CASE WHEN database_accounts.root_password_enc IS NOT NULL
                THEN pgp_sym_decrypt(database_accounts.root_password_enc, $1)
                END AS db_root_password
"""

_FROM = """
    FROM      servers
    LEFT JOIN providers    ON providers.id    = servers.providers_id
    LEFT JOIN customers    ON customers.id    = servers.customers_id
    LEFT JOIN ssh_accounts ON ssh_accounts.id = servers.ssh_accounts_id
"""

_FROM_DATABASE = """
    LEFT JOIN database_accounts ON database_accounts.id = servers.database_accounts_id
"""


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


def _build_select(database: bool, limited: bool) -> str:
    query = _SELECT_LIMITED if limited else _SELECT_FULL
    if database:
        return query + _SELECT_DATABASE + _FROM + _FROM_DATABASE
    return query + _FROM


async def fetch_by_id(server_id: int, *, database: bool = False, limited: bool = False) -> list[dict]:
    """Сервер по id (список из 0 или 1 записи)."""
    pool = _get_pool()
    rows = await pool.fetch(
        _build_select(database, limited) + " WHERE servers.id = $2",
        settings.encryption_key, server_id,
    )
    return [dict(r) for r in rows]


async def fetch_by_domain(domain: str, *, seodomain: bool = True, database: bool = False,
                          limited: bool = False) -> list[dict]:
    """
    Серверы по domain (и seodomain). Возвращает не больше двух записей -
    этого достаточно, чтобы вызывающий код понял, что совпадений несколько.
    """
    where = " WHERE servers.domain = $2"
    if seodomain:
        where += " OR servers.seodomain = $2"
    pool = _get_pool()
    rows = await pool.fetch(
        _build_select(database, limited) + where + " ORDER BY servers.id LIMIT 2",
        settings.encryption_key, domain,
    )
    return [dict(r) for r in rows]


async def fetch_all(status: str | None = None) -> list[dict]:
    """Все серверы с указанным статусом (NULL: активные)."""
    pool = _get_pool()
    rows = await pool.fetch(
        _build_select(False, False)
        + " WHERE servers.status IS NOT DISTINCT FROM $2 ORDER BY servers.id",
        settings.encryption_key, status,
    )
    return [dict(r) for r in rows]


async def list_servers() -> list[dict]:
    """Активные серверы: сначала сервер с пустым доменом, затем по дате создания."""
    pool = _get_pool()
    rows = await pool.fetch(
        "SELECT id, domain, seodomain FROM servers WHERE status IS NULL "
        "ORDER BY (domain = '') DESC, created_at ASC"
    )
    return [dict(r) for r in rows]


async def get_domain(server_id: int) -> str | None:
    pool = _get_pool()
    return await pool.fetchval("SELECT domain FROM servers WHERE id = $1", server_id)


async def like_servers(term: str) -> list[str]:
    """Домены серверов, у которых ipv4, domain или seodomain содержит term."""
    pool = _get_pool()
    pattern = f"%{term}%"
    rows = await pool.fetch(
        "SELECT domain FROM servers "
        "WHERE ipv4 LIKE $1 OR domain LIKE $1 OR seodomain LIKE $1 "
        "ORDER BY id LIMIT 2",
        pattern,
    )
    return [r["domain"] for r in rows]


async def like_linked_domains(term: str) -> list[str]:
    """Домены серверов, связанных с доменом, имя которого содержит term."""
    pool = _get_pool()
    pattern = f"%{term}%"
    rows = await pool.fetch(
        """
        SELECT DISTINCT servers.id, servers.domain
        FROM   domains
        JOIN   domains_servers ON domains_servers.domains_id = domains.id
        JOIN   servers         ON servers.id = domains_servers.servers_id
        WHERE  domains.domain LIKE $1 OR domains.seodomain LIKE $1
        ORDER  BY servers.id
        LIMIT  2
        """,
        pattern,
    )
    return [r["domain"] for r in rows]


async def domain_taken(domain: str, exclude_id: int | None = None) -> bool:
    """Есть ли другой сервер с таким доменом."""
    pool = _get_pool()
    found = await pool.fetchval(
        "SELECT id FROM servers WHERE domain = $1 AND id != $2 LIMIT 1",
        domain, exclude_id or 0,
    )
    return found is not None


async def seodomain_exists(seodomain: str, exclude_id: int | None = None) -> bool:
    pool = _get_pool()
    found = await pool.fetchval(
        "SELECT id FROM servers WHERE seodomain = $1 AND id != $2 LIMIT 1",
        seodomain, exclude_id or 0,
    )
    return found is not None


async def insert_server(data: dict) -> int:
    """Создать сервер. Возвращает id."""
    columns = ", ".join(f'"{c}"' for c in _WRITE_COLUMNS)
    placeholders = ", ".join(f"${i}" for i in range(1, len(_WRITE_COLUMNS) + 1))
    pool = _get_pool()
    server_id = await pool.fetchval(
        f"INSERT INTO servers ({columns}) VALUES ({placeholders}) RETURNING id",
        *[data.get(c) for c in _WRITE_COLUMNS],
    )
    logger.info(f"Создан сервер: {data.get('domain')} (id={server_id})")
    return server_id


async def update_server(server_id: int, data: dict) -> bool:
    """Обновить сервер. Возвращает True если запись найдена."""
    set_clause = ", ".join(f'"{c}" = ${i}' for i, c in enumerate(_WRITE_COLUMNS, start=2))
    pool = _get_pool()
    result = await pool.execute(
        f"UPDATE servers SET {set_clause} WHERE id = $1",
        server_id, *[data.get(c) for c in _WRITE_COLUMNS],
    )
    updated = result == "UPDATE 1"
    if updated:
        logger.info(f"Обновлён сервер: {data.get('domain')} (id={server_id})")
    return updated


async def set_status(domain: str, status: str | None) -> None:
    pool = _get_pool()
    await pool.execute("UPDATE servers SET status = $1 WHERE domain = $2", status, domain)


async def set_status_by_id(server_id: int, status: str | None) -> None:
    pool = _get_pool()
    await pool.execute("UPDATE servers SET status = $1 WHERE id = $2", status, server_id)


async def delete_server(server_id: int) -> bool:
    """Удалить сервер. Возвращает True если удалён."""
    pool = _get_pool()
    result = await pool.execute("DELETE FROM servers WHERE id = $1", server_id)
    deleted = result == "DELETE 1"
    if deleted:
        logger.info(f"Удалён сервер: id={server_id}")
    return deleted
