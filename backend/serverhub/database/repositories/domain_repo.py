# serverhub/database/repositories/domain_repo.py
"""
Репозиторий доменов и их связей с серверами (domains, domains_servers).
"""
import logging

logger = logging.getLogger(__name__)


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


async def get_domain_id(domain: str) -> int | None:
    """id домена по domain или seodomain."""
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM domains WHERE domain = $1 OR seodomain = $1 ORDER BY id LIMIT 1",
        domain,
    )


async def get_domain(domain: str) -> dict | None:
    """Домен по domain или seodomain."""
    pool = _get_pool()
    row = await pool.fetchrow(
        "SELECT id, domain, seodomain, customers_id, providers_id, status "
        "FROM domains WHERE domain = $1 OR seodomain = $1 ORDER BY id LIMIT 1",
        domain,
    )
    return dict(row) if row else None


async def seodomain_exists(seodomain: str) -> bool:
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM domains WHERE seodomain = $1 LIMIT 1", seodomain
    ) is not None


async def insert_domain(domain: str, seodomain: str, customers_id: int | None = None,
                        providers_id: int | None = None) -> int:
    """Создать домен. Возвращает id."""
    pool = _get_pool()
    domains_id = await pool.fetchval(
        "INSERT INTO domains (domain, seodomain, customers_id, providers_id) "
        "VALUES ($1, $2, $3, $4) RETURNING id",
        domain, seodomain, customers_id, providers_id,
    )
    logger.info(f"Создан домен: {domain} (id={domains_id})")
    return domains_id


async def list_server_domains(servers_id: int) -> list[dict]:
    """Домены, связанные с сервером."""
    pool = _get_pool()
    rows = await pool.fetch(
        """
        SELECT domains.id, domains.domain, domains.seodomain
        FROM   domains_servers
        JOIN   domains ON domains.id = domains_servers.domains_id
        WHERE  domains_servers.servers_id = $1
        AND    domains.status IS NULL
        ORDER  BY domains.domain
        """,
        servers_id,
    )
    return [dict(r) for r in rows]


async def list_domain_servers(domains_id: int) -> list[dict]:
    """Серверы, связанные с доменом."""
    pool = _get_pool()
    rows = await pool.fetch(
        """
        SELECT servers.id, servers.domain, servers.seodomain
        FROM   domains_servers
        JOIN   servers ON servers.id = domains_servers.servers_id
        WHERE  domains_servers.domains_id = $1
        ORDER  BY servers.domain
        """,
        domains_id,
    )
    return [dict(r) for r in rows]


async def link_exists(servers_id: int, domains_id: int) -> bool:
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM domains_servers WHERE servers_id = $1 AND domains_id = $2",
        servers_id, domains_id,
    ) is not None


async def link(servers_id: int, domains_id: int) -> None:
    pool = _get_pool()
    await pool.execute(
        "INSERT INTO domains_servers (servers_id, domains_id) VALUES ($1, $2) "
        "ON CONFLICT (domains_id, servers_id) DO NOTHING",
        servers_id, domains_id,
    )


async def unlink(servers_id: int, domains_id: int | None = None) -> int:
    """
    Удалить связь сервера с доменом. Без domains_id удаляются все связи сервера.
    Возвращает число удалённых записей.
    """
    pool = _get_pool()
    if domains_id is None:
        result = await pool.execute(
            "DELETE FROM domains_servers WHERE servers_id = $1", servers_id
        )
    else:
        result = await pool.execute(
            "DELETE FROM domains_servers WHERE servers_id = $1 AND domains_id = $2",
            servers_id, domains_id,
        )
    return int(result.split()[-1])


async def replace_links(servers_id: int, domains_ids: list[int]) -> int:
    """Заменить весь набор связей сервера одной транзакцией."""
    pool = _get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute("DELETE FROM domains_servers WHERE servers_id = $1", servers_id)
            for domains_id in dict.fromkeys(domains_ids):
                await conn.execute(
                    "INSERT INTO domains_servers (servers_id, domains_id) VALUES ($1, $2)",
                    servers_id, domains_id,
                )
    return len(dict.fromkeys(domains_ids))


async def unlink_domain(domains_id: int) -> int:
    """Удалить связи домена со всеми серверами."""
    pool = _get_pool()
    result = await pool.execute("DELETE FROM domains_servers WHERE domains_id = $1", domains_id)
    return int(result.split()[-1])
