# serverhub/database/repositories/proxy_repo.py
"""
Репозиторий рёбер прокси-цепочки (servers_ssh_proxies).
"""
import logging

logger = logging.getLogger(__name__)

_SELECT_PROXY = """
    SELECT servers.id,
           servers.domain,
           servers.port,
           servers.ipv4,
           servers_ssh_proxies.proxies_id
    FROM   servers_ssh_proxies
    JOIN   servers ON servers.id = servers_ssh_proxies.proxies_id
    WHERE  servers_ssh_proxies.servers_id = $1
"""


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


async def get_random_proxy(servers_id: int) -> dict | None:
    """Одно случайное ребро сервера вместе с данными прокси-сервера."""
    pool = _get_pool()
    row = await pool.fetchrow(_SELECT_PROXY + " ORDER BY random() LIMIT 1", servers_id)
    return dict(row) if row else None


async def list_proxies(servers_id: int) -> list[dict]:
    pool = _get_pool()
    rows = await pool.fetch(_SELECT_PROXY + " ORDER BY servers_ssh_proxies.id", servers_id)
    return [dict(r) for r in rows]


async def add_proxy(servers_id: int, proxies_id: int) -> int:
    """Добавить ребро. Возвращает id записи."""
    pool = _get_pool()
    edge_id = await pool.fetchval(
        "INSERT INTO servers_ssh_proxies (servers_id, proxies_id) VALUES ($1, $2) RETURNING id",
        servers_id, proxies_id,
    )
    logger.info(f"Добавлен прокси {proxies_id} для сервера {servers_id}")
    return edge_id


async def find_edge(servers_id: int, proxies_id: int) -> int | None:
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM servers_ssh_proxies WHERE servers_id = $1 AND proxies_id = $2 LIMIT 1",
        servers_id, proxies_id,
    )


async def update_edge(edge_id: int, proxies_id: int) -> None:
    pool = _get_pool()
    await pool.execute(
        "UPDATE servers_ssh_proxies SET proxies_id = $2 WHERE id = $1",
        edge_id, proxies_id,
    )


async def delete_proxy(servers_id: int, proxies_id: int) -> int:
    """Удалить ребро. Возвращает число удалённых записей."""
    pool = _get_pool()
    result = await pool.execute(
        "DELETE FROM servers_ssh_proxies WHERE servers_id = $1 AND proxies_id = $2",
        servers_id, proxies_id,
    )
    return int(result.split()[-1])


async def delete_for_server(servers_id: int) -> int:
    """Удалить все рёбра, которые начинаются или заканчиваются на сервере."""
    pool = _get_pool()
    result = await pool.execute(
        "DELETE FROM servers_ssh_proxies WHERE servers_id = $1 OR proxies_id = $1",
        servers_id,
    )
    return int(result.split()[-1])
