# serverhub/database/repositories/fingerprint_repo.py
"""
Репозиторий отпечатков SSH-хостов (ssh_fingerprints).
"""
import logging

logger = logging.getLogger(__name__)


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


async def list_for_host(domain: str, port: int) -> list[dict]:
    pool = _get_pool()
    rows = await pool.fetch(
        "SELECT id, servers_id, domain, port, algorithm, fingerprint FROM ssh_fingerprints "
        "WHERE domain = $1 AND port = $2 ORDER BY id",
        domain, port,
    )
    return [dict(r) for r in rows]


async def list_all() -> list[dict]:
    pool = _get_pool()
    rows = await pool.fetch(
        "SELECT id, servers_id, domain, port, algorithm, fingerprint FROM ssh_fingerprints "
        "WHERE status IS NULL ORDER BY domain, port, id"
    )
    return [dict(r) for r in rows]


async def insert(servers_id: int | None, domain: str, seodomain: str, port: int,
                 algorithm: str, fingerprint: str) -> int:
    pool = _get_pool()
    return await pool.fetchval(
        "INSERT INTO ssh_fingerprints (servers_id, domain, seodomain, port, algorithm, fingerprint) "
        "VALUES ($1, $2, $3, $4, $5, $6) RETURNING id",
        servers_id, domain, seodomain, port, algorithm, fingerprint,
    )


async def delete_for_host(domain: str, port: int | None = None) -> int:
    """Удалить отпечатки хоста (все порты, если port не указан)."""
    pool = _get_pool()
    if port is None:
        result = await pool.execute("DELETE FROM ssh_fingerprints WHERE domain = $1", domain)
    else:
        result = await pool.execute(
            "DELETE FROM ssh_fingerprints WHERE domain = $1 AND port = $2", domain, port
        )
    removed = int(result.split()[-1])
    if removed:
        logger.info(f"Удалено {removed} отпечатков для {domain}")
    return removed
