# serverhub/database/repositories/reference_repo.py
"""
Справочники, на которые ссылается сервер: провайдеры, клиенты, аккаунты БД.
"""
import logging

logger = logging.getLogger(__name__)


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


async def get_provider_id(seoname: str) -> int | None:
    """id активного провайдера по seoname."""
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM providers WHERE seoname = $1 AND status IS NULL", seoname
    )


async def get_customer_id(seoname: str) -> int | None:
    """id активного клиента по seoname."""
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM customers WHERE seoname = $1 AND status IS NULL", seoname
    )


async def database_account_exists(account_id: int) -> bool:
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM database_accounts WHERE id = $1", account_id
    ) is not None
