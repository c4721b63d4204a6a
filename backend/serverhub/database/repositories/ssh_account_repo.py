# serverhub/database/repositories/ssh_account_repo.py
"""
Репозиторий SSH-аккаунтов: asyncpg с pgcrypto-шифрованием ключей.
"""
import logging
from serverhub.config import settings

logger = logging.getLogger(__name__)

# Поля метаданных (без ssh_key_enc)
_META_FIELDS = "id, name, seoname, username, status, description, fingerprint, created_at"


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


async def get_account(account_id: int) -> dict | None:
    """Метаданные аккаунта по id."""
    pool = _get_pool()
    row = await pool.fetchrow(
        f"SELECT {_META_FIELDS} FROM ssh_accounts WHERE id = $1", account_id
    )
    return dict(row) if row else None


async def get_account_by_seoname(seoname: str) -> dict | None:
    pool = _get_pool()
    row = await pool.fetchrow(
        f"SELECT {_META_FIELDS} FROM ssh_accounts WHERE seoname = $1", seoname
    )
    return dict(row) if row else None


async def get_account_by_name(name: str) -> dict | None:
    pool = _get_pool()
    row = await pool.fetchrow(
        f"SELECT {_META_FIELDS} FROM ssh_accounts WHERE name = $1 LIMIT 1", name
    )
    return dict(row) if row else None


async def get_account_with_key(account: int | str) -> dict | None:
    """Аккаунт по id, seoname или username вместе с расшифрованным ключом."""
    pool = _get_pool()
    if isinstance(account, int):
        where, value = "id = $2", account
    else:
        where, value = "seoname = $2 OR username = $2", account
    row = await pool.fetchrow(
        f"SELECT {_META_FIELDS}, "
        f"CASE WHEN ssh_key_enc IS NOT NULL THEN pgp_sym_decrypt(ssh_key_enc, $1) END AS ssh_key "
        f"FROM ssh_accounts WHERE {where} ORDER BY id LIMIT 1",
        settings.encryption_key, value,
    )
    return dict(row) if row else None


async def list_accounts() -> list[dict]:
    """Список аккаунтов (без ключей)."""
    pool = _get_pool()
    rows = await pool.fetch(f"SELECT {_META_FIELDS} FROM ssh_accounts ORDER BY created_at")
    return [dict(r) for r in rows]


async def get_active_id(seoname: str) -> int | None:
    """id активного (status IS NULL) аккаунта по seoname."""
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM ssh_accounts WHERE seoname = $1 AND status IS NULL", seoname
    )


async def seoname_exists(seoname: str) -> bool:
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT id FROM ssh_accounts WHERE seoname = $1", seoname
    ) is not None


async def get_key(username: str) -> str | None:
    """Расшифрованный приватный ключ аккаунта по username."""
    pool = _get_pool()
    return await pool.fetchval(
        "SELECT pgp_sym_decrypt(ssh_key_enc, $2) FROM ssh_accounts "
        "WHERE username = $1 AND ssh_key_enc IS NOT NULL ORDER BY id LIMIT 1",
        username, settings.encryption_key,
    )


async def create_account(
    name: str,
    seoname: str,
    username: str,
    ssh_key: str,
    fingerprint: str,
    description: str | None = None,
) -> dict:
    """Создать аккаунт. Ключ шифруется pgp_sym_encrypt."""
    pool = _get_pool()
    row = await pool.fetchrow(
        f"INSERT INTO ssh_accounts (name, seoname, username, ssh_key_enc, fingerprint, description) "
        f"VALUES ($1, $2, $3, pgp_sym_encrypt($4, $5), $6, $7) "
        f"RETURNING {_META_FIELDS}",
        name, seoname, username, ssh_key, settings.encryption_key, fingerprint, description,
    )
    logger.info(f"Создан SSH-аккаунт: {name} ({username}, id={row['id']})")
    return dict(row)


async def delete_account(account_id: int) -> bool:
    """Удалить аккаунт. Возвращает True если удалён."""
    pool = _get_pool()
    result = await pool.execute("DELETE FROM ssh_accounts WHERE id = $1", account_id)
    deleted = result == "DELETE 1"
    if deleted:
        logger.info(f"Удалён SSH-аккаунт: id={account_id}")
    return deleted
