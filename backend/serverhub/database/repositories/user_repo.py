# serverhub/database/repositories/user_repo.py
"""
Репозиторий пользователей API: asyncpg.
"""
import logging

logger = logging.getLogger(__name__)


def _get_pool():
    """Ленивый импорт пула: избегаем циклических зависимостей при старте."""
    from serverhub.database.local_db import get_pool
    return get_pool()


async def get_user(login: str) -> dict | None:
    """Получить пользователя по логину (все поля)."""
    pool = _get_pool()
    row = await pool.fetchrow("SELECT * FROM users WHERE login = $1", login)
    return dict(row) if row else None


async def create_user(login: str, password_hash: str, role: str = "viewer") -> dict:
    """Создать пользователя."""
    pool = _get_pool()
    row = await pool.fetchrow(
        "INSERT INTO users (login, password_hash, role) VALUES ($1, $2, $3) "
        "ON CONFLICT (login) DO UPDATE SET password_hash = EXCLUDED.password_hash, "
        "role = EXCLUDED.role RETURNING *",
        login, password_hash, role,
    )
    logger.info(f"Создан пользователь: {login} (role={role})")
    return dict(row)


async def update_last_login(login: str) -> None:
    """Обновить last_login текущей меткой времени."""
    pool = _get_pool()
    await pool.execute(
        "UPDATE users SET last_login = now() WHERE login = $1", login
    )
