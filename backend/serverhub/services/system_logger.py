# serverhub/services/system_logger.py
"""
Системный журнал: события, которые оператор должен увидеть позже
(ошибки удаления identity-файлов, сбои пакетных операций и т.д.).
Хранение: таблица system_log через asyncpg. Ошибка записи в журнал
логируется и никогда не пробрасывается вызывающему.
"""
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


def _get_pool():
    from serverhub.database.local_db import get_pool
    return get_pool()


async def log(level: str, source: str, message: str, details: str | None = None) -> None:
    """Записать событие в system_log."""
    try:
        pool = _get_pool()
        await pool.execute(
            "INSERT INTO system_log (timestamp, level, source, message, details) VALUES (now(), $1, $2, $3, $4)",
            level, source, message, details,
        )
    except Exception as e:
        logger.error(f"Ошибка записи system_log: {e}")


async def info(source: str, message: str, details: str | None = None) -> None:
    await log("info", source, message, details)


async def warning(source: str, message: str, details: str | None = None) -> None:
    await log("warning", source, message, details)


async def error(source: str, message: str, details: str | None = None) -> None:
    await log("error", source, message, details)


async def notify(source: str, exc: BaseException, message: str | None = None) -> None:
    """Записать исключение как ошибку: код и текст идут в details"""
    code = getattr(exc, "code", None) or type(exc).__name__
    await error(source, message or str(exc), f"{code}: {exc}")


def _parse_date(value: str, end_of_day: bool = False) -> datetime:
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    if end_of_day:
        dt = dt.replace(hour=23, minute=59, second=59)
    return dt


async def get_logs(
    limit: int = 50,
    offset: int = 0,
    level: str | None = None,
    source: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    search: str | None = None,
) -> dict:
    """Получить логи с фильтрацией и пагинацией."""
    filters = []
    if level:
        filters.append(("level = ${}", level))
    if source:
        filters.append(("source = ${}", source))
    if search:
        filters.append(("(message ILIKE ${0} OR details ILIKE ${0})", f"%{search}%"))
    if date_from:
        filters.append(("timestamp >= ${}", _parse_date(date_from)))
    if date_to:
        filters.append(("timestamp <= ${}", _parse_date(date_to, end_of_day=True)))

    conditions = [template.format(i) for i, (template, _) in enumerate(filters, start=1)]
    params = [value for _, value in filters]
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    idx = len(params) + 1

    pool = _get_pool()
    total = await pool.fetchval(f"SELECT COUNT(*) FROM system_log {where}", *params)
    rows = await pool.fetch(
        f"SELECT timestamp, level, source, message, details "
        f"FROM system_log {where} ORDER BY timestamp DESC LIMIT ${idx} OFFSET ${idx + 1}",
        *params, limit, offset,
    )

    items = [{**dict(row), "timestamp": row["timestamp"].isoformat()} for row in rows]
    return {"items": items, "total": total, "limit": limit, "offset": offset}
