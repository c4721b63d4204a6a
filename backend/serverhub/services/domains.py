# serverhub/services/domains.py
"""Домены: поиск, создание, ensure."""
import logging
from serverhub.database.repositories import domain_repo
from serverhub.exceptions import InvalidError, NotFoundError
from serverhub.models import Domain
from serverhub.services import seo
from serverhub.services.validation import is_domain

logger = logging.getLogger(__name__)

__all__ = ["is_domain", "get", "get_id", "ensure", "insert", "list_servers"]


async def get_id(domain) -> int | None:
    """id домена; None если домен не передан или не найден"""
    if not domain:
        return None
    if isinstance(domain, dict):
        return domain.get("id")
    if isinstance(domain, int) or (isinstance(domain, str) and domain.isdigit()):
        return int(domain)
    return await domain_repo.get_domain_id(domain)


async def insert(domain: str, seodomain: str | None = None,
                 customers_id: int | None = None, providers_id: int | None = None) -> dict:
    if not is_domain(domain):
        raise InvalidError(f"Домен {domain} имеет неверный формат")
    if not seodomain or await domain_repo.seodomain_exists(seodomain):
        seodomain = await seo.seo_unique(domain, domain_repo.seodomain_exists)
    domains_id = await domain_repo.insert_domain(domain, seodomain, customers_id, providers_id)
    return {
        "id": domains_id,
        "domain": domain,
        "seodomain": seodomain,
        "customers_id": customers_id,
        "providers_id": providers_id,
    }


async def ensure(domain: str) -> int:
    """id домена; если домена нет, он создаётся"""
    domains_id = await domain_repo.get_domain_id(domain)
    if domains_id:
        return domains_id
    logger.info(f"Домен {domain} не найден, создаём")
    return (await insert(domain))["id"]


async def get(domain: str) -> Domain:
    record = await domain_repo.get_domain(domain)
    if not record:
        raise NotFoundError(f"Домен {domain} не существует")
    return Domain(**record)


async def list_servers(domain) -> list[dict]:
    domains_id = await get_id(domain)
    if not domains_id:
        raise NotFoundError(f"Домен {domain} не существует")
    return await domain_repo.list_domain_servers(domains_id)
