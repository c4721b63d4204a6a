import asyncio

import pytest

from serverhub.exceptions import InvalidError, NotFoundError, NotSpecifiedError
from serverhub.services import domains


def run(coro):
    return asyncio.run(coro)


def test_get_id_forms(store):
    domains_id = store.add_domain("shop.example.org")
    assert run(domains.get_id(None)) is None
    assert run(domains.get_id({"id": 3})) == 3
    assert run(domains.get_id("12")) == 12
    assert run(domains.get_id("shop.example.org")) == domains_id
    assert run(domains.get_id("shop-example-org")) == domains_id
    assert run(domains.get_id("missing.example.org")) is None


def test_ensure_creates_once(store):
    first = run(domains.ensure("shop.example.org"))
    second = run(domains.ensure("shop.example.org"))
    assert first == second
    assert len(store.domains) == 1


def test_insert_rejects_bad_format(store):
    with pytest.raises(InvalidError):
        run(domains.insert("not a domain"))


def test_insert_makes_seodomain_unique(store):
    store.add_domain("shop.example.org")
    created = run(domains.insert("shop-example.org", seodomain="shop-example-org"))
    assert created["seodomain"] == "shop-example-org-1"


def test_list_servers_of_unknown_domain(store):
    with pytest.raises(NotFoundError):
        run(domains.list_servers("missing.example.org"))


def test_update_domains_is_idempotent(store, registry):
    server_id = store.add_server("web1.example.com")
    wanted = ["shop.example.org", "blog.example.org"]

    assert run(registry.update_domains(server_id, wanted)) == 2
    links_after_first = sorted(store.links)
    assert run(registry.update_domains(server_id, wanted)) == 2

    assert sorted(store.links) == links_after_first
    assert len(store.domains) == 2


def test_update_domains_creates_with_server_owner(store, registry):
    record = run(registry.get(store.add_server("web1.example.com", customers_id=601, providers_id=501)))
    run(registry.update_domains(record, "shop.example.org"))

    created = next(iter(store.domains.values()))
    assert created["domain"] == "shop.example.org"
    assert created["customers_id"] == 601
    assert created["providers_id"] == 501


def test_update_domains_with_empty_list_unlinks_everything(store, registry):
    server_id = store.add_server("web1.example.com")
    run(registry.update_domains(server_id, ["shop.example.org"]))
    assert run(registry.update_domains(server_id, [])) == 0
    assert store.links == []


def test_add_domain(store, registry):
    server_id = store.add_server("web1.example.com")
    store.add_domain("shop.example.org")

    assert run(registry.add_domain(server_id, "shop.example.org")) is True
    assert run(registry.add_domain(server_id, "shop.example.org")) is False
    with pytest.raises(NotFoundError):
        run(registry.add_domain(server_id, "missing.example.org"))


def test_remove_domain_conventions(store, registry):
    web1 = store.add_server("web1.example.com")
    web2 = store.add_server("web2.example.com")
    shop = store.add_domain("shop.example.org")
    blog = store.add_domain("blog.example.org")
    store.links.extend([(web1, shop), (web1, blog), (web2, shop)])

    assert run(registry.remove_domain(web1, "blog.example.org")) == 1
    assert run(registry.remove_domain(None, "shop.example.org")) == 2
    assert store.links == []

    store.links.extend([(web1, shop), (web1, blog)])
    assert run(registry.remove_domain(web1)) == 2

    with pytest.raises(NotSpecifiedError):
        run(registry.remove_domain(None))


def test_list_domains_skips_inactive(store, registry):
    server_id = store.add_server("web1.example.com")
    store.links.append((server_id, store.add_domain("shop.example.org")))
    store.links.append((server_id, store.add_domain("old.example.org", status="expired")))

    assert [d["domain"] for d in run(registry.list_domains("web1.example.com"))] == ["shop.example.org"]


def test_get_domain_record(store):
    store.add_domain("shop.example.org", customers_id=601)
    record = run(domains.get("shop-example-org"))
    assert record.domain == "shop.example.org"
    assert record.customers_id == 601
    with pytest.raises(NotFoundError):
        run(domains.get("missing.example.org"))


def test_list_servers_of_domain(store):
    web1 = store.add_server("web1.example.com")
    shop = store.add_domain("shop.example.org")
    store.links.append((web1, shop))
    assert [s["domain"] for s in run(domains.list_servers("shop.example.org"))] == ["web1.example.com"]
