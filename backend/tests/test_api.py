import pytest
from fastapi.testclient import TestClient

from serverhub.auth import get_current_user
from serverhub.exceptions import AccessDeniedError, ExecutionFailedError, HostVerificationError
from serverhub.main import create_app
from serverhub.models.user import User, UserRole


@pytest.fixture
def app():
    return create_app(use_lifespan=False)


@pytest.fixture
def client(app, registry):
    app.dependency_overrides[get_current_user] = lambda: User(login="tester", role=UserRole.ADMIN)
    with TestClient(app) as test_client:
        yield test_client


def test_health_needs_no_token(app):
    with TestClient(app) as anonymous:
        assert anonymous.get("/api/health").json()["status"] == "ok"


def test_servers_require_token(app, store):
    with TestClient(app) as anonymous:
        assert anonymous.get("/servers").status_code == 401


def test_get_server_hides_secrets(client, store):
    server_id = store.add_server("web1.example.com")

    response = client.get(f"/servers/{server_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["domain"] == "web1.example.com"
    assert body["has_ssh_key"] is True
    assert "ssh_key" not in body


def test_missing_server_is_404(client, store):
    response = client.get("/servers/missing.example.com")
    assert response.status_code == 404
    assert response.json()["code"] == "not-exists"


def test_ambiguous_server_is_409(client, store):
    store.add_server("alpha", seodomain="alpha")
    store.add_server("alpha.example.com", seodomain="alpha")
    assert client.get("/servers/alpha").status_code == 409


def test_validation_errors_are_listed(client, store):
    response = client.post("/servers", json={"domain": "bad_domain!", "port": 70000})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation"
    assert len(body["errors"]) == 2


def test_create_server(client, store):
    response = client.post("/servers", json={"domain": "web1.example.com", "db_password": "secret"})
    assert response.status_code == 200
    assert response.json()["seodomain"] == "web1-example-com"
    assert "db_password" not in response.json()


def test_exec_returns_output(client, store, runner):
    server_id = store.add_server("web1.example.com")
    runner.output = ["up 3 days"]

    response = client.post(f"/servers/{server_id}/exec", json={"commands": ["uptime"]})

    assert response.status_code == 200
    assert response.json() == {"output": ["up 3 days"]}


@pytest.mark.parametrize("error, status, code", [
    (ExecutionFailedError("exit 1", output=["oops"], exit_code=1), 502, "failed"),
    (AccessDeniedError("denied"), 403, "access-denied"),
    (HostVerificationError("changed key"), 502, "host-verification-failed"),
])
def test_exec_error_mapping(client, store, runner, error, status, code):
    server_id = store.add_server("web1.example.com")
    runner.error = error

    response = client.post(f"/servers/{server_id}/exec", json={"commands": "uptime"})

    assert response.status_code == status
    assert response.json()["code"] == code


def test_failed_exec_carries_output(client, store, runner):
    server_id = store.add_server("web1.example.com")
    runner.error = ExecutionFailedError("exit 1", output=["oops"], exit_code=1)

    body = client.post(f"/servers/{server_id}/exec", json={"commands": "false"}).json()

    assert body["output"] == ["oops"]
    assert body["exit_code"] == 1


def test_missing_credentials_is_422(client, store):
    server_id = store.add_server("web1.example.com", ssh_key=None)
    response = client.post(f"/servers/{server_id}/exec", json={"commands": "uptime"})
    assert response.status_code == 422
    assert response.json()["code"] == "missing-data"


def test_viewer_cannot_exec(app, registry, store):
    server_id = store.add_server("web1.example.com")
    app.dependency_overrides[get_current_user] = lambda: User(login="viewer", role=UserRole.VIEWER)
    with TestClient(app) as viewer:
        assert viewer.post(f"/servers/{server_id}/exec", json={"commands": "uptime"}).status_code == 403
        assert viewer.get(f"/servers/{server_id}").status_code == 200


def test_proxy_routes(client, store):
    target = store.add_server("app.internal")
    gateway = store.add_server("gw.example.com")

    assert client.post(f"/servers/{target}/proxies", json={"proxies_id": target}).status_code == 400
    assert client.post(f"/servers/{target}/proxies", json={"proxies_id": gateway}).status_code == 200
    assert [p["id"] for p in client.get(f"/servers/{target}/proxies").json()] == [gateway]
    assert client.delete(f"/servers/{target}/proxies/{gateway}").status_code == 200
    assert client.delete(f"/servers/{target}/proxies/{gateway}").status_code == 404


def test_domain_routes(client, store):
    server_id = store.add_server("web1.example.com")

    assert client.put(f"/servers/{server_id}/domains",
                      json={"domains": ["shop.example.org", "blog.example.org"]}).json() == {"linked": 2}
    assert len(client.get(f"/servers/{server_id}/domains").json()) == 2
    assert client.delete(f"/servers/{server_id}/domains/blog.example.org").json() == {"removed": 1}
    assert client.delete(f"/servers/{server_id}/domains").json() == {"removed": 1}
