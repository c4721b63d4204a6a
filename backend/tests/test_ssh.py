import socket
import time

import paramiko
import pytest

from serverhub.exceptions import AccessDeniedError, ExecutionFailedError, HostVerificationError
from serverhub.models import CommandSpec, Server, ServerProxy
from serverhub.services.ssh import ConnectionCache, PortForward, SSHRunner, run_local


class FakeTransport:
    def __init__(self):
        self.active = True
        self.channels = []

    def is_active(self):
        return self.active

    def open_channel(self, kind, dest_addr, src_addr, timeout=None):
        channel = ("channel", dest_addr)
        self.channels.append((kind, dest_addr))
        return channel


class FakeStream:
    def __init__(self, data=b"", exit_code=0):
        self.data = data
        self.channel = self
        self.exit_code = exit_code

    def read(self):
        return self.data

    def recv_exit_status(self):
        return self.exit_code


class FakeClient:
    def __init__(self, stdout=b"", stderr=b"", exit_code=0):
        self.transport = FakeTransport()
        self.closed = False
        self.connected = None
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.commands = []

    def get_transport(self):
        return self.transport

    def connect(self, **kwargs):
        self.connected = kwargs

    def exec_command(self, command, timeout=None):
        self.commands.append(command)
        return None, FakeStream(self.stdout, self.exit_code), FakeStream(self.stderr)

    def close(self):
        self.closed = True
        self.transport.active = False


# --- ConnectionCache ---

def test_cache_evicts_oldest_and_closes_it():
    cache = ConnectionCache(max_size=2, ttl=300)
    first, second, third = FakeClient(), FakeClient(), FakeClient()
    cache.put("a", [first])
    cache.put("b", [second])
    cache.put("c", [third])

    assert len(cache) == 2
    assert first.closed is True
    assert cache.get("a") is None
    assert cache.get("c") == [third]


def test_cache_drops_expired_entries():
    cache = ConnectionCache(max_size=4, ttl=300)
    client = FakeClient()
    cache.put("a", [client])
    cache.connections["a"]["timestamp"] = time.time() - 301

    assert cache.get("a") is None
    assert client.closed is True


def test_cache_drops_inactive_transport():
    cache = ConnectionCache(max_size=4, ttl=300)
    client = FakeClient()
    cache.put("a", [client])
    client.transport.active = False

    assert cache.get("a") is None
    assert len(cache) == 0


def test_close_all_closes_every_hop():
    cache = ConnectionCache(max_size=4, ttl=300)
    hop, target = FakeClient(), FakeClient()
    cache.put("a", [hop, target])
    cache.close_all()
    assert hop.closed and target.closed
    assert len(cache) == 0


# --- SSHRunner ---

def _runner(tmp_path, clients):
    runner = SSHRunner(known_hosts_file=tmp_path / "known_hosts", connect_timeout=1,
                       connection_cache=ConnectionCache(max_size=2, ttl=300))
    pending = list(clients)
    runner._new_client = lambda hostkey_check: pending.pop(0)
    return runner


def _server(**fields):
    data = {"id": 1, "domain": "app.internal", "port": 22, "username": "deploy", "password": "pw"}
    data.update(fields)
    return Server(**data)


def test_connect_walks_chain_from_outermost_hop(tmp_path):
    outer, inner, target = FakeClient(), FakeClient(), FakeClient()
    runner = _runner(tmp_path, [outer, inner, target])
    server = _server(proxies=[
        ServerProxy(id=2, domain="bastion.internal", port=22),
        ServerProxy(id=3, domain="gw.example.com", port=2222),
    ])

    clients = runner._connect(server, hostkey_check=True)

    assert clients == [outer, inner, target]
    assert outer.connected["hostname"] == "gw.example.com"
    assert outer.connected["port"] == 2222
    assert outer.connected["sock"] is None
    assert outer.transport.channels == [("direct-tcpip", ("bastion.internal", 22))]
    assert inner.connected["sock"] == ("channel", ("bastion.internal", 22))
    assert inner.transport.channels == [("direct-tcpip", ("app.internal", 22))]
    assert target.connected["hostname"] == "app.internal"
    assert {c.connected["username"] for c in clients} == {"deploy"}
    assert {c.connected["password"] for c in clients} == {"pw"}


def test_connect_failure_closes_opened_hops(tmp_path):
    class FailingClient(FakeClient):
        def connect(self, **kwargs):
            raise paramiko.AuthenticationException("denied")

    outer = FakeClient()
    runner = _runner(tmp_path, [outer, FailingClient()])
    server = _server(proxies=[ServerProxy(id=2, domain="gw.example.com", port=22)])

    with pytest.raises(paramiko.AuthenticationException):
        runner._connect(server, hostkey_check=True)
    assert outer.closed is True


def test_execute_returns_lines_and_closes(tmp_path):
    client = FakeClient(stdout=b"line one\nline two\n")
    runner = _runner(tmp_path, [client])

    assert runner.execute(_server(), CommandSpec(commands="cat notes")) == ["line one", "line two"]
    assert client.commands == ["cat notes"]
    assert client.closed is True


def test_execute_bad_exit_code_carries_output(tmp_path):
    client = FakeClient(stdout=b"partial\n", stderr=b"No such file", exit_code=2)
    runner = _runner(tmp_path, [client])

    with pytest.raises(ExecutionFailedError) as exc:
        runner.execute(_server(), "cat missing")
    assert exc.value.output == ["partial"]
    assert exc.value.exit_code == 2


def test_execute_accepts_listed_exit_codes(tmp_path):
    runner = _runner(tmp_path, [FakeClient(stdout=b"inactive\n", exit_code=3)])
    spec = CommandSpec(commands="systemctl is-active nginx", ok_exitcodes=[0, 3])
    assert runner.execute(_server(), spec) == ["inactive"]


def test_permission_denied_output_is_access_denied(tmp_path):
    client = FakeClient(stderr=b"sudo: Permission denied", exit_code=1)
    runner = _runner(tmp_path, [client])
    with pytest.raises(AccessDeniedError):
        runner.execute(_server(), "sudo true")


def test_authentication_failure_is_access_denied(tmp_path, monkeypatch):
    runner = _runner(tmp_path, [])

    def fail(server, hostkey_check):
        raise paramiko.AuthenticationException("denied")

    monkeypatch.setattr(runner, "_connect", fail)
    with pytest.raises(AccessDeniedError):
        runner.execute(_server(), "uptime")


def test_bad_host_key_and_timeout(tmp_path, monkeypatch):
    class FakeKey:
        def get_name(self):
            return "ssh-ed25519"

        def get_base64(self):
            return "AAAAC3NzaC1lZDI1NTE5"

    runner = _runner(tmp_path, [])

    def bad_key(server, hostkey_check):
        raise paramiko.BadHostKeyException("app.internal", FakeKey(), FakeKey())

    monkeypatch.setattr(runner, "_connect", bad_key)
    with pytest.raises(HostVerificationError):
        runner.execute(_server(), "uptime")

    def timeout(server, hostkey_check):
        raise socket.timeout("timed out")

    monkeypatch.setattr(runner, "_connect", timeout)
    with pytest.raises(ExecutionFailedError):
        runner.execute(_server(), "uptime")


def test_persistent_connection_is_reused(tmp_path):
    client = FakeClient(stdout=b"1\n")
    runner = _runner(tmp_path, [client])
    server = _server(persist=True)

    runner.execute(server, "echo 1")
    runner.execute(server, "echo 1")

    assert client.commands == ["echo 1", "echo 1"]
    assert client.closed is False
    assert len(runner.connection_cache) == 1


def test_run_local(tmp_path):
    assert run_local(CommandSpec(commands=["echo", ["local run"]])) == ["local run"]
    with pytest.raises(ExecutionFailedError) as exc:
        run_local(CommandSpec(commands="exit 4"))
    assert exc.value.exit_code == 4


# --- PortForward ---

class SocketTransport(FakeTransport):
    """Канал direct-tcpip: один конец socketpair, второй остаётся у теста"""

    def __init__(self, near):
        super().__init__()
        self.near = near

    def open_channel(self, kind, dest_addr, src_addr, timeout=None):
        self.channels.append((kind, dest_addr))
        return self.near


def test_port_forward_relays_both_ways():
    near, far = socket.socketpair()
    far.settimeout(5)
    client = FakeClient()
    client.transport = SocketTransport(near)

    forward = PortForward([client], "db.internal", 5432)
    try:
        with socket.create_connection(("127.0.0.1", forward.local_port), timeout=5) as local:
            local.sendall(b"ping")
            assert far.recv(4) == b"ping"
            far.sendall(b"pong")
            assert local.recv(4) == b"pong"
        assert forward.is_active is True
    finally:
        forward.close()
        far.close()

    assert client.transport.channels == [("direct-tcpip", ("db.internal", 5432))]
    assert client.closed is True
    assert forward.is_active is False


def test_open_tunnel_connects_through_chain(tmp_path):
    outer, target = FakeClient(), FakeClient()
    runner = _runner(tmp_path, [outer, target])
    server = _server(proxies=[ServerProxy(id=2, domain="gw.example.com", port=22)])

    forward = runner.open_tunnel(server, "127.0.0.1", 5432)
    try:
        assert forward.clients == [outer, target]
        assert forward.remote == ("127.0.0.1", 5432)
        assert forward.local_port > 0
    finally:
        forward.close()
    assert outer.closed and target.closed


def test_open_tunnel_authentication_failure(tmp_path, monkeypatch):
    runner = _runner(tmp_path, [])

    def fail(server, hostkey_check):
        raise paramiko.AuthenticationException("denied")

    monkeypatch.setattr(runner, "_connect", fail)
    with pytest.raises(AccessDeniedError):
        runner.open_tunnel(_server(), "127.0.0.1", 5432)
