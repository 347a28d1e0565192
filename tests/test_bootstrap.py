"""
Tests for the startup sequence.
"""

from __future__ import annotations

import socket
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from birdwatcher import bootstrap
from birdwatcher.api import AccessLogMiddleware
from birdwatcher.bird import AddressFamily
from birdwatcher.bootstrap import (
    ServiceBootstrap,
    StartupState,
    can_transition,
    parse_flags,
    select_backend,
    validate_tls,
)
from birdwatcher.config import DEFAULT_CONFIG_FILE, BirdwatcherConfig, ServerConfig
from birdwatcher.exceptions import StartupError

CONFIG = """
[server]
modules_enabled = ["status", "routes_peer"]
enable_tls = {tls}
crt = "{crt}"
key = "{key}"

[bird]
listen = "127.0.0.1:29184"
birdc = "birdc"

[bird6]
listen = "[::1]:29185"
birdc = "birdc6"
"""


@pytest.fixture
def write_config(tmp_path):
    def write(tls: bool = False, crt: str = "", key: str = "") -> Path:
        path = tmp_path / "birdwatcher.conf"
        path.write_text(CONFIG.format(tls=str(tls).lower(), crt=crt, key=key), encoding="utf-8")
        return path

    return write


class TestStateMachine:
    def test_gates_follow_each_other(self):
        order = [
            StartupState.CREATED,
            StartupState.FLAGS_PARSED,
            StartupState.CONFIG_LOADED,
            StartupState.TLS_VALIDATED,
            StartupState.BACKEND_SELECTED,
            StartupState.ROUTER_BUILT,
            StartupState.SERVING,
        ]
        for current, following in zip(order, order[1:]):
            assert can_transition(current, following)
            assert can_transition(current, StartupState.TERMINATED)

    def test_no_skipping_or_going_back(self):
        assert not can_transition(StartupState.FLAGS_PARSED, StartupState.TLS_VALIDATED)
        assert not can_transition(StartupState.ROUTER_BUILT, StartupState.CONFIG_LOADED)
        assert not can_transition(StartupState.SERVING, StartupState.CREATED)

    def test_terminated_is_final(self):
        for state in StartupState:
            assert not can_transition(StartupState.TERMINATED, state)


class TestFlags:
    def test_defaults(self):
        flags = parse_flags([])

        assert flags.ipv6 is False
        assert flags.worker_pool_size == 8
        assert flags.config == DEFAULT_CONFIG_FILE

    def test_single_dash_flags(self):
        flags = parse_flags(["-6", "-worker-pool-size", "16", "-config", "/etc/bw.conf"])

        assert flags.ipv6 is True
        assert flags.worker_pool_size == 16
        assert flags.config == Path("/etc/bw.conf")

    def test_double_dash_aliases(self):
        flags = parse_flags(["--ipv6", "--worker-pool-size=2", "--config=/tmp/bw.conf"])

        assert flags.ipv6 is True
        assert flags.worker_pool_size == 2
        assert flags.config == Path("/tmp/bw.conf")

    @pytest.mark.parametrize("value", ["0", "-3", "many"])
    def test_invalid_worker_pool_size(self, value):
        with pytest.raises(SystemExit) as excinfo:
            parse_flags(["-worker-pool-size", value])

        assert excinfo.value.code == 2


class TestValidateTls:
    def test_plain_http_needs_nothing(self):
        validate_tls(ServerConfig(enable_tls=False))

    def test_tls_with_material(self):
        validate_tls(ServerConfig(enable_tls=True, crt="a.crt", key="a.key"))

    @pytest.mark.parametrize("crt, key", [("", ""), ("a.crt", ""), ("", "a.key")])
    def test_tls_missing_material(self, crt, key):
        with pytest.raises(StartupError, match="crt' and 'key'"):
            validate_tls(ServerConfig(enable_tls=True, crt=crt, key=key))


def test_select_backend():
    config = BirdwatcherConfig()

    assert select_backend(config, False) == (config.bird, AddressFamily.IPV4)
    assert select_backend(config, True) == (config.bird6, AddressFamily.IPV6)


def test_startup_serves_primary_backend(write_config):
    serve = MagicMock()
    service = ServiceBootstrap(serve=serve)

    service.run(["-config", str(write_config())])

    assert service.state is StartupState.SERVING
    serve.assert_called_once()
    app, backend, server = serve.call_args.args
    assert isinstance(app, AccessLogMiddleware)
    assert backend.listen == "127.0.0.1:29184"
    assert server.modules_enabled == ("status", "routes_peer")
    assert service.context.client.family is AddressFamily.IPV4
    assert service.context.client.config.command == "birdc"


def test_startup_with_ipv6_flag_selects_secondary_backend(write_config):
    serve = MagicMock()
    service = ServiceBootstrap(serve=serve)

    service.run(["-6", "-worker-pool-size", "3", "-config", str(write_config())])

    _, backend, _ = serve.call_args.args
    assert backend.listen == "[::1]:29185"
    assert service.family is AddressFamily.IPV6
    assert service.context.client.family is AddressFamily.IPV6
    assert service.context.client.config.command == "birdc6"
    assert service.context.client.worker_pool_size == 3


@pytest.mark.parametrize("crt, key", [("", ""), ("a.crt", ""), ("", "a.key")])
def test_incomplete_tls_aborts_before_binding(write_config, crt, key):
    serve = MagicMock()
    service = ServiceBootstrap(serve=serve)

    with pytest.raises(SystemExit) as excinfo:
        service.run(["-config", str(write_config(tls=True, crt=crt, key=key))])

    assert excinfo.value.code == 1
    assert service.state is StartupState.TERMINATED
    assert service.app is None
    serve.assert_not_called()


def test_tls_is_checked_again_before_binding(write_config, monkeypatch):
    calls = []
    real_validate = bootstrap.validate_tls

    def counting(server):
        calls.append(server)
        real_validate(server)

    serve = MagicMock(side_effect=lambda *args: calls.append("serve"))
    monkeypatch.setattr(bootstrap, "validate_tls", counting)

    ServiceBootstrap(serve=serve).run(["-config", str(write_config(tls=True, crt="a.crt", key="a.key"))])

    assert len(calls) == 3
    assert calls[-1] == "serve"
    assert all(isinstance(call, ServerConfig) for call in calls[:2])


def test_missing_config_is_fatal(tmp_path):
    serve = MagicMock()
    service = ServiceBootstrap(serve=serve)

    with pytest.raises(SystemExit) as excinfo:
        service.run(["-config", str(tmp_path / "missing.conf")])

    assert excinfo.value.code == 1
    assert service.state is StartupState.TERMINATED
    serve.assert_not_called()


def test_invalid_config_is_fatal(tmp_path):
    path = tmp_path / "birdwatcher.conf"
    path.write_text("[server]\nmodules_enabled = 1\n", encoding="utf-8")
    serve = MagicMock()

    with pytest.raises(SystemExit) as excinfo:
        ServiceBootstrap(serve=serve).run(["-config", str(path)])

    assert excinfo.value.code == 1
    serve.assert_not_called()


def test_listener_failure_is_fatal(write_config):
    serve = MagicMock(side_effect=OSError("Address already in use"))
    service = ServiceBootstrap(serve=serve)

    with pytest.raises(SystemExit) as excinfo:
        service.run(["-config", str(write_config())])

    assert excinfo.value.code == 1
    assert service.state is StartupState.TERMINATED


def test_occupied_port_is_fatal(tmp_path, monkeypatch):
    events = MagicMock()
    monkeypatch.setattr(bootstrap, "logger", events)

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen()
        port = taken.getsockname()[1]
        path = tmp_path / "birdwatcher.conf"
        path.write_text(f'[bird]\nlisten = "127.0.0.1:{port}"\n', encoding="utf-8")
        service = ServiceBootstrap()

        with pytest.raises(SystemExit) as excinfo:
            service.run(["-config", str(path)])

    assert excinfo.value.code == 1
    assert service.state is StartupState.TERMINATED
    events.critical.assert_called_once()
    assert events.critical.call_args.args == ("startup_failed",)


def test_unwritable_log_file_is_fatal(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    path = tmp_path / "birdwatcher.conf"
    path.write_text(f'[logging]\nfile = "{blocker / "birdwatcher.log"}"\n', encoding="utf-8")
    serve = MagicMock()
    service = ServiceBootstrap(serve=serve)

    with pytest.raises(SystemExit) as excinfo:
        service.run(["-config", str(path)])

    assert excinfo.value.code == 1
    assert service.state is StartupState.TERMINATED
    serve.assert_not_called()
