"""
Tests for configuration loading.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from birdwatcher.config import (
    BackendConfig,
    BirdwatcherConfig,
    ConfigError,
    load_config,
    load_configs,
)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_sample_config_loads(sample_config_path):
    config = load_config(sample_config_path)

    assert config.server.modules_enabled[0] == "status"
    assert "route_net" in config.server.modules_enabled
    assert config.server.allow_from == ()
    assert config.server.enable_tls is False
    assert config.bird.command == "birdc"
    assert config.bird6.command == "birdc6"
    assert config.bird.listen == "0.0.0.0:29184"
    assert config.bird.cache_ttl == timedelta(minutes=5)
    assert config.bird.config == Path("/etc/bird.conf")
    assert config.ratelimit.requests_per_minute == 10
    assert config.parser.per_peer_tables is True


def test_missing_sections_fall_back_to_defaults(tmp_path):
    config = load_config(_write(tmp_path / "bw.conf", '[server]\nmodules_enabled = ["status"]\n'))

    assert config.server.modules_enabled == ("status",)
    assert config.bird.listen == "0.0.0.0:29184"
    assert config.bird6.listen == "0.0.0.0:29185"
    assert config.bird6.command == "birdc6"
    assert config.status.reconfig_timestamp_source == "bird"
    assert config.logging.level == "INFO"


def test_module_order_and_duplicates_are_kept(tmp_path):
    config = load_config(
        _write(tmp_path / "bw.conf", '[server]\nmodules_enabled = ["routes_peer", "status", "routes_peer"]\n')
    )

    assert config.server.modules_enabled == ("routes_peer", "status", "routes_peer")


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.conf")


def test_unparsable_file(tmp_path):
    with pytest.raises(ConfigError, match="Could not parse"):
        load_config(_write(tmp_path / "bw.conf", "[server\nmodules_enabled = \n"))


@pytest.mark.parametrize(
    "text",
    [
        "[server]\nmodules_enabled = 5\n",
        "[server]\nenable_tls = \"sometimes\"\n",
        "[bird]\nlisten = \"no-port-here\"\n",
        "[bird]\nttl = \"soon\"\n",
        "[ratelimit]\nrequests_per_minute = -1\n",
        "[status]\nreconfig_timestamp_source = \"clock\"\n",
        "[status]\nreconfig_timestamp_match = \"(unclosed\"\n",
        "[logging]\nformat = \"xml\"\n",
    ],
)
def test_structurally_invalid_config(tmp_path, text):
    with pytest.raises(ConfigError, match="Invalid configuration"):
        load_config(_write(tmp_path / "bw.conf", text))


def test_no_paths():
    with pytest.raises(ConfigError):
        load_configs([])


def test_later_files_override_earlier(tmp_path):
    base = _write(
        tmp_path / "birdwatcher.conf",
        '[server]\nmodules_enabled = ["status"]\nenable_tls = false\n[bird]\nttl = 5\n',
    )
    local = _write(
        tmp_path / "birdwatcher.local.conf",
        '[server]\nenable_tls = true\ncrt = "a.crt"\nkey = "a.key"\n[bird]\nttl = 1\n',
    )

    config = load_configs([base, local])

    assert config.server.modules_enabled == ("status",)
    assert config.server.enable_tls is True
    assert config.server.crt == "a.crt"
    assert config.bird.cache_ttl == timedelta(minutes=1)
    assert config.bird.command == "birdc"


def test_environment_overrides_logging(tmp_path, monkeypatch):
    monkeypatch.setenv("BIRDWATCHER_LOG_LEVEL", "debug")
    monkeypatch.setenv("BIRDWATCHER_LOG_FORMAT", "json")

    config = load_config(_write(tmp_path / "bw.conf", '[logging]\nlevel = "WARNING"\n'))

    assert config.logging.level == "debug"
    assert config.logging.format == "json"


def test_empty_log_file_means_no_file(tmp_path):
    config = load_config(_write(tmp_path / "bw.conf", '[logging]\nfile = ""\n'))

    assert config.logging.file is None


@pytest.mark.parametrize(
    "listen, host, port",
    [
        ("0.0.0.0:29184", "0.0.0.0", 29184),
        ("127.0.0.1:8080", "127.0.0.1", 8080),
        ("[::]:29185", "::", 29185),
        ("[2001:db8::1]:80", "2001:db8::1", 80),
        (":29184", "0.0.0.0", 29184),
    ],
)
def test_listen_address(listen, host, port):
    backend = BackendConfig(listen=listen)

    assert backend.host == host
    assert backend.port == port


def test_config_is_immutable():
    config = BirdwatcherConfig()

    with pytest.raises(ValidationError):
        config.server.enable_tls = True
