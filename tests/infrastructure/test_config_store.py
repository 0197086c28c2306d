from __future__ import annotations

import json
import logging

import pytest

from lemwood_frp.domain.proxy import ProxyConfig, ProxyRole
from lemwood_frp.infrastructure.state.config_store import InMemoryConfigStore, JsonFileConfigStore

EXPORT = [
    {
        "id": "cfgA",
        "name": "ssh",
        "type": "CLIENT",
        "serverAddr": "1.2.3.4",
        "serverPort": 7000,
        "token": "abc",
        "localIP": "127.0.0.1",
        "localPort": 22,
        "remotePort": 6000,
        "proxyType": "tcp",
        "isEnabled": True,
        "autoStart": True,
        "createdAt": 1700000000000,
    },
    {
        "id": "srv",
        "type": "SERVER",
        "serverPort": 7000,
    },
]


def test_in_memory_store_returns_configs() -> None:
    config = ProxyConfig(id="srv", role=ProxyRole.SERVER, server_addr="", server_port=7000)
    store = InMemoryConfigStore([config])

    assert store.get_config("srv") is config
    assert store.get_config("missing") is None
    assert store.list_configs() == (config,)


def test_json_store_reads_camel_case_export(tmp_path) -> None:
    path = tmp_path / "configs.json"
    path.write_text(json.dumps(EXPORT), encoding="utf-8")
    store = JsonFileConfigStore(path)

    client = store.get_config("cfgA")
    server = store.get_config("srv")

    assert client is not None
    assert client.role is ProxyRole.CLIENT
    assert client.display_name == "ssh"
    assert client.local_ip == "127.0.0.1"
    assert client.local_port == 22
    assert client.remote_port == 6000
    assert client.auto_start is True
    assert server is not None
    assert server.role is ProxyRole.SERVER
    assert server.enabled is True
    assert [config.id for config in store.list_configs()] == ["cfgA", "srv"]


def test_json_store_rereads_file(tmp_path) -> None:
    path = tmp_path / "configs.json"
    path.write_text("[]", encoding="utf-8")
    store = JsonFileConfigStore(path)
    assert store.list_configs() == ()

    path.write_text(json.dumps(EXPORT[1:]), encoding="utf-8")

    assert store.get_config("srv") is not None


def test_json_store_missing_file_is_empty(tmp_path) -> None:
    assert JsonFileConfigStore(tmp_path / "absent.json").list_configs() == ()


def test_json_store_skips_invalid_records_and_keeps_the_rest(
    tmp_path, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "configs.json"
    records = [
        {"id": "bad", "type": "CLIENT", "serverAddr": "h", "serverPort": 7000},
        {"id": "zero", "type": "CLIENT", "serverAddr": "h", "serverPort": 0, "localPort": 22},
        EXPORT[1],
    ]
    path.write_text(json.dumps(records), encoding="utf-8")
    store = JsonFileConfigStore(path)

    with caplog.at_level(logging.WARNING):
        configs = store.list_configs()

    assert [config.id for config in configs] == ["srv"]
    assert store.get_config("bad") is None
    skipped = [record.data["id"] for record in caplog.records if record.getMessage() == "skipping invalid config record"]
    assert skipped == ["bad", "zero"]


@pytest.mark.parametrize("content", ["{not json", '{"id": "cfgA"}'])
def test_json_store_rejects_unreadable_file(tmp_path, content: str) -> None:
    path = tmp_path / "configs.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError, match="invalid config file"):
        JsonFileConfigStore(path).list_configs()
