"""Render proxy configurations into the TOML files read by frpc/frps."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Final

from lemwood_frp.domain.proxy import ProxyConfig, ProxyRole

logger = logging.getLogger(__name__)

CONFIG_FILE_SUFFIX: Final[str] = ".toml"


def _quote(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes.
    return json.dumps(value, ensure_ascii=False)


def _present(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _client_lines(config: ProxyConfig) -> list[str]:
    lines = [
        f"serverAddr = {_quote(config.server_addr.strip())}",
        f"serverPort = {config.server_port}",
    ]
    token = _present(config.token)
    if token:
        lines.append(f"auth.token = {_quote(token)}")
    lines.append("")
    lines.append("[[proxies]]")
    lines.append(f"name = {_quote(config.display_name)}")
    lines.append(f"type = {_quote(_present(config.proxy_type) or 'tcp')}")
    local_ip = _present(config.local_ip)
    if local_ip:
        lines.append(f"localIP = {_quote(local_ip)}")
    if config.local_port is not None:
        lines.append(f"localPort = {config.local_port}")
    if config.remote_port is not None:
        lines.append(f"remotePort = {config.remote_port}")
    if config.is_http_like:
        custom_domain = _present(config.custom_domain)
        if custom_domain:
            lines.append(f"customDomains = [{_quote(custom_domain)}]")
        subdomain = _present(config.subdomain)
        if subdomain:
            lines.append(f"subdomain = {_quote(subdomain)}")
    return lines


def _server_lines(config: ProxyConfig) -> list[str]:
    lines = [f"bindPort = {config.server_port}"]
    token = _present(config.token)
    if token:
        lines.append(f"auth.token = {_quote(token)}")
    return lines


def synthesize(config: ProxyConfig) -> str:
    """Return the config file text for ``config``; identical input gives identical output."""

    lines = _client_lines(config) if config.role is ProxyRole.CLIENT else _server_lines(config)
    return "\n".join(lines) + "\n"


def config_file_path(config_dir: Path, config_id: str) -> Path:
    return config_dir / f"{config_id}{CONFIG_FILE_SUFFIX}"


def write_config_file(config: ProxyConfig, config_dir: Path) -> Path:
    """Write (overwriting) ``<config_dir>/<id>.toml`` and return its path."""

    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_file_path(config_dir, config.id)
    content = synthesize(config)
    path.write_text(content, encoding="utf-8")
    logger.debug(
        "wrote proxy config file",
        extra={"data": {"config_id": config.id, "path": path, "bytes": len(content)}},
    )
    return path


__all__ = ["CONFIG_FILE_SUFFIX", "config_file_path", "synthesize", "write_config_file"]
