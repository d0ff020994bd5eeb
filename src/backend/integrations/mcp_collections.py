"""
Import and export of MCP server lists as YAML.

Accepted shapes:
- a plain list of servers
- a list of collections (the first one is used)
- a mapping with ``servers`` or ``mcpServers``
- a mapping with ``collections`` and an optional ``activeCollection``
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import yaml

from models.mcp_models import MCPServerDescriptor, MCPServersImport
from utils.logger import logger
from utils.observability import generate_id

WARNING_COLLECTION_LIST = "Imported collection list. Using the first collection."
WARNING_ACTIVE_NOT_FOUND = "Imported collections. Active collection not found, using the first one."
WARNING_NO_SERVERS = "No servers found in YAML."


def _normalize_server(raw: Any) -> MCPServerDescriptor | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name").strip() if isinstance(raw.get("name"), str) else ""
    url = raw.get("url").strip() if isinstance(raw.get("url"), str) else ""
    if not name or not url:
        return None
    enabled = raw.get("enabled")
    return MCPServerDescriptor(
        id=generate_id(),
        name=name,
        url=url,
        enabled=True if enabled is None else bool(enabled),
    )


def _servers_of(collection: Any) -> list[Any]:
    if isinstance(collection, dict) and isinstance(collection.get("servers"), list):
        return collection["servers"]
    return []


def _extract_servers(payload: Any) -> tuple[list[Any], list[str]]:
    warnings: list[str] = []

    if isinstance(payload, list):
        is_server_list = all(isinstance(item, dict) and "url" in item and "servers" not in item for item in payload)
        if is_server_list:
            return payload, warnings
        if payload:
            warnings.append(WARNING_COLLECTION_LIST)
            return _servers_of(payload[0]), warnings

    if isinstance(payload, dict):
        for key in ("servers", "mcpServers"):
            if isinstance(payload.get(key), list):
                return payload[key], warnings

        collections = payload.get("collections")
        if isinstance(collections, list) and collections:
            active_name = payload.get("activeCollection")
            active = None
            if isinstance(active_name, str):
                active = next(
                    (c for c in collections if isinstance(c, dict) and c.get("name") == active_name),
                    None,
                )
            if active is None:
                warnings.append(WARNING_ACTIVE_NOT_FOUND)
            return _servers_of(active if active is not None else collections[0]), warnings

    return [], warnings


def parse_mcp_servers_yaml(yaml_text: str) -> MCPServersImport:
    """Parse a YAML document into server descriptors with fresh ids.

    Raises:
        yaml.YAMLError: If the text is not valid YAML
    """
    payload = yaml.safe_load(yaml_text)
    raw_servers, warnings = _extract_servers(payload)
    servers = [server for server in (_normalize_server(raw) for raw in raw_servers) if server is not None]

    if not servers:
        warnings.append(WARNING_NO_SERVERS)

    logger.info(f"Imported {len(servers)} MCP servers from YAML", warnings=len(warnings))
    return MCPServersImport(servers=servers, warnings=warnings)


def build_mcp_servers_yaml(servers: Sequence[MCPServerDescriptor]) -> str:
    """Serialize servers as a plain YAML list (ids and tokens are not exported)."""
    payload = [{"name": server.name, "url": server.url, "enabled": server.enabled} for server in servers]
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
