"""MCP server discovery from the user's ``~/.claude.json``."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

MCP_CACHE_TTL = 60.0


class McpConfigLoader:
    """Reads global ``mcpServers`` merged with ``claudeProjects[cwd].mcpServers``.

    Results are cached per working directory for ``ttl`` seconds. A missing or
    unreadable file yields ``None``.
    """

    def __init__(self, config_path: Optional[Path] = None, ttl: float = MCP_CACHE_TTL) -> None:
        self.config_path = Path(config_path) if config_path else None
        self.ttl = ttl
        self._cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}

    def _path(self) -> Path:
        return self.config_path or Path.home() / ".claude.json"

    def load(self, cwd: Optional[str] = None) -> Optional[Dict[str, Any]]:
        key = cwd or "global"
        now = time.monotonic()
        cached = self._cache.get(key)
        if cached is not None and now - cached[0] < self.ttl:
            return cached[1]
        servers = self._read(cwd)
        self._cache[key] = (now, servers)
        return servers

    def clear(self) -> None:
        self._cache.clear()

    def _read(self, cwd: Optional[str]) -> Optional[Dict[str, Any]]:
        path = self._path()
        if not path.exists():
            logger.debug("[MCP] No %s found, proceeding without MCP servers", path)
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("[MCP] Failed to parse %s: %s", path, e)
            return None
        if not isinstance(config, dict):
            return None

        servers: Dict[str, Any] = {}
        global_servers = config.get("mcpServers")
        if isinstance(global_servers, dict):
            servers.update(global_servers)

        projects = config.get("claudeProjects")
        if cwd and isinstance(projects, dict):
            project = projects.get(cwd)
            if isinstance(project, dict) and isinstance(project.get("mcpServers"), dict):
                servers.update(project["mcpServers"])

        if servers:
            logger.info("[MCP] Loaded %d MCP server(s) for %s", len(servers), cwd or "global")
        return servers or None


mcp_config_loader = McpConfigLoader()
