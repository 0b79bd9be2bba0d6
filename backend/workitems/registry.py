from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from workitems.errors import ConfigurationError
from workitems.types import ServerEndpoint


TOOL_SPECS_DIR = Path(__file__).resolve().parent / "tool_specs"
DEFAULT_SERVER_KEY = "default"


class ToolSpecValidationError(ValueError):
    pass


@dataclass(frozen=True)
class ToolDefinition:
    server_key: str
    tool_name: str
    description: str
    input_schema: dict[str, Any]


def _load_json(path: Path) -> dict[str, Any]:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ToolSpecValidationError(f"Invalid JSON in {path}") from exc


def _require_str(spec: dict[str, Any], key: str, path: Path) -> str:
    value = spec.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolSpecValidationError(f"{path}: '{key}' must be a non-empty string")
    return value


def _validate_server_spec(spec: dict[str, Any], path: Path) -> None:
    _require_str(spec, "server", path)
    tools = spec.get("tools")
    if not isinstance(tools, list) or not tools:
        raise ToolSpecValidationError(f"{path}: 'tools' must be a non-empty array")
    for idx, tool in enumerate(tools):
        if not isinstance(tool, dict):
            raise ToolSpecValidationError(f"{path}: tools[{idx}] must be an object")
        for field in ("tool_name", "description"):
            _require_str(tool, field, path)
        if not isinstance(tool.get("input_schema", {}), dict):
            raise ToolSpecValidationError(f"{path}: tools[{idx}].input_schema must be an object")


class ToolRegistry:
    def __init__(self, tools: list[ToolDefinition]):
        self._tools = tools
        self._by_name = {tool.tool_name: tool for tool in tools}

    @classmethod
    def load_from_disk(cls, specs_dir: Path = TOOL_SPECS_DIR) -> "ToolRegistry":
        tools: list[ToolDefinition] = []
        for path in sorted(specs_dir.glob("*.json")):
            spec = _load_json(path)
            _validate_server_spec(spec, path)
            server_key = spec["server"].strip().lower()
            for item in spec["tools"]:
                tools.append(
                    ToolDefinition(
                        server_key=server_key,
                        tool_name=item["tool_name"].strip(),
                        description=item["description"].strip(),
                        input_schema=item.get("input_schema", {}),
                    )
                )
        return cls(tools)

    def list_server_keys(self) -> list[str]:
        return sorted({tool.server_key for tool in self._tools})

    def list_tools(self, server_key: str | None = None) -> list[ToolDefinition]:
        if not server_key:
            return list(self._tools)
        normalized = server_key.lower().strip()
        return [tool for tool in self._tools if tool.server_key == normalized]

    def find_tool(self, tool_name: str) -> ToolDefinition | None:
        return self._by_name.get(tool_name)

    def server_key_for(self, tool_name: str) -> str:
        tool = self._by_name.get(tool_name)
        return tool.server_key if tool else DEFAULT_SERVER_KEY


def format_auth_header(token: str | None, default_scheme: str = "Token") -> str | None:
    value = (token or "").strip()
    if not value or "${input" in value:
        return None
    if value.split(" ", 1)[0] in {"Token", "Bearer", "Basic"}:
        return value
    return f"{default_scheme} {value}"


def build_endpoints(settings: Any, registry: ToolRegistry) -> dict[str, ServerEndpoint]:
    configured = {
        "jira": (settings.mcp_jira_url, settings.mcp_jira_key),
        "confluence": (settings.mcp_confluence_url, settings.mcp_wiki_key),
        DEFAULT_SERVER_KEY: (settings.mcp_server_url, settings.mcp_server_key),
    }
    endpoints: dict[str, ServerEndpoint] = {}
    missing: list[str] = []
    for key in sorted(set(registry.list_server_keys()) | {DEFAULT_SERVER_KEY}):
        url, token = configured.get(key, (None, None))
        url = (url or "").strip()
        if not url:
            missing.append(key)
            continue
        endpoints[key] = ServerEndpoint(key=key, url=url, auth_header=format_auth_header(token))
    if missing:
        raise ConfigurationError(f"mcp_server_url_missing:{','.join(missing)}")
    return endpoints


@lru_cache(maxsize=1)
def load_registry() -> ToolRegistry:
    return ToolRegistry.load_from_disk()


def validate_registry_on_startup() -> dict[str, int]:
    load_registry.cache_clear()
    registry = load_registry()
    return {
        "server_count": len(registry.list_server_keys()),
        "tool_count": len(registry.list_tools()),
    }
