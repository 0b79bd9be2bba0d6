from __future__ import annotations

import itertools
import json
import logging
import time
from functools import lru_cache
from json import JSONDecodeError
from typing import Any

import httpx

from app.core.config import get_settings
from workitems.errors import ConfigurationError, ToolArgumentError, ToolError, TransportError, WorkItemErrorCode
from workitems.registry import DEFAULT_SERVER_KEY, ToolDefinition, ToolRegistry, build_endpoints, load_registry
from workitems.types import ServerEndpoint, Session, ToolCall

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "workitem-orchestrator", "version": "0.1.0"}
_ACCEPT = "application/json, text/event-stream"


def _endpoint_url(endpoint: ServerEndpoint) -> str:
    return endpoint.url if endpoint.url.endswith("/") else f"{endpoint.url}/"


def _base_headers(endpoint: ServerEndpoint) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "Accept": _ACCEPT,
    }
    if endpoint.auth_header:
        headers["Authorization"] = endpoint.auth_header
    return headers


def _session_headers(endpoint: ServerEndpoint, session_id: str) -> dict[str, str]:
    headers = _base_headers(endpoint)
    headers["X-Session-ID"] = session_id
    headers["mcp-session-id"] = session_id
    return headers


def _validate_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, dict)
    return True


def _validate_arguments(tool: ToolDefinition, arguments: dict[str, Any]) -> None:
    schema = tool.input_schema or {}
    for req in schema.get("required", []):
        if arguments.get(req) is None:
            raise ToolArgumentError(f"required:{req}", tool_name=tool.tool_name)

    properties = schema.get("properties", {})
    for key, value in arguments.items():
        spec = properties.get(key)
        if not isinstance(spec, dict):
            continue
        expected_type = spec.get("type")
        if expected_type and not _validate_type(value, expected_type):
            raise ToolArgumentError(f"type:{key}", tool_name=tool.tool_name)
        if expected_type == "integer":
            minimum = spec.get("minimum")
            maximum = spec.get("maximum")
            if minimum is not None and value < minimum:
                raise ToolArgumentError(f"min:{key}", tool_name=tool.tool_name)
            if maximum is not None and value > maximum:
                raise ToolArgumentError(f"max:{key}", tool_name=tool.tool_name)
        enum_values = spec.get("enum")
        if enum_values and value not in enum_values:
            raise ToolArgumentError(f"enum:{key}", tool_name=tool.tool_name)


def _is_response_event(event: dict[str, Any], request_id: Any = None) -> bool:
    if "result" in event or "error" in event:
        return True
    if request_id is not None and event.get("id") == request_id:
        return True
    # Method-only events are server notifications (progress, log messages).
    return "method" not in event


def _decode_sse(text: str, request_id: Any = None) -> dict[str, Any] | None:
    for line in text.splitlines():
        if not line.startswith("data:"):
            continue
        chunk = line[len("data:"):].strip()
        if not chunk:
            continue
        try:
            parsed = json.loads(chunk)
        except JSONDecodeError:
            continue
        if isinstance(parsed, dict) and _is_response_event(parsed, request_id):
            return parsed
    return None


def parse_rpc_body(text: str, tool_name: str | None = None, request_id: Any = None) -> dict[str, Any] | None:
    body = (text or "").strip()
    if not body:
        return None

    envelope = _decode_sse(body, request_id) if "data:" in body else None
    if envelope is None:
        try:
            envelope = json.loads(body)
        except JSONDecodeError as exc:
            raise TransportError(f"invalid_json_response:{body[:100]}", tool_name=tool_name) from exc
    if not isinstance(envelope, dict):
        raise TransportError(f"unexpected_response_shape:{type(envelope).__name__}", tool_name=tool_name)
    return envelope


def _collect_error_text(result: dict[str, Any]) -> str:
    content = result.get("content")
    if not isinstance(content, list):
        return ""
    parts = [str(item.get("text")) for item in content if isinstance(item, dict) and item.get("text")]
    return " | ".join(parts)


def _unwrap_text_content(result: Any) -> Any:
    if not isinstance(result, dict):
        return result
    content = result.get("content")
    if not isinstance(content, list) or not content or not isinstance(content[0], dict):
        return result
    text = content[0].get("text")
    if not isinstance(text, str) or not text:
        return result
    # Tool servers commonly double-encode their payload as JSON text.
    try:
        return json.loads(text)
    except JSONDecodeError:
        return text


def unwrap_rpc_result(envelope: dict[str, Any] | None, tool_name: str | None = None) -> Any:
    if envelope is None:
        return None

    error = envelope.get("error")
    if error:
        if isinstance(error, dict):
            message = f"{error.get('message') or 'unknown'} (code={error.get('code')})"
        else:
            message = str(error)
        raise TransportError(message, tool_name=tool_name, error_code=WorkItemErrorCode.PROTOCOL_ERROR)

    if "result" in envelope:
        result = envelope["result"]
    elif "jsonrpc" in envelope:
        result = None
    else:
        result = envelope

    if isinstance(result, dict) and result.get("isError"):
        raise ToolError(_collect_error_text(result) or "Unknown Tool Error", tool_name=tool_name)
    return _unwrap_text_content(result)


class ProtocolSession:
    def __init__(self, *, timeout: float = 30.0):
        self._timeout = timeout
        self._sessions: dict[str, Session] = {}

    def get(self, server_key: str) -> Session | None:
        return self._sessions.get(server_key)

    async def ensure(self, endpoint: ServerEndpoint) -> Session:
        cached = self._sessions.get(endpoint.key)
        if cached is not None:
            return cached

        logger.info("mcp_connect server=%s url=%s", endpoint.key, endpoint.url)
        temp_id = f"init-{int(time.time() * 1000)}"
        headers = _base_headers(endpoint)
        headers["X-Session-ID"] = temp_id
        payload = {
            "jsonrpc": "2.0",
            "method": "initialize",
            "params": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"roots": {"listChanged": True}},
                "clientInfo": CLIENT_INFO,
            },
            "id": 1,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    _endpoint_url(endpoint),
                    headers=headers,
                    params={"sessionId": temp_id},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"initialize timed out after {self._timeout}s",
                tool_name="initialize",
                error_code=WorkItemErrorCode.TRANSPORT_TIMEOUT,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(str(exc) or type(exc).__name__, tool_name="initialize") from exc

        if not response.is_success:
            # Some servers reject initialize yet still accept scoped tool calls.
            logger.warning(
                "mcp_initialize failed server=%s status=%s; proceeding with temporary session_id=%s",
                endpoint.key,
                response.status_code,
                temp_id,
            )
            logger.debug("mcp_initialize error body server=%s body=%s", endpoint.key, response.text[:300])
            session = Session(server_key=endpoint.key, session_id=temp_id, handshake_ok=False)
            self._sessions[endpoint.key] = session
            return session

        server_session_id = (response.headers.get("mcp-session-id") or "").strip()
        if not server_session_id:
            logger.warning("mcp_initialize server=%s returned no mcp-session-id; using client id %s", endpoint.key, temp_id)
        session = Session(server_key=endpoint.key, session_id=server_session_id or temp_id)
        self._sessions[endpoint.key] = session
        await self._notify_initialized(endpoint, session.session_id)
        logger.info("mcp_connected server=%s session_id=%s", endpoint.key, session.session_id)
        return session

    async def _notify_initialized(self, endpoint: ServerEndpoint, session_id: str) -> None:
        payload = {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                await client.post(
                    _endpoint_url(endpoint),
                    headers=_session_headers(endpoint, session_id),
                    params={"sessionId": session_id},
                    json=payload,
                )
        except httpx.HTTPError as exc:
            logger.warning("mcp_initialized notification failed server=%s error=%s", endpoint.key, exc)


class ToolInvoker:
    def __init__(
        self,
        endpoints: dict[str, ServerEndpoint],
        registry: ToolRegistry,
        *,
        timeout: float = 30.0,
        sessions: ProtocolSession | None = None,
    ):
        self._endpoints = dict(endpoints)
        self._registry = registry
        self._timeout = timeout
        self._sessions = sessions or ProtocolSession(timeout=timeout)
        self._request_ids = itertools.count(1)

    @property
    def sessions(self) -> ProtocolSession:
        return self._sessions

    def endpoint_for(self, tool_name: str) -> ServerEndpoint:
        server_key = self._registry.server_key_for(tool_name)
        endpoint = self._endpoints.get(server_key)
        if endpoint is None:
            logger.warning("no endpoint for server=%s tool=%s; falling back to default", server_key, tool_name)
            endpoint = self._endpoints.get(DEFAULT_SERVER_KEY)
        if endpoint is None:
            raise ConfigurationError(f"mcp_server_url_missing:{server_key}", tool_name=tool_name)
        return endpoint

    async def call(self, tool_name: str, arguments: dict[str, Any] | None = None) -> Any:
        args = {key: value for key, value in (arguments or {}).items() if value is not None}
        tool = self._registry.find_tool(tool_name)
        if tool is not None:
            _validate_arguments(tool, args)

        request = ToolCall(tool_name=tool_name, arguments=args)
        endpoint = self.endpoint_for(tool_name)
        session = await self._sessions.ensure(endpoint)
        payload = {
            "jsonrpc": "2.0",
            "method": "tools/call",
            "params": {"name": request.tool_name, "arguments": request.arguments},
            "id": next(self._request_ids),
        }
        logger.debug("mcp_call tool=%s server=%s session_id=%s", tool_name, endpoint.key, session.session_id)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    _endpoint_url(endpoint),
                    headers=_session_headers(endpoint, session.session_id),
                    params={"sessionId": session.session_id},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            logger.warning("mcp_call timeout tool=%s server=%s timeout=%s", tool_name, endpoint.key, self._timeout)
            raise TransportError(
                f"timed out after {self._timeout}s",
                tool_name=tool_name,
                error_code=WorkItemErrorCode.TRANSPORT_TIMEOUT,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("mcp_call network_error tool=%s server=%s error=%s", tool_name, endpoint.key, exc)
            raise TransportError(str(exc) or type(exc).__name__, tool_name=tool_name) from exc

        if not response.is_success:
            logger.warning("mcp_call http_error tool=%s status=%s", tool_name, response.status_code)
            raise TransportError(response.text[:300], tool_name=tool_name, status_code=response.status_code)

        try:
            return unwrap_rpc_result(parse_rpc_body(response.text, tool_name, payload["id"]), tool_name)
        except ToolError as exc:
            logger.error("mcp_tool_error tool=%s message=%s", tool_name, exc.reason)
            raise
        except TransportError as exc:
            logger.warning("mcp_protocol_error tool=%s detail=%s", tool_name, exc)
            raise


@lru_cache(maxsize=1)
def get_tool_invoker() -> ToolInvoker:
    settings = get_settings()
    registry = load_registry()
    return ToolInvoker(build_endpoints(settings, registry), registry, timeout=settings.mcp_timeout_sec)
