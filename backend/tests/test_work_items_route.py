import asyncio
import json
from types import SimpleNamespace

from fastapi import HTTPException
from starlette.requests import Request

from app.routes.work_items import create_work_items
from workitems.errors import ConfigurationError


def _request(body, path: str = "/api/work-items") -> Request:
    raw = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")

    async def _receive():
        return {"type": "http.request", "body": raw, "more_body": False}

    scope = {
        "type": "http",
        "method": "POST",
        "path": path,
        "headers": [(b"content-type", b"application/json")],
    }
    return Request(scope, _receive)


class _FakeCoordinator:
    def __init__(self, configuration_error=None):
        self.configuration_error = configuration_error
        self.received = []

    async def process_work_item(self, context, options):
        self.received.append((context, options))
        return SimpleNamespace(to_dict=lambda: {"results": {}, "content": context.generated_content})


def test_create_work_items_passes_context_and_options(monkeypatch):
    coordinator = _FakeCoordinator()
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: coordinator)

    body = {
        "componentName": "LoginButton",
        "generatedContent": "## Plan",
        "options": {"enableActiveCreation": True, "projectKey": "WEB", "epicKey": "WEB-1"},
    }
    out = asyncio.run(create_work_items(_request(body)))

    assert out == {"results": {}, "content": "## Plan"}
    context, options = coordinator.received[0]
    assert context.component_name == "LoginButton"
    assert options.enable_active_creation is True
    assert options.project_key == "WEB"
    assert options.epic_key == "WEB-1"


def test_create_work_items_requires_component_name(monkeypatch):
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: _FakeCoordinator())
    try:
        asyncio.run(create_work_items(_request({"generatedContent": "## Plan"})))
    except HTTPException as exc:
        assert exc.status_code == 400
        assert exc.detail == "component_name_required"
    else:
        assert False, "expected HTTPException"


def test_create_work_items_rejects_invalid_json(monkeypatch):
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: _FakeCoordinator())
    try:
        asyncio.run(create_work_items(_request(b"{not json")))
    except HTTPException as exc:
        assert exc.status_code == 400
        assert exc.detail == "invalid_json_body"
    else:
        assert False, "expected HTTPException"


def test_create_work_items_configuration_error_blocks_active_creation(monkeypatch):
    coordinator = _FakeCoordinator(ConfigurationError("mcp_server_url_missing:jira"))
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: coordinator)

    body = {"componentName": "LoginButton", "options": {"enableActiveCreation": True}}
    try:
        asyncio.run(create_work_items(_request(body)))
    except HTTPException as exc:
        assert exc.status_code == 500
        assert exc.detail == "work_item_configuration_missing:mcp_server_url_missing:jira"
    else:
        assert False, "expected HTTPException"
    assert coordinator.received == []


def test_create_work_items_configuration_error_allows_content_only(monkeypatch):
    coordinator = _FakeCoordinator(ConfigurationError("mcp_server_url_missing:jira"))
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: coordinator)

    out = asyncio.run(create_work_items(_request({"componentName": "LoginButton", "generatedContent": "x"})))

    assert out["content"] == "x"
    assert coordinator.received[0][1].enable_active_creation is False


def test_create_work_items_rejects_non_boolean_activation_flag(monkeypatch):
    coordinator = _FakeCoordinator()
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: coordinator)
    body = {"componentName": "LoginButton", "options": {"enableActiveCreation": "yes"}}
    try:
        asyncio.run(create_work_items(_request(body)))
    except HTTPException as exc:
        assert exc.status_code == 400
        assert exc.detail == "enable_active_creation_must_be_boolean"
    else:
        assert False, "expected HTTPException"
    assert coordinator.received == []


def test_create_work_items_string_false_stays_inactive(monkeypatch):
    coordinator = _FakeCoordinator(ConfigurationError("mcp_server_url_missing:jira"))
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: coordinator)
    body = {"componentName": "LoginButton", "generatedContent": "## Plan", "options": {"enableActiveCreation": "false"}}

    asyncio.run(create_work_items(_request(body)))

    _, options = coordinator.received[0]
    assert options.enable_active_creation is False


def test_create_work_items_rejects_non_array_frame_data(monkeypatch):
    monkeypatch.setattr("app.routes.work_items.get_work_item_coordinator", lambda: _FakeCoordinator())
    try:
        asyncio.run(create_work_items(_request({"componentName": "LoginButton", "frameData": 5})))
    except HTTPException as exc:
        assert exc.status_code == 400
        assert exc.detail == "frame_data_must_be_array"
    else:
        assert False, "expected HTTPException"
