import asyncio
import json
from types import SimpleNamespace

from fastapi import HTTPException
from starlette.requests import Request

from app.routes.retry_wiki import retry_wiki
from workitems.errors import ConfigurationError, ToolError


def _request(body: dict) -> Request:
    raw = json.dumps(body).encode("utf-8")

    async def _receive():
        return {"type": "http.request", "body": raw, "more_body": False}

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/retry-wiki",
        "headers": [(b"content-type", b"application/json")],
    }
    return Request(scope, _receive)


class _FakeResources:
    def __init__(self, result=None, error=None):
        self.settings = SimpleNamespace(confluence_base_url="https://wiki.example.com")
        self.result = result
        self.error = error
        self.calls = []

    async def create_page(self, title, content, *, space_key=None, parent_id=None):
        self.calls.append({"title": title, "content": content, "space_key": space_key, "parent_id": parent_id})
        if self.error is not None:
            raise self.error
        return self.result


def _install(monkeypatch, resources, configuration_error=None):
    coordinator = SimpleNamespace(resources=resources, configuration_error=configuration_error)
    monkeypatch.setattr("app.routes.retry_wiki.get_work_item_coordinator", lambda: coordinator)


def test_retry_wiki_creates_page(monkeypatch):
    resources = _FakeResources(result={"id": "42"})
    _install(monkeypatch, resources)

    body = {"title": "Implementation Plan: X", "content": "# Body", "spaceKey": "ENG", "parentId": "7"}
    out = asyncio.run(retry_wiki(_request(body)))

    assert out == {
        "success": True,
        "url": "https://wiki.example.com/pages/viewpage.action?pageId=42",
        "pageId": "42",
    }
    assert resources.calls[0]["space_key"] == "ENG"
    assert resources.calls[0]["parent_id"] == "7"


def test_retry_wiki_requires_title_and_content(monkeypatch):
    _install(monkeypatch, _FakeResources())
    try:
        asyncio.run(retry_wiki(_request({"title": "Plan", "content": "  "})))
    except HTTPException as exc:
        assert exc.status_code == 400
        assert exc.detail == "title_and_content_required"
    else:
        assert False, "expected HTTPException"


def test_retry_wiki_failure_returns_500(monkeypatch):
    _install(monkeypatch, _FakeResources(error=ToolError("space not found", tool_name="confluence_create_page")))

    response = asyncio.run(retry_wiki(_request({"title": "Plan", "content": "# Body"})))

    assert response.status_code == 500
    assert json.loads(response.body) == {
        "success": False,
        "error": "confluence_create_page:TOOL_FAILED|message=space not found",
    }


def test_retry_wiki_without_configuration_returns_500(monkeypatch):
    _install(monkeypatch, None, ConfigurationError("mcp_server_url_missing:confluence"))

    response = asyncio.run(retry_wiki(_request({"title": "Plan", "content": "# Body"})))

    assert response.status_code == 500
    assert json.loads(response.body)["error"] == "configuration_missing:mcp_server_url_missing:confluence"
