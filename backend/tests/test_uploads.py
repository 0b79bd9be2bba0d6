import asyncio
import base64

import httpx

from workitems.errors import ConfigurationError, TransportError
from workitems.uploads import (
    resolve_issue_upload_url,
    resolve_page_upload_url,
    rest_auth_header,
    upload_attachment_direct,
)


def test_rest_auth_header_prefers_basic_with_username():
    header = rest_auth_header(username="bot@example.com", token="secret", fallback="Token mcp")
    assert header == "Basic " + base64.b64encode(b"bot@example.com:secret").decode("ascii")


def test_rest_auth_header_bearer_then_fallback():
    assert rest_auth_header(username=None, token="secret") == "Bearer secret"
    assert rest_auth_header(username=None, token="Token raw") == "Token raw"
    assert rest_auth_header(username="bot", token=None, fallback="Token mcp") == "Token mcp"


def test_resolve_upload_urls():
    assert (
        resolve_issue_upload_url("DS-1", self_link="https://jira.example.com/rest/api/2/issue/10/", base_url=None)
        == "https://jira.example.com/rest/api/2/issue/10/attachments"
    )
    assert (
        resolve_issue_upload_url("DS-1", self_link=None, base_url="https://jira.example.com/")
        == "https://jira.example.com/rest/api/2/issue/DS-1/attachments"
    )
    assert (
        resolve_page_upload_url("55", self_link=None, base_url="https://wiki.example.com")
        == "https://wiki.example.com/rest/api/content/55/child/attachment"
    )


def test_resolve_upload_url_without_base_raises():
    try:
        resolve_page_upload_url("55", self_link=None, base_url="")
    except ConfigurationError as exc:
        assert exc.reason == "confluence_base_url_missing_and_no_self_link"
    else:
        assert False, "expected ConfigurationError"


def test_upload_attachment_direct_posts_multipart(monkeypatch, tmp_path):
    path = tmp_path / "shot.png"
    path.write_bytes(b"\x89PNG")
    captured: dict = {}

    class _FakeClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, files=None):
            captured.update({"url": url, "headers": headers, "files": files})
            return httpx.Response(200, text="[]")

    monkeypatch.setattr("workitems.uploads.httpx.AsyncClient", lambda *args, **kwargs: _FakeClient())

    asyncio.run(
        upload_attachment_direct(
            "https://jira.example.com/rest/api/2/issue/DS-1/attachments",
            path,
            "preview-1.png",
            auth_header="Bearer secret",
        )
    )

    assert captured["headers"] == {"X-Atlassian-Token": "no-check", "Authorization": "Bearer secret"}
    assert captured["files"] == {"file": ("preview-1.png", b"\x89PNG", "image/png")}


def test_upload_attachment_direct_error_status(monkeypatch, tmp_path):
    path = tmp_path / "shot.png"
    path.write_bytes(b"\x89PNG")

    class _FakeClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, headers=None, files=None):
            return httpx.Response(403, text="XSRF check failed")

    monkeypatch.setattr("workitems.uploads.httpx.AsyncClient", lambda *args, **kwargs: _FakeClient())

    try:
        asyncio.run(upload_attachment_direct("https://x/attachments", path, "p.png", auth_header=None))
    except TransportError as exc:
        assert exc.status_code == 403
        assert exc.reason == "XSRF check failed"
    else:
        assert False, "expected TransportError"


def test_upload_attachment_direct_missing_file(tmp_path):
    try:
        asyncio.run(upload_attachment_direct("https://x/attachments", tmp_path / "gone.png", "p.png", auth_header=None))
    except TransportError as exc:
        assert exc.reason.startswith("file_unreadable:")
    else:
        assert False, "expected TransportError"
