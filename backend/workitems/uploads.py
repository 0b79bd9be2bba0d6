from __future__ import annotations

import base64
import logging
from pathlib import Path

import httpx

from workitems.errors import ConfigurationError, TransportError
from workitems.registry import format_auth_header

logger = logging.getLogger(__name__)


def rest_auth_header(*, username: str | None, token: str | None, fallback: str | None = None) -> str | None:
    user = (username or "").strip()
    secret = (token or "").strip()
    if user and secret:
        raw = f"{user}:{secret}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"
    return format_auth_header(secret, default_scheme="Bearer") or fallback


def resolve_issue_upload_url(issue_key: str, *, self_link: str | None, base_url: str | None) -> str:
    if self_link:
        return f"{self_link.rstrip('/')}/attachments"
    base = (base_url or "").strip()
    if not base:
        raise ConfigurationError("jira_base_url_missing_and_no_self_link", tool_name="jira_direct_upload")
    return f"{base.rstrip('/')}/rest/api/2/issue/{issue_key}/attachments"


def resolve_page_upload_url(page_id: str, *, self_link: str | None, base_url: str | None) -> str:
    if self_link:
        return f"{self_link.rstrip('/')}/child/attachment"
    base = (base_url or "").strip()
    if not base:
        raise ConfigurationError("confluence_base_url_missing_and_no_self_link", tool_name="confluence_direct_upload")
    return f"{base.rstrip('/')}/rest/api/content/{page_id}/child/attachment"


async def upload_attachment_direct(
    upload_url: str,
    file_path: Path,
    filename: str,
    *,
    auth_header: str | None,
    timeout: float = 30.0,
) -> None:
    path = Path(file_path)
    try:
        content = path.read_bytes()
    except OSError as exc:
        raise TransportError(f"file_unreadable:{path}", tool_name="direct_upload") from exc

    headers = {"X-Atlassian-Token": "no-check"}
    if auth_header:
        headers["Authorization"] = auth_header
    files = {"file": (filename, content, "image/png")}

    logger.debug("direct_upload url=%s filename=%s", upload_url, filename)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(upload_url, headers=headers, files=files)
    except httpx.HTTPError as exc:
        raise TransportError(str(exc) or type(exc).__name__, tool_name="direct_upload") from exc

    if not response.is_success:
        raise TransportError(response.text[:300], tool_name="direct_upload", status_code=response.status_code)
