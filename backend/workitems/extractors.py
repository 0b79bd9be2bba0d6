from __future__ import annotations

from typing import Any
from urllib.parse import urlparse


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_text(*candidates: Any) -> str:
    for candidate in candidates:
        value = str(candidate or "").strip()
        if value:
            return value
    return ""


def extract_issue(payload: Any) -> dict[str, Any]:
    data = _as_dict(payload)
    issue = _as_dict(data.get("issue"))
    return issue or data


def extract_issue_key(payload: Any) -> str:
    issue = extract_issue(payload)
    return _first_text(issue.get("key"), issue.get("issue_key"), issue.get("identifier"))


def extract_issue_self_link(payload: Any) -> str:
    issue = extract_issue(payload)
    return _first_text(issue.get("self"), _as_dict(issue.get("_links")).get("self"))


def extract_issue_web_url(payload: Any) -> str:
    issue = extract_issue(payload)
    url = _first_text(issue.get("url"), issue.get("web_url"), issue.get("browse_url"))
    key = extract_issue_key(payload)
    if not url:
        self_link = extract_issue_self_link(payload)
        url = self_link if key else ""
    if "/rest/api/" in url and key:
        parsed = urlparse(url)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}/browse/{key}"
    return url


def extract_search_issues(payload: Any) -> list[dict[str, Any]]:
    data = _as_dict(payload)
    for key in ("issues", "results", "nodes"):
        items = data.get(key)
        if isinstance(items, list):
            return [item for item in items if isinstance(item, dict)]
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    return []


def extract_page_id(payload: Any) -> str:
    data = _as_dict(payload)
    page = _as_dict(data.get("page"))
    return _first_text(data.get("id"), page.get("id"), _as_dict(data.get("metadata")).get("id"))


def extract_page_self_link(payload: Any) -> str:
    data = _as_dict(payload)
    page = _as_dict(data.get("page"))
    return _first_text(_as_dict(data.get("_links")).get("self"), _as_dict(page.get("_links")).get("self"))


def _links_url(links: dict[str, Any]) -> str:
    base = str(links.get("base") or "").strip()
    webui = str(links.get("webui") or "").strip()
    if base and webui:
        return f"{base.rstrip('/')}{webui}"
    return ""


def extract_page_url(payload: Any) -> str:
    data = _as_dict(payload)
    page = _as_dict(data.get("page"))
    return _first_text(
        page.get("url"),
        _links_url(_as_dict(page.get("_links"))),
        data.get("url"),
        _links_url(_as_dict(data.get("_links"))),
    )


def page_exists(payload: Any) -> bool:
    data = _as_dict(payload)
    if not data:
        return False
    if data.get("id") or data.get("page"):
        return True
    if _as_dict(data.get("metadata")).get("id"):
        return True
    results = data.get("results")
    if isinstance(results, list) and results:
        return True
    size = data.get("size")
    return isinstance(size, int) and not isinstance(size, bool) and size > 0
