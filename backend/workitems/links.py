from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from supabase import create_client

from app.core.config import get_settings
from workitems.results import ArtifactResult

logger = logging.getLogger(__name__)


def _links_table_name(settings: Any) -> str:
    value = str(getattr(settings, "work_item_links_table", "") or "").strip()
    return value or "work_item_links"


def build_work_item_link(
    *,
    component_name: str,
    run_id: str,
    results: Mapping[str, ArtifactResult],
) -> dict[str, Any]:
    jira = results.get("jira") or ArtifactResult()
    wiki = results.get("wiki") or ArtifactResult()
    git = results.get("git") or ArtifactResult()
    return {
        "component_name": component_name,
        "issue_key": jira.identifier,
        "issue_url": jira.url,
        "page_id": wiki.identifier,
        "page_url": wiki.url,
        "branch": git.identifier,
        "run_id": run_id,
        "statuses": {name: str(result.status) for name, result in results.items()},
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


def persist_work_item_link(link: dict[str, Any], settings: Any = None) -> bool:
    settings = settings or get_settings()
    if not settings.supabase_url or not settings.supabase_service_role_key:
        logger.debug("work_item_links skipped: supabase not configured")
        return False
    table = _links_table_name(settings)
    try:
        client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        client.table(table).upsert(link, on_conflict="component_name,run_id").execute()
    except Exception as exc:
        logger.warning("failed to persist work_item_links: %s", exc)
        return False
    logger.info("work_item_links persisted component=%s run_id=%s", link.get("component_name"), link.get("run_id"))
    return True
