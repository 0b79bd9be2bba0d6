from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from app.routes.work_items import read_json_object
from workitems.coordinator import get_work_item_coordinator
from workitems.errors import WorkItemError
from workitems.extractors import extract_page_id, extract_page_url

router = APIRouter(prefix="/api", tags=["wiki"])
logger = logging.getLogger(__name__)


def _failure(error: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"success": False, "error": error})


@router.post("/retry-wiki")
async def retry_wiki(request: Request):
    payload = await read_json_object(request)
    title = str(payload.get("title") or "").strip()
    content = payload.get("content")
    if not title or not isinstance(content, str) or not content.strip():
        raise HTTPException(status_code=400, detail="title_and_content_required")

    coordinator = get_work_item_coordinator()
    resources = coordinator.resources
    if resources is None:
        reason = coordinator.configuration_error.reason if coordinator.configuration_error else "resources_unavailable"
        return _failure(f"configuration_missing:{reason}")

    try:
        result = await resources.create_page(
            title,
            content,
            space_key=str(payload.get("spaceKey") or "").strip() or None,
            parent_id=str(payload.get("parentId") or "").strip() or None,
        )
    except WorkItemError as exc:
        logger.warning("retry_wiki failed title=%s detail=%s", title, exc)
        return _failure(str(exc))

    page_id = extract_page_id(result)
    url = extract_page_url(result)
    base = str(resources.settings.confluence_base_url or "").strip()
    if not url and base and page_id:
        url = f"{base.rstrip('/')}/pages/viewpage.action?pageId={page_id}"
    logger.info("retry_wiki ok title=%s page_id=%s", title, page_id)
    return {"success": True, "url": url or None, "pageId": page_id or None}
