from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from workitems.coordinator import get_work_item_coordinator
from workitems.types import WorkItemContext, WorkItemOptions

router = APIRouter(prefix="/api", tags=["work-items"])
logger = logging.getLogger(__name__)


async def read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="invalid_json_body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="json_object_required")
    return payload


@router.post("/work-items")
async def create_work_items(request: Request):
    payload = await read_json_object(request)
    try:
        context = WorkItemContext.from_payload(payload)
        options = WorkItemOptions.from_payload(payload.get("options"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    coordinator = get_work_item_coordinator()
    if options.enable_active_creation and coordinator.configuration_error is not None:
        logger.error("work_items rejected: %s", coordinator.configuration_error)
        raise HTTPException(
            status_code=500,
            detail=f"work_item_configuration_missing:{coordinator.configuration_error.reason}",
        )

    outcome = await coordinator.process_work_item(context, options)
    return outcome.to_dict()
