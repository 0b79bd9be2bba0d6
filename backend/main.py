import json
import logging
import uuid
from json import JSONDecodeError

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.routes.retry_wiki import router as retry_wiki_router
from app.routes.work_items import router as work_items_router
from workitems.registry import ToolSpecValidationError, validate_registry_on_startup

settings = get_settings()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("workitems-backend")

app = FastAPI(title="work items backend", version="0.1.0")


def _normalize_origin(value: str) -> str:
    # Env values may carry quotes or a trailing slash.
    return value.strip().strip("\"'").rstrip("/")


def parse_allowed_origins(raw: str, fallback_frontend_url: str) -> list[str]:
    text = (raw or "").strip()
    parsed: list[str] = []

    if text.startswith("[") and text.endswith("]"):
        try:
            items = json.loads(text)
        except JSONDecodeError:
            items = None
        if isinstance(items, list):
            parsed.extend(str(item) for item in items if isinstance(item, str))

    if not parsed:
        parsed.extend(part for part in text.replace("\n", ",").split(",") if part.strip())
    if fallback_frontend_url:
        parsed.append(fallback_frontend_url)

    origins: list[str] = []
    for item in parsed:
        origin = _normalize_origin(item)
        if origin and origin not in origins:
            origins.append(origin)
    return origins


origins = parse_allowed_origins(settings.allowed_origins, settings.frontend_url)
logger.info("cors_allowed_origins=%s", origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def validate_tool_specs() -> None:
    if not settings.tool_specs_validate_on_startup:
        logger.info("tool_specs_validation skipped (TOOL_SPECS_VALIDATE_ON_STARTUP=false)")
        return
    try:
        summary = validate_registry_on_startup()
    except ToolSpecValidationError as exc:
        logger.exception("tool_specs_validation failed")
        raise RuntimeError(f"Tool spec validation failed: {exc}") from exc
    logger.info(
        "tool_specs_validation ok server_count=%s tool_count=%s",
        summary["server_count"],
        summary["tool_count"],
    )


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning("http_error request_id=%s path=%s detail=%s", request_id, request.url.path, exc.detail)
    message = exc.detail if isinstance(exc.detail, str) else "Request could not be processed."
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"message": message, "request_id": request_id}},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception("unhandled_error request_id=%s path=%s", request_id, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"message": "Internal server error. Please try again later.", "request_id": request_id}},
    )


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


app.include_router(work_items_router)
app.include_router(retry_wiki_router)
