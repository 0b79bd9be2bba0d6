from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
import tempfile
import time
from json import JSONDecodeError
from pathlib import Path
from typing import Any, Callable

import httpx

from workitems.types import PreparedAttachment

logger = logging.getLogger(__name__)

_DATA_URI_PATTERN = re.compile(r"^data:image/[\w.+-]+;base64,", re.IGNORECASE)
_WRAPPER_KEYS = ("url", "dataUrl", "content", "data")
_MIN_BARE_BASE64_LENGTH = 200


def _safe_identifier(identifier: str | None) -> str:
    safe = re.sub(r"[^a-zA-Z0-9_-]", "", identifier or "")
    return safe or f"img-{int(time.time() * 1000)}"


def _unwrap(value: dict[str, Any]) -> Any:
    for key in _WRAPPER_KEYS:
        inner = value.get(key)
        if isinstance(inner, str) and inner.strip():
            return inner
    return None


def normalize_image_source(source: Any) -> str | None:
    if isinstance(source, dict):
        source = _unwrap(source)
    if not isinstance(source, str):
        return None
    text = source.strip()
    if text.startswith("{"):
        # Some plugins send the wrapper object JSON-encoded inside a text field.
        try:
            parsed = json.loads(text)
        except JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            inner = _unwrap(parsed)
            text = inner.strip() if inner else ""
    return text or None


def is_remote_url(text: str) -> bool:
    return text.lower().startswith(("http://", "https://"))


def looks_like_base64(text: str) -> bool:
    if _DATA_URI_PATTERN.match(text):
        return True
    return not is_remote_url(text) and len(text) > _MIN_BARE_BASE64_LENGTH


def decode_base64_image(text: str) -> bytes:
    payload = _DATA_URI_PATTERN.sub("", text, count=1)
    try:
        return base64.b64decode("".join(payload.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid_base64_image") from exc


def _make_cleanup(path: Path, owned: bool) -> Callable[[], None]:
    done = False

    def cleanup() -> None:
        nonlocal done
        if done or not owned:
            return
        done = True
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("attachment cleanup failed path=%s error=%s", path, exc)

    return cleanup


class AttachmentPipeline:
    def __init__(self, *, download_timeout: float = 20.0, temp_dir: str | Path | None = None):
        self._download_timeout = download_timeout
        self._temp_dir = str(temp_dir) if temp_dir else None

    def _write_temp(self, safe_id: str, data: bytes) -> Path:
        fd, name = tempfile.mkstemp(prefix=f"design-{safe_id}-", suffix=".png", dir=self._temp_dir)
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
        except OSError:
            path.unlink(missing_ok=True)
            raise
        return path

    async def _download(self, url: str) -> bytes | None:
        logger.info("attachment download url=%s", url[:80])
        async with httpx.AsyncClient(timeout=self._download_timeout, follow_redirects=True) as client:
            response = await client.get(url)
        if not response.is_success:
            logger.warning("attachment download failed url=%s status=%s", url[:80], response.status_code)
            return None
        return response.content

    def _prepared(self, path: Path, safe_id: str, *, owned: bool) -> PreparedAttachment:
        return PreparedAttachment(
            path=path,
            filename=f"preview-{safe_id}.png",
            cleanup=_make_cleanup(path, owned),
            owned=owned,
        )

    async def prepare(
        self,
        *,
        image_path: str | None = None,
        source: Any = None,
        identifier: str | None = None,
    ) -> PreparedAttachment | None:
        safe_id = _safe_identifier(identifier)
        if image_path and os.path.isfile(image_path):
            return self._prepared(Path(image_path), safe_id, owned=False)

        text = normalize_image_source(source)
        if not text:
            return None
        logger.info("attachment prepare id=%s source_length=%s", safe_id, len(text))

        try:
            if not _DATA_URI_PATTERN.match(text) and not is_remote_url(text) and os.path.isfile(text):
                return self._prepared(Path(text), safe_id, owned=False)
            if looks_like_base64(text):
                path = self._write_temp(safe_id, decode_base64_image(text))
                return self._prepared(path, safe_id, owned=True)
            if is_remote_url(text):
                data = await self._download(text)
                if data is None:
                    return None
                path = self._write_temp(safe_id, data)
                logger.info("attachment downloaded path=%s", path)
                return self._prepared(path, safe_id, owned=True)
        except (httpx.HTTPError, OSError, ValueError) as exc:
            logger.warning("attachment prepare failed id=%s error=%s", safe_id, exc)
            return None

        logger.info("attachment source not recognised id=%s", safe_id)
        return None
