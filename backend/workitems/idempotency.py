from __future__ import annotations

import logging
import time
from typing import Any, Callable

from workitems.errors import ConflictError, NotFoundError, WorkItemError
from workitems.extractors import page_exists
from workitems.resources import ResourceOperations

logger = logging.getLogger(__name__)

DEFAULT_CONFLICT_MARKERS = ("exist", "conflict", "unique", "500", "internal server error")
MAX_TITLE_LENGTH = 200


def parse_conflict_markers(raw: str | None) -> tuple[str, ...]:
    markers = tuple(part.strip().lower() for part in str(raw or "").split(",") if part.strip())
    return markers or DEFAULT_CONFLICT_MARKERS


def build_open_issue_jql(project_key: str, summary: str) -> str:
    # Phrase search cannot carry nested quotes.
    phrase = " ".join(summary.replace('"', " ").split())
    return f'project = "{project_key}" AND summary ~ "\\"{phrase}\\"" AND statusCategory != Done'


class IdempotencyResolver:
    def __init__(
        self,
        resources: ResourceOperations,
        *,
        probe_limit: int = 5,
        create_retry_limit: int = 5,
        conflict_markers: tuple[str, ...] = DEFAULT_CONFLICT_MARKERS,
        clock: Callable[[], float] = time.time,
    ):
        self._resources = resources
        self._probe_limit = max(1, probe_limit)
        self._create_retry_limit = max(1, create_retry_limit)
        self._conflict_markers = conflict_markers
        self._clock = clock

    @classmethod
    def from_settings(cls, resources: ResourceOperations, settings: Any) -> "IdempotencyResolver":
        return cls(
            resources,
            probe_limit=settings.wiki_title_probe_limit,
            create_retry_limit=settings.wiki_create_retry_limit,
            conflict_markers=parse_conflict_markers(settings.wiki_conflict_markers),
        )

    def _millis(self) -> int:
        return int(self._clock() * 1000)

    def is_conflict(self, error: BaseException) -> bool:
        if isinstance(error, ConflictError):
            return True
        message = str(error).lower()
        return any(marker in message for marker in self._conflict_markers)

    async def find_existing_issue(self, project_key: str, summary: str) -> dict[str, Any] | None:
        jql = build_open_issue_jql(project_key, summary)
        try:
            issue = await self._resources.find_first_issue(jql)
        except NotFoundError:
            return None
        except WorkItemError as exc:
            logger.warning("issue duplicate check failed project=%s detail=%s; proceeding with creation", project_key, exc)
            return None
        logger.info("existing issue found project=%s key=%s", project_key, issue.get("key"))
        return issue

    async def predict_page_title(self, base_title: str, space_key: str | None) -> str:
        base = base_title[:MAX_TITLE_LENGTH]
        for attempt in range(self._probe_limit):
            candidate = base if attempt == 0 else f"{base} ({attempt})"
            lookup = await self._resources.get_page(candidate, space_key)
            if not page_exists(lookup):
                return candidate
            logger.info("wiki title taken title=%s", candidate)
        fallback = f"{base} ({self._millis()})"
        logger.info("wiki title probes exhausted limit=%s; using %s", self._probe_limit, fallback)
        return fallback

    def _fresh_title(self, base: str, tried: set[str]) -> str:
        suffix = self._millis() % 10000
        candidate = f"{base} ({suffix:04d})"
        while candidate in tried:
            suffix = (suffix + 1) % 10000
            candidate = f"{base} ({suffix:04d})"
        return candidate

    async def create_page_with_retry(
        self,
        base_title: str,
        content: str,
        *,
        space_key: str | None = None,
        parent_id: str | None = None,
        first_title: str | None = None,
    ) -> tuple[str, Any]:
        base = base_title[:MAX_TITLE_LENGTH]
        title = first_title or base
        tried: set[str] = set()
        last_error: WorkItemError | None = None
        for attempt in range(1, self._create_retry_limit + 1):
            tried.add(title)
            logger.info("wiki create attempt=%s title=%s", attempt, title)
            try:
                result = await self._resources.create_page(title, content, space_key=space_key, parent_id=parent_id)
                return title, result
            except WorkItemError as exc:
                if not self.is_conflict(exc):
                    raise
                last_error = exc
                logger.warning("wiki title unavailable title=%s detail=%s; retrying", title, exc)
                title = self._fresh_title(base, tried)
        raise ConflictError(
            f"page not created after {self._create_retry_limit} attempts: {last_error.reason if last_error else 'conflict'}",
            tool_name="confluence_create_page",
        )

    async def create_unique_page(
        self,
        base_title: str,
        content: str,
        *,
        space_key: str | None = None,
        parent_id: str | None = None,
    ) -> tuple[str, Any]:
        predicted = await self.predict_page_title(base_title, space_key)
        logger.info("wiki title predicted title=%s", predicted)
        return await self.create_page_with_retry(
            base_title,
            content,
            space_key=space_key,
            parent_id=parent_id,
            first_title=predicted,
        )
