from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Mapping, Protocol

from app.core.config import get_settings
from workitems.attachments import AttachmentPipeline
from workitems.errors import ConfigurationError, ToolError, WorkItemError
from workitems.extractors import (
    extract_issue_key,
    extract_issue_self_link,
    extract_issue_web_url,
    extract_page_id,
    extract_page_self_link,
    extract_page_url,
)
from workitems.formatting import (
    embed_wiki_image,
    format_issue_description,
    format_wiki_body,
    generate_branch_name,
    inject_related_work,
    issue_summary,
    strip_wrapping_fence,
    wiki_title,
)
from workitems.idempotency import IdempotencyResolver
from workitems.links import build_work_item_link, persist_work_item_link
from workitems.protocol import get_tool_invoker
from workitems.resources import ResourceOperations, ToolCaller
from workitems.results import ArtifactResult, ArtifactStatus, WorkItemResults
from workitems.types import IssueDraft, PreparedAttachment, WorkItemContext, WorkItemOptions

logger = logging.getLogger(__name__)

LinkRecorder = Callable[[dict[str, Any]], bool]


class TicketGenerator(Protocol):
    async def generate(self, context: WorkItemContext) -> str | dict[str, Any]: ...


class ScreenshotService(Protocol):
    async def capture(self, context: WorkItemContext) -> Any: ...


@dataclass(frozen=True)
class WorkItemOutcome:
    results: Mapping[str, ArtifactResult]
    content: str
    error: str | None = None
    run_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "content": self.content,
        }
        if self.error:
            payload["error"] = self.error
        return payload


_REMOTE_STATUSES = (ArtifactStatus.CREATED, ArtifactStatus.EXISTING)


class WorkflowCoordinator:
    def __init__(
        self,
        resources: ResourceOperations | None,
        resolver: IdempotencyResolver | None,
        attachments: AttachmentPipeline,
        *,
        settings: Any,
        ticket_generator: TicketGenerator | None = None,
        screenshot_service: ScreenshotService | None = None,
        link_recorder: LinkRecorder | None = None,
        configuration_error: ConfigurationError | None = None,
    ):
        self._resources = resources
        self._resolver = resolver
        self._attachments = attachments
        self._settings = settings
        self._ticket_generator = ticket_generator
        self._screenshot_service = screenshot_service
        self._link_recorder = link_recorder
        self._configuration_error = configuration_error

    @property
    def resources(self) -> ResourceOperations | None:
        return self._resources

    @property
    def configuration_error(self) -> ConfigurationError | None:
        return self._configuration_error

    async def process_work_item(
        self,
        context: WorkItemContext,
        options: WorkItemOptions | None = None,
    ) -> WorkItemOutcome:
        options = options or WorkItemOptions()
        run_id = f"wi_{uuid.uuid4().hex[:12]}"
        results = WorkItemResults()
        logger.info(
            "work_item start run_id=%s component=%s active=%s",
            run_id,
            context.component_name,
            options.enable_active_creation,
        )

        try:
            content, generated_title = await self._resolve_content(context)
        except Exception as exc:
            logger.exception("work_item content generation failed run_id=%s", run_id)
            results.fail_all(f"content_generation_failed:{exc}")
            return WorkItemOutcome(results.snapshot(), "", f"content_generation_failed:{exc}", run_id)
        if not content:
            error = "content_generation_empty"
            results.fail_all(error)
            return WorkItemOutcome(results.snapshot(), "", error, run_id)

        branch = generate_branch_name(context.component_name)
        results.advance(
            "jira",
            ArtifactStatus.GENERATED,
            content=format_issue_description(content),
            title=generated_title or issue_summary(context.component_name),
        )
        results.advance(
            "wiki",
            ArtifactStatus.GENERATED,
            content=format_wiki_body(content, context),
            title=wiki_title(context.component_name),
        )
        results.advance("git", ArtifactStatus.GENERATED, content=branch, identifier=branch)

        resources, resolver = self._resources, self._resolver
        if not options.enable_active_creation or resources is None or resolver is None:
            logger.info("work_item content only run_id=%s", run_id)
            return WorkItemOutcome(results.snapshot(), content, None, run_id)

        attachment = await self._prepare_attachment(context)
        try:
            await self._run_issue_stage(resources, resolver, context, options, results, attachment)
            await self._run_wiki_stage(resources, resolver, context, options, results, attachment)
        finally:
            if attachment is not None:
                attachment.cleanup()

        await self._run_cross_link_stage(resources, results)
        await self._run_branch_stage(resources, options, results)
        self._record_links(context, run_id, results)

        snapshot = results.snapshot()
        logger.info(
            "work_item done run_id=%s statuses=%s",
            run_id,
            ",".join(f"{name}:{result.status}" for name, result in snapshot.items()),
        )
        return WorkItemOutcome(snapshot, content, None, run_id)

    async def _resolve_content(self, context: WorkItemContext) -> tuple[str, str | None]:
        if context.generated_content:
            return strip_wrapping_fence(context.generated_content), None
        if self._ticket_generator is None:
            return "", None
        generated = await self._ticket_generator.generate(context)
        if isinstance(generated, dict):
            title = str(generated.get("title") or "").strip() or None
            content = generated.get("content")
            return strip_wrapping_fence(content if isinstance(content, str) else None), title
        return strip_wrapping_fence(generated if isinstance(generated, str) else None), None

    async def _prepare_attachment(self, context: WorkItemContext) -> PreparedAttachment | None:
        source = context.screenshot
        if not source and not context.image_path and self._screenshot_service is not None:
            try:
                source = await self._screenshot_service.capture(context)
            except Exception:
                logger.exception("work_item screenshot capture failed component=%s", context.component_name)
                source = None
        frame = context.first_frame or {}
        identifier = str(frame.get("id") or context.component_name)
        try:
            return await self._attachments.prepare(image_path=context.image_path, source=source, identifier=identifier)
        except Exception:
            logger.exception("work_item attachment prepare failed component=%s", context.component_name)
            return None

    def _issue_url(self, payload: Any, issue_key: str) -> str | None:
        url = extract_issue_web_url(payload)
        base = str(self._settings.jira_base_url or "").strip()
        if not url and base:
            url = f"{base.rstrip('/')}/browse/{issue_key}"
        return url or None

    def _page_url(self, payload: Any, page_id: str) -> str | None:
        url = extract_page_url(payload)
        base = str(self._settings.confluence_base_url or "").strip()
        if not url and base and page_id:
            url = f"{base.rstrip('/')}/pages/viewpage.action?pageId={page_id}"
        return url or None

    async def _run_issue_stage(
        self,
        resources: ResourceOperations,
        resolver: IdempotencyResolver,
        context: WorkItemContext,
        options: WorkItemOptions,
        results: WorkItemResults,
        attachment: PreparedAttachment | None,
    ) -> None:
        draft_state = results.get("jira")
        summary = draft_state.title or issue_summary(context.component_name)
        project_key = options.project_key or context.project_key or self._settings.jira_project_key

        try:
            existing = await resolver.find_existing_issue(project_key, summary)
            if existing:
                issue_key = extract_issue_key(existing)
                results.advance(
                    "jira",
                    ArtifactStatus.EXISTING,
                    identifier=issue_key or None,
                    url=self._issue_url(existing, issue_key),
                )
                logger.info("work_item issue reused key=%s", issue_key)
                return

            draft = IssueDraft(
                project_key=project_key,
                summary=summary,
                description=draft_state.content or "",
                issue_type=options.issue_type or self._settings.jira_issue_type or "Task",
            )
            created = await resources.create_issue(draft)
            issue_key = extract_issue_key(created)
            if not issue_key:
                raise ToolError("issue_key_missing", tool_name="jira_create_issue")
            results.advance(
                "jira",
                ArtifactStatus.CREATED,
                identifier=issue_key,
                url=self._issue_url(created, issue_key),
            )
        except Exception as exc:
            logger.exception("work_item issue stage failed project=%s", project_key)
            results.advance("jira", ArtifactStatus.FAILED_CREATION, error=str(exc))
            return

        details: dict[str, Any] = {}
        if options.epic_key:
            try:
                linked = await resources.link_issue_to_epic(issue_key, options.epic_key)
                details["epic_linked"] = linked is not None
            except Exception:
                logger.exception("work_item epic link failed issue=%s epic=%s", issue_key, options.epic_key)
                details["epic_linked"] = False

        if attachment is not None:
            try:
                attach_details = await self._attach_to_issue(
                    resources,
                    issue_key,
                    extract_issue_self_link(created),
                    attachment,
                    draft.description,
                )
                details.update(attach_details)
            except Exception:
                logger.exception("work_item issue attachment failed issue=%s", issue_key)
                details["attachment_uploaded"] = False
        if details:
            results.update("jira", details=details)

    async def _attach_to_issue(
        self,
        resources: ResourceOperations,
        issue_key: str,
        self_link: str,
        attachment: PreparedAttachment,
        description: str,
    ) -> dict[str, Any]:
        upload = await resources.add_issue_attachment(issue_key, attachment, self_link or None)
        if upload is None or not upload.success or not upload.filenames:
            return {"attachment_uploaded": False}
        embedded = await resources.update_issue_description(issue_key, description, upload.filenames[0])
        return {"attachment_uploaded": True, "attachment_via": upload.via, "image_embedded": embedded}

    async def _run_wiki_stage(
        self,
        resources: ResourceOperations,
        resolver: IdempotencyResolver,
        context: WorkItemContext,
        options: WorkItemOptions,
        results: WorkItemResults,
        attachment: PreparedAttachment | None,
    ) -> None:
        jira = results.get("jira")
        body = results.get("wiki").content or ""
        if jira.status in _REMOTE_STATUSES and jira.identifier:
            body = inject_related_work(body, jira.identifier, jira.url)
            results.update("wiki", content=body)

        space_key = options.wiki_space or context.wiki_space or self._settings.confluence_space_key
        parent_id = options.wiki_parent_id or self._settings.confluence_parent_id
        try:
            title, created = await resolver.create_unique_page(
                wiki_title(context.component_name),
                body,
                space_key=space_key,
                parent_id=parent_id,
            )
        except Exception as exc:
            logger.exception("work_item wiki stage failed space=%s", space_key)
            results.advance("wiki", ArtifactStatus.FAILED_CREATION, error=str(exc))
            return

        page_id = extract_page_id(created)
        results.advance(
            "wiki",
            ArtifactStatus.CREATED,
            identifier=page_id or None,
            url=self._page_url(created, page_id),
            title=title,
        )
        if attachment is None or not page_id:
            return

        try:
            details = await self._attach_to_page(
                resources, page_id, title, body, extract_page_self_link(created), attachment
            )
        except Exception:
            logger.exception("work_item wiki attachment failed page_id=%s", page_id)
            details = {"attachment_uploaded": False}
        results.update("wiki", details=details)

    async def _attach_to_page(
        self,
        resources: ResourceOperations,
        page_id: str,
        title: str,
        body: str,
        self_link: str,
        attachment: PreparedAttachment,
    ) -> dict[str, Any]:
        upload = await resources.add_page_attachment(page_id, attachment, self_link or None)
        if upload is None or not upload.success or not upload.filenames:
            return {"attachment_uploaded": False}
        try:
            await resources.update_page(page_id, title, embed_wiki_image(body, upload.filenames[0]))
            embedded = True
        except WorkItemError as exc:
            logger.warning("work_item wiki image embed failed page_id=%s detail=%s", page_id, exc)
            embedded = False
        return {"attachment_uploaded": True, "attachment_via": upload.via, "image_embedded": embedded}

    async def _run_cross_link_stage(self, resources: ResourceOperations, results: WorkItemResults) -> None:
        jira = results.get("jira")
        wiki = results.get("wiki")
        if jira.status not in _REMOTE_STATUSES or wiki.status not in _REMOTE_STATUSES:
            return
        if not jira.identifier or not wiki.url:
            return
        try:
            linked = await resources.create_remote_link(jira.identifier, wiki.url, wiki.title or "Wiki Page")
        except Exception:
            logger.exception("work_item cross link failed issue=%s", jira.identifier)
            linked = None
        results.update("jira", details={**jira.details, "wiki_linked": linked is not None})

    async def _run_branch_stage(self, resources: ResourceOperations, options: WorkItemOptions, results: WorkItemResults) -> None:
        branch = results.get("git").identifier or ""
        repo_path = options.repo_path or self._settings.git_repo_path
        try:
            await resources.create_branch(branch, repo_path)
        except WorkItemError as exc:
            if "already exists" in str(exc).lower():
                results.advance("git", ArtifactStatus.EXISTING)
                return
            logger.warning("work_item branch stage failed branch=%s detail=%s", branch, exc)
            results.advance("git", ArtifactStatus.FAILED_CREATION, error=str(exc))
            return
        except Exception as exc:
            logger.exception("work_item branch stage failed branch=%s", branch)
            results.advance("git", ArtifactStatus.FAILED_CREATION, error=str(exc))
            return
        results.advance("git", ArtifactStatus.CREATED)

    def _record_links(self, context: WorkItemContext, run_id: str, results: WorkItemResults) -> None:
        if self._link_recorder is None:
            return
        link = build_work_item_link(component_name=context.component_name, run_id=run_id, results=results.snapshot())
        try:
            self._link_recorder(link)
        except Exception:
            logger.exception("work_item link ledger failed run_id=%s", run_id)


def build_work_item_coordinator(
    settings: Any,
    invoker: ToolCaller | None,
    *,
    ticket_generator: TicketGenerator | None = None,
    screenshot_service: ScreenshotService | None = None,
    link_recorder: LinkRecorder | None = persist_work_item_link,
    configuration_error: ConfigurationError | None = None,
) -> WorkflowCoordinator:
    attachments = AttachmentPipeline(download_timeout=settings.image_download_timeout_sec)
    resources = ResourceOperations(invoker, settings) if invoker is not None else None
    resolver = IdempotencyResolver.from_settings(resources, settings) if resources is not None else None
    return WorkflowCoordinator(
        resources,
        resolver,
        attachments,
        settings=settings,
        ticket_generator=ticket_generator,
        screenshot_service=screenshot_service,
        link_recorder=link_recorder,
        configuration_error=configuration_error,
    )


@lru_cache(maxsize=1)
def get_work_item_coordinator() -> WorkflowCoordinator:
    settings = get_settings()
    try:
        invoker = get_tool_invoker()
    except ConfigurationError as exc:
        logger.warning("work_item coordinator content only: %s", exc)
        return build_work_item_coordinator(settings, None, configuration_error=exc)
    return build_work_item_coordinator(settings, invoker)
