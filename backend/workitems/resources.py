from __future__ import annotations

import logging
import re
from typing import Any, Protocol

from workitems.errors import NotFoundError, WorkItemError
from workitems.extractors import extract_page_id, extract_search_issues
from workitems.registry import format_auth_header
from workitems.types import AttachmentUpload, IssueDraft, PreparedAttachment
from workitems.uploads import (
    resolve_issue_upload_url,
    resolve_page_upload_url,
    rest_auth_header,
    upload_attachment_direct,
)

logger = logging.getLogger(__name__)

_URL_PATTERN = re.compile(r"^https?://", re.IGNORECASE)


class ToolCaller(Protocol):
    async def call(self, tool_name: str, arguments: dict[str, Any] | None = None) -> Any: ...


def _stub_page_content(title: str) -> str:
    return f"# {title}\n\n_Generating content, please wait..._\n"


def issue_image_markup(filename: str) -> str:
    if _URL_PATTERN.match(filename):
        return f"\n\n![Design Preview]({filename})"
    return f"\n\n!{filename}|thumbnail!"


class ResourceOperations:
    def __init__(self, invoker: ToolCaller, settings: Any):
        self._invoker = invoker
        self._settings = settings

    @property
    def settings(self) -> Any:
        return self._settings

    def _jira_rest_auth(self) -> str | None:
        return rest_auth_header(
            username=self._settings.jira_username,
            token=self._settings.jira_api_token,
            fallback=format_auth_header(self._settings.mcp_jira_key),
        )

    def _confluence_rest_auth(self) -> str | None:
        return rest_auth_header(
            username=self._settings.confluence_username,
            token=self._settings.confluence_api_token,
            fallback=format_auth_header(self._settings.mcp_wiki_key),
        )

    async def create_issue(self, draft: IssueDraft) -> Any:
        logger.info("jira_create_issue project=%s summary=%s", draft.project_key, draft.summary)
        arguments = draft.to_dict()
        arguments["additional_fields"] = arguments["additional_fields"] or None
        try:
            result = await self._invoker.call("jira_create_issue", arguments)
        except WorkItemError as exc:
            logger.error("jira_create_issue failed project=%s detail=%s", draft.project_key, exc)
            raise
        logger.info("jira_create_issue ok project=%s", draft.project_key)
        return result

    async def search_issues(self, jql: str, limit: int = 10) -> Any:
        return await self._invoker.call(
            "jira_search",
            {"jql": jql, "limit": limit, "fields": "summary,status,priority,assignee"},
        )

    async def find_first_issue(self, jql: str) -> dict[str, Any]:
        issues = extract_search_issues(await self.search_issues(jql, limit=1))
        if not issues:
            raise NotFoundError("no_matching_issue", tool_name="jira_search")
        return issues[0]

    async def update_issue_description(self, issue_key: str, description: str, filename: str) -> bool:
        updated = (description or "") + issue_image_markup(filename)
        try:
            await self._invoker.call(
                "jira_update_issue",
                {"issue_key": issue_key, "fields": {"description": updated}},
            )
        except WorkItemError as exc:
            logger.warning("jira_update_issue image embed failed issue=%s detail=%s", issue_key, exc)
            return False
        logger.info("jira_update_issue embedded image issue=%s filename=%s", issue_key, filename)
        return True

    async def link_issue_to_epic(self, issue_key: str, epic_key: str) -> Any | None:
        try:
            return await self._invoker.call("jira_link_to_epic", {"issue_key": issue_key, "epic_key": epic_key})
        except WorkItemError as exc:
            logger.warning("jira_link_to_epic failed issue=%s epic=%s detail=%s", issue_key, epic_key, exc)
            return None

    async def get_page(self, title: str, space_key: str | None = None) -> Any | None:
        try:
            return await self._invoker.call("confluence_get_page", {"title": title, "space_key": space_key})
        except WorkItemError as exc:
            logger.debug("confluence_get_page miss title=%s detail=%s", title, exc)
            return None

    async def _create_page_call(self, title: str, content: str, space_key: str, parent_id: str | None) -> Any:
        return await self._invoker.call(
            "confluence_create_page",
            {
                "title": title,
                "space_key": space_key,
                "content": content,
                "parent_id": parent_id,
                "content_format": "markdown",
            },
        )

    async def create_page(
        self,
        title: str,
        content: str,
        *,
        space_key: str | None = None,
        parent_id: str | None = None,
    ) -> Any:
        space = space_key or self._settings.confluence_space_key
        parent = parent_id or self._settings.confluence_parent_id
        logger.info("confluence_create_page title=%s space=%s content_length=%s", title, space, len(content or ""))

        try:
            result = await self._create_page_call(title, content, space, parent)
            logger.info("confluence_create_page ok title=%s strategy=full", title)
            return result
        except WorkItemError as exc:
            logger.warning("confluence_create_page full attempt failed title=%s detail=%s; trying stub-then-update", title, exc)

        try:
            stub = await self._create_page_call(title, _stub_page_content(title), space, parent)
        except WorkItemError as exc:
            logger.error("confluence_create_page stub failed title=%s detail=%s", title, exc)
            raise

        page_id = extract_page_id(stub)
        if not page_id:
            logger.warning("confluence_create_page stub has no page id title=%s; skipping content update", title)
            return stub
        try:
            await self.update_page(page_id, title, content)
            logger.info("confluence_create_page ok title=%s strategy=stub_then_update page_id=%s", title, page_id)
        except WorkItemError as exc:
            logger.warning("confluence_update_page after stub failed page_id=%s detail=%s; page kept as stub", page_id, exc)
        return stub

    async def update_page(self, page_id: str, title: str, content: str) -> Any:
        logger.info("confluence_update_page page_id=%s content_length=%s", page_id, len(content or ""))
        return await self._invoker.call(
            "confluence_update_page",
            {"page_id": page_id, "title": title, "content": content},
        )

    async def add_issue_attachment(
        self,
        issue_key: str,
        attachment: PreparedAttachment,
        self_link: str | None = None,
    ) -> AttachmentUpload | None:
        try:
            upload_url = resolve_issue_upload_url(issue_key, self_link=self_link, base_url=self._settings.jira_base_url)
            await upload_attachment_direct(
                upload_url,
                attachment.path,
                attachment.filename,
                auth_header=self._jira_rest_auth(),
                timeout=self._settings.mcp_timeout_sec,
            )
            logger.info("jira_attachment ok issue=%s via=direct filename=%s", issue_key, attachment.filename)
            return AttachmentUpload(success=True, filenames=(attachment.filename,), via="direct")
        except WorkItemError as exc:
            logger.warning("jira_attachment direct upload failed issue=%s detail=%s; trying tool", issue_key, exc)

        try:
            result = await self._invoker.call(
                "jira_add_attachment",
                {"issue_key": issue_key, "file_path": str(attachment.path)},
            )
        except WorkItemError as exc:
            logger.error("jira_attachment failed issue=%s detail=%s", issue_key, exc)
            return None
        logger.info("jira_attachment ok issue=%s via=tool", issue_key)
        return AttachmentUpload(success=True, filenames=(attachment.path.name,), via="tool", tool_result=result)

    async def add_page_attachment(
        self,
        page_id: str,
        attachment: PreparedAttachment,
        self_link: str | None = None,
    ) -> AttachmentUpload | None:
        try:
            upload_url = resolve_page_upload_url(page_id, self_link=self_link, base_url=self._settings.confluence_base_url)
            await upload_attachment_direct(
                upload_url,
                attachment.path,
                attachment.filename,
                auth_header=self._confluence_rest_auth(),
                timeout=self._settings.mcp_timeout_sec,
            )
            logger.info("confluence_attachment ok page_id=%s via=direct filename=%s", page_id, attachment.filename)
            return AttachmentUpload(success=True, filenames=(attachment.filename,), via="direct")
        except WorkItemError as exc:
            logger.warning("confluence_attachment direct upload failed page_id=%s detail=%s; trying tool", page_id, exc)

        try:
            result = await self._invoker.call(
                "confluence_create_attachment",
                {"page_id": page_id, "file_path": str(attachment.path)},
            )
        except WorkItemError as exc:
            logger.error("confluence_attachment failed page_id=%s detail=%s", page_id, exc)
            return None
        logger.info("confluence_attachment ok page_id=%s via=tool", page_id)
        return AttachmentUpload(success=True, filenames=(attachment.path.name,), via="tool", tool_result=result)

    async def create_remote_link(
        self,
        issue_key: str,
        url: str,
        title: str,
        relationship: str = "Wiki Page",
    ) -> Any | None:
        logger.info("jira_remote_link issue=%s url=%s", issue_key, url)
        try:
            return await self._invoker.call(
                "jira_create_remote_issue_link",
                {"issue_key": issue_key, "url": url, "title": title, "relationship": relationship},
            )
        except WorkItemError as exc:
            logger.warning("jira_remote_link failed issue=%s detail=%s", issue_key, exc)
            return None

    async def create_branch(self, branch_name: str, repo_path: str | None = None) -> Any:
        logger.info("git_create_branch name=%s repo=%s", branch_name, repo_path)
        try:
            return await self._invoker.call(
                "git_create_branch",
                {"name": branch_name, "repository_path": repo_path},
            )
        except WorkItemError as exc:
            logger.error("git_create_branch failed name=%s detail=%s", branch_name, exc)
            raise
