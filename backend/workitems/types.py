from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable


@dataclass(frozen=True)
class ServerEndpoint:
    key: str
    url: str
    auth_header: str | None = None


@dataclass(frozen=True)
class Session:
    server_key: str
    session_id: str
    handshake_ok: bool = True


@dataclass(frozen=True)
class ToolCall:
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PreparedAttachment:
    path: Path
    filename: str
    cleanup: Callable[[], None]
    owned: bool = False


@dataclass(frozen=True)
class AttachmentUpload:
    success: bool
    filenames: tuple[str, ...] = ()
    via: str = "direct"
    tool_result: Any = None


@dataclass(frozen=True)
class IssueDraft:
    project_key: str
    summary: str
    description: str
    issue_type: str = "Task"
    assignee: str | None = None
    additional_fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_key": self.project_key,
            "summary": self.summary,
            "description": self.description,
            "issue_type": self.issue_type,
            "assignee": self.assignee,
            "additional_fields": dict(self.additional_fields),
        }


def _str_or_none(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def _parse_flag(value: Any, name: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"{name}_must_be_boolean")


def _frame_list(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name}_must_be_array")
    return value


@dataclass(frozen=True)
class WorkItemContext:
    component_name: str
    frame_data: tuple[dict[str, Any], ...] = ()
    enhanced_frame_data: tuple[dict[str, Any], ...] = ()
    screenshot: Any = None
    image_path: str | None = None
    figma_url: str | None = None
    file_context: dict[str, Any] = field(default_factory=dict)
    generated_content: str | None = None
    project_key: str | None = None
    wiki_space: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "WorkItemContext":
        if not isinstance(payload, dict):
            raise ValueError("work_item_context_must_be_object")
        component_name = str(payload.get("componentName") or payload.get("component_name") or "").strip()
        if not component_name:
            raise ValueError("component_name_required")
        frame_data = _frame_list(payload.get("frameData") or payload.get("frame_data"), "frame_data")
        enhanced = _frame_list(payload.get("enhancedFrameData"), "enhanced_frame_data")
        file_context = payload.get("fileContext") or payload.get("file_context") or {}
        generated = payload.get("generatedContent") or payload.get("generated_content")
        return cls(
            component_name=component_name,
            frame_data=tuple(item for item in frame_data if isinstance(item, dict)),
            enhanced_frame_data=tuple(item for item in enhanced if isinstance(item, dict)),
            screenshot=payload.get("screenshot"),
            image_path=_str_or_none(payload.get("imagePath") or payload.get("image_path")),
            figma_url=_str_or_none(payload.get("figmaUrl") or payload.get("figma_url")),
            file_context=file_context if isinstance(file_context, dict) else {},
            generated_content=generated if isinstance(generated, str) else None,
            project_key=_str_or_none(payload.get("projectKey") or payload.get("ticketProjectKey")),
            wiki_space=_str_or_none(payload.get("wikiSpace")),
        )

    @property
    def first_frame(self) -> dict[str, Any] | None:
        frames = self.enhanced_frame_data or self.frame_data
        return frames[0] if frames else None


@dataclass(frozen=True)
class WorkItemOptions:
    enable_active_creation: bool = False
    project_key: str | None = None
    wiki_space: str | None = None
    wiki_parent_id: str | None = None
    repo_path: str | None = None
    epic_key: str | None = None
    issue_type: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "WorkItemOptions":
        data = payload if isinstance(payload, dict) else {}
        return cls(
            enable_active_creation=_parse_flag(data.get("enableActiveCreation"), "enable_active_creation"),
            project_key=_str_or_none(data.get("projectKey") or data.get("ticketProjectKey")),
            wiki_space=_str_or_none(data.get("wikiSpace")),
            wiki_parent_id=_str_or_none(data.get("wikiParentId")),
            repo_path=_str_or_none(data.get("repoPath")),
            epic_key=_str_or_none(data.get("epicKey")),
            issue_type=_str_or_none(data.get("issueType")),
        )
