from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar


class WorkItemErrorCode(StrEnum):
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    TRANSPORT_TIMEOUT = "TRANSPORT_TIMEOUT"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    TOOL_FAILED = "TOOL_FAILED"
    TOOL_ARGUMENT_INVALID = "TOOL_ARGUMENT_INVALID"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    CONFIG_MISSING = "CONFIG_MISSING"


@dataclass(eq=False)
class WorkItemError(Exception):
    reason: str
    tool_name: str | None = None
    status_code: int | None = None
    error_code: WorkItemErrorCode | None = None

    code: ClassVar[WorkItemErrorCode] = WorkItemErrorCode.TRANSPORT_FAILED

    @property
    def effective_code(self) -> WorkItemErrorCode:
        return self.error_code or self.code

    def __str__(self) -> str:
        prefix = f"{self.tool_name}:" if self.tool_name else ""
        detail = f"{prefix}{self.effective_code}"
        if self.status_code is not None:
            detail = f"{detail}|status={self.status_code}"
        return f"{detail}|message={self.reason}"


class TransportError(WorkItemError):
    code = WorkItemErrorCode.TRANSPORT_FAILED


class ToolError(WorkItemError):
    code = WorkItemErrorCode.TOOL_FAILED


class ToolArgumentError(WorkItemError):
    code = WorkItemErrorCode.TOOL_ARGUMENT_INVALID


class ConflictError(WorkItemError):
    code = WorkItemErrorCode.CONFLICT


class NotFoundError(WorkItemError):
    code = WorkItemErrorCode.NOT_FOUND


class ConfigurationError(WorkItemError):
    code = WorkItemErrorCode.CONFIG_MISSING
