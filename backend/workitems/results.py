from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping

ARTIFACT_NAMES = ("jira", "wiki", "git")


class ArtifactStatus(StrEnum):
    PENDING = "pending"
    GENERATED = "generated"
    CREATED = "created"
    EXISTING = "existing"
    FAILED_CREATION = "failed_creation"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        if self is ArtifactStatus.PENDING:
            return 0
        if self is ArtifactStatus.GENERATED:
            return 1
        return 2

    @property
    def is_terminal(self) -> bool:
        return self.rank == 2


class StatusRegressionError(ValueError):
    pass


@dataclass(frozen=True)
class ArtifactResult:
    status: ArtifactStatus = ArtifactStatus.PENDING
    content: str | None = None
    url: str | None = None
    error: str | None = None
    identifier: str | None = None
    title: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", MappingProxyType(dict(self.details)))

    def advance(self, status: ArtifactStatus | str, **changes: Any) -> "ArtifactResult":
        target = ArtifactStatus(status)
        if target.rank < self.status.rank:
            raise StatusRegressionError(f"status_regression:{self.status}->{target}")
        if self.status.is_terminal and target != self.status:
            raise StatusRegressionError(f"status_already_terminal:{self.status}->{target}")
        return replace(self, status=target, **changes)

    def with_changes(self, **changes: Any) -> "ArtifactResult":
        if "status" in changes:
            raise StatusRegressionError("status_changes_require_advance")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": str(self.status), "content": self.content}
        for key in ("url", "error", "identifier", "title"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class WorkItemResults:
    def __init__(self, names: tuple[str, ...] = ARTIFACT_NAMES):
        self._results: dict[str, ArtifactResult] = {name: ArtifactResult() for name in names}

    def get(self, name: str) -> ArtifactResult:
        return self._results[name]

    def advance(self, name: str, status: ArtifactStatus | str, **changes: Any) -> ArtifactResult:
        self._results[name] = self._results[name].advance(status, **changes)
        return self._results[name]

    def update(self, name: str, **changes: Any) -> ArtifactResult:
        self._results[name] = self._results[name].with_changes(**changes)
        return self._results[name]

    def fail_all(self, error: str) -> None:
        for name, result in self._results.items():
            if not result.status.is_terminal:
                self._results[name] = result.advance(ArtifactStatus.FAILED, error=error)

    def snapshot(self) -> Mapping[str, ArtifactResult]:
        return MappingProxyType(dict(self._results))
