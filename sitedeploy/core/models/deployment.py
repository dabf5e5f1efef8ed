"""
Deployment — one attempt to publish a file set for a project.

Status is monotonic::

    PROCESSING ──► BUILDING ──► SUCCESS
        │              │
        └──────────────┴──────► FAILED

No transition leaves SUCCESS or FAILED.  ``advance()`` is the only
way to move a deployment forward and it enforces this table.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field, model_validator

from sitedeploy.core.models.base import RecordModel, new_id, now_iso
from sitedeploy.core.models.project import ProjectStatus


class InvalidTransition(Exception):
    """Raised when a deployment is moved against its lifecycle."""


class DeploymentStatus(StrEnum):
    """Lifecycle states of a deployment."""

    PROCESSING = "PROCESSING"
    BUILDING = "BUILDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (DeploymentStatus.SUCCESS, DeploymentStatus.FAILED)

    def can_advance_to(self, target: DeploymentStatus) -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.PROCESSING: frozenset({DeploymentStatus.BUILDING, DeploymentStatus.FAILED}),
    DeploymentStatus.BUILDING: frozenset({DeploymentStatus.SUCCESS, DeploymentStatus.FAILED}),
    DeploymentStatus.SUCCESS: frozenset(),
    DeploymentStatus.FAILED: frozenset(),
}

# Project summary shown while / after a deployment is in each state
_PROJECT_STATUS: dict[DeploymentStatus, ProjectStatus] = {
    DeploymentStatus.PROCESSING: ProjectStatus.CREATED,
    DeploymentStatus.BUILDING: ProjectStatus.BUILDING,
    DeploymentStatus.SUCCESS: ProjectStatus.DEPLOYED,
    DeploymentStatus.FAILED: ProjectStatus.FAILED,
}


def project_status_for(status: DeploymentStatus) -> ProjectStatus:
    """Map a deployment status to the project summary status."""
    return _PROJECT_STATUS[status]


class FileDescriptor(RecordModel):
    """One uploaded file as recorded on a deployment."""

    name: str
    size: int = 0
    content_type: str = "application/octet-stream"


class Deployment(RecordModel):
    """A single publish attempt for a project."""

    id: str = Field(default_factory=new_id)
    project_id: str
    owner_id: str
    status: DeploymentStatus = DeploymentStatus.PROCESSING
    files: list[FileDescriptor] = Field(default_factory=list)
    url: str | None = None
    error: str | None = None
    created_at: str = Field(default_factory=now_iso)
    completed_at: str | None = None

    @model_validator(mode="after")
    def _check_terminal_fields(self) -> Deployment:
        if self.status == DeploymentStatus.FAILED and not self.error:
            raise ValueError("a FAILED deployment must carry an error message")
        if self.status != DeploymentStatus.FAILED and self.error is not None:
            raise ValueError("only a FAILED deployment may carry an error")
        if self.completed_at is not None and not self.status.terminal:
            raise ValueError("completedAt is only set on SUCCESS or FAILED")
        return self

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def advance(
        self,
        status: DeploymentStatus,
        *,
        url: str | None = None,
        error: str | None = None,
    ) -> Deployment:
        """Return a copy moved to ``status``.

        Sets ``completed_at`` on terminal states, ``url`` on SUCCESS and
        ``error`` on FAILED.

        Raises:
            InvalidTransition: If the move is not allowed from the
                current status.
        """
        if not self.status.can_advance_to(status):
            raise InvalidTransition(
                f"Deployment {self.id}: {self.status.value} → {status.value} not allowed"
            )

        update: dict[str, Any] = {"status": status}
        if status == DeploymentStatus.SUCCESS:
            update["url"] = url
        elif status == DeploymentStatus.FAILED:
            update["error"] = error or "Unknown error"
        if status.terminal:
            update["completed_at"] = now_iso()

        return Deployment.model_validate({**self.model_dump(), **update})

    def changes_since(self, previous: Deployment) -> dict[str, Any]:
        """Fields that differ from ``previous`` (for registry patches)."""
        before = previous.model_dump()
        return {
            key: value
            for key, value in self.model_dump().items()
            if before.get(key) != value
        }


class DeploymentEvent(RecordModel):
    """Status event published on a deployment's channel.

    Wire shape::

        {"projectId": ..., "deploymentId": ..., "status": "BUILDING",
         "message": "...", "url": "...", "error": "..."}

    ``url`` and ``error`` are omitted when unset.
    """

    project_id: str
    deployment_id: str
    status: DeploymentStatus
    message: str
    url: str | None = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_deployment(cls, deployment: Deployment, message: str) -> DeploymentEvent:
        return cls(
            project_id=deployment.project_id,
            deployment_id=deployment.id,
            status=deployment.status,
            message=message,
            url=deployment.url,
            error=deployment.error,
        )
