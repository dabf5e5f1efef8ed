"""
Project — one uploaded site and its summary status.

A project's ``status`` and ``url`` summarize its most recent
deployment once that deployment reaches a terminal state.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from sitedeploy.core.models.base import RecordModel, new_id, now_iso


class ProjectStatus(StrEnum):
    """Summary status shown for a project."""

    CREATED = "CREATED"
    UPLOADING = "UPLOADING"
    BUILDING = "BUILDING"
    DEPLOYED = "DEPLOYED"
    FAILED = "FAILED"


class Project(RecordModel):
    """A user's site project."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    owner_id: str
    status: ProjectStatus = ProjectStatus.CREATED
    url: str | None = None
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)
