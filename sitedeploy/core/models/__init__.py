"""
Domain models — Pydantic records and the ephemeral upload manifest.

All models are re-exported here for convenient access:

    from sitedeploy.core.models import Project, Deployment, FileManifest
"""

from sitedeploy.core.models.base import RecordModel, new_id, now_iso
from sitedeploy.core.models.deployment import (
    Deployment,
    DeploymentEvent,
    DeploymentStatus,
    FileDescriptor,
    InvalidTransition,
    project_status_for,
)
from sitedeploy.core.models.manifest import FileManifest
from sitedeploy.core.models.project import Project, ProjectStatus

__all__ = [
    # deployment.py
    "Deployment",
    "DeploymentEvent",
    "DeploymentStatus",
    "FileDescriptor",
    # manifest.py
    "FileManifest",
    "InvalidTransition",
    # project.py
    "Project",
    "ProjectStatus",
    # base.py
    "RecordModel",
    "new_id",
    "now_iso",
    "project_status_for",
]
