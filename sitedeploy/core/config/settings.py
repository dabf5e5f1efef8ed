"""
ServiceConfig — typed settings for the deployment service.

Loaded from ``sitedeploy.yml`` by ``loader.load_config``; every field
has a default so an empty (or missing) file yields a working local
setup under ``.sitedeploy/``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_ALLOWED_EXTENSIONS = (
    "html", "css", "js", "json",
    "png", "jpg", "jpeg", "gif", "svg", "ico",
)


class UploadLimits(BaseModel):
    """Bounds applied by upload intake."""

    max_files: int = Field(default=100, ge=1)
    max_file_size: int = Field(default=50 * 1024 * 1024, ge=1)  # bytes
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS),
    )

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, v: list[str]) -> list[str]:
        return sorted({ext.lower().lstrip(".") for ext in v if ext.strip()})

    def allows(self, filename: str) -> bool:
        """Whether ``filename`` has an allowed extension."""
        suffix = Path(filename).suffix.lower().lstrip(".")
        return bool(suffix) and suffix in self.allowed_extensions


class RegistrySettings(BaseModel):
    """Which registry backend to use and how to guard it."""

    backend: Literal["json", "memory"] = "json"
    path: Path = Path(".sitedeploy/registry")
    failure_threshold: int = Field(default=3, ge=1)
    recovery_timeout: float = Field(default=30.0, ge=0)


class ServiceConfig(BaseModel):
    """Root configuration model."""

    staging_root: Path = Path(".sitedeploy/staging")
    publish_root: Path = Path(".sitedeploy/sites")
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    limits: UploadLimits = Field(default_factory=UploadLimits)

    site_url_template: str = "http://127.0.0.1:8000/sites/{project_id}/"
    keep_staging: bool = False

    secret_key: str = "sitedeploy-dev-secret"
    token_max_age: int = Field(default=24 * 3600, ge=1)  # seconds

    subscriber_queue_size: int = Field(default=200, ge=0)  # 0 = unbounded

    @field_validator("site_url_template")
    @classmethod
    def _check_template(cls, v: str) -> str:
        if "{project_id}" not in v:
            raise ValueError("site_url_template must contain '{project_id}'")
        return v

    def resolve_paths(self, base_dir: Path) -> ServiceConfig:
        """Return a copy with relative paths anchored at ``base_dir``."""
        def _abs(p: Path) -> Path:
            return p if p.is_absolute() else (base_dir / p).resolve()

        registry = self.registry.model_copy(update={"path": _abs(self.registry.path)})
        return self.model_copy(update={
            "staging_root": _abs(self.staging_root),
            "publish_root": _abs(self.publish_root),
            "registry": registry,
        })

    def site_url(self, project_id: str) -> str:
        return self.site_url_template.format(project_id=project_id)
