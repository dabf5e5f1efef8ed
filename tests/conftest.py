"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from sitedeploy.core.config.settings import RegistrySettings, ServiceConfig
from sitedeploy.core.services.auth import issue_token
from sitedeploy.core.services.deploy_service import build_services

from tests.uploads import make_upload


@pytest.fixture
def upload():
    """Factory for in-memory uploaded files."""
    return make_upload


@pytest.fixture
def config(tmp_path: Path) -> ServiceConfig:
    """Service config rooted in a temp dir, in-memory registry."""
    return ServiceConfig(
        staging_root=Path("staging"),
        publish_root=Path("sites"),
        registry=RegistrySettings(backend="memory", path=Path("registry")),
        secret_key="test-secret",
        site_url_template="https://sites.example.test/{project_id}/",
    ).resolve_paths(tmp_path)


@pytest.fixture
def json_config(config: ServiceConfig) -> ServiceConfig:
    """Same as ``config`` but with the durable JSON registry."""
    return config.model_copy(update={
        "registry": config.registry.model_copy(update={"backend": "json"}),
    })


@pytest.fixture
def service(config: ServiceConfig):
    svc = build_services(config)
    yield svc
    svc.orchestrator.wait_all(timeout=5)


@pytest.fixture
def token(config: ServiceConfig) -> str:
    return issue_token(config.secret_key, "user-1", "user1@example.test")


@pytest.fixture
def auth(token: str) -> dict[str, str]:
    """Authorization header for ``user-1``."""
    return {"Authorization": f"Bearer {token}"}
