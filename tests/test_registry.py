"""
Tests for the project/deployment registry backends.
"""

import json

import pytest

from sitedeploy.core.config.settings import RegistrySettings
from sitedeploy.core.models import Deployment, DeploymentStatus, InvalidTransition, Project
from sitedeploy.core.persistence import (
    InMemoryRegistry,
    JsonFileRegistry,
    create_registry,
)
from sitedeploy.core.reliability.circuit_breaker import CircuitBreaker, CircuitState

from tests.flaky_store import FlakyJsonRegistry


def _seed(registry, owner="u1"):
    project = Project(name="demo", owner_id=owner)
    deployment = Deployment(project_id=project.id, owner_id=owner)
    registry.create_project(project)
    registry.create_deployment(deployment)
    return project, deployment


@pytest.fixture(params=["memory", "json"])
def registry(request, tmp_path):
    if request.param == "memory":
        return InMemoryRegistry()
    return JsonFileRegistry(tmp_path / "registry")


class TestRegistryContract:
    """Behaviour shared by every backend."""

    def test_create_and_get(self, registry):
        project, deployment = _seed(registry)
        got = registry.get_project(project.id, "u1")
        assert got.found
        assert not got.degraded
        assert got.value == project
        assert registry.get_deployment(deployment.id, "u1").value == deployment

    def test_owner_mismatch_looks_like_not_found(self, registry):
        project, deployment = _seed(registry)
        assert registry.get_project(project.id, "intruder").value is None
        assert registry.get_deployment(deployment.id, "intruder").value is None
        assert registry.list_projects("intruder").value == []
        assert registry.list_deployments(project.id, "intruder").value == []

    def test_unknown_id(self, registry):
        assert not registry.get_project("nope", "u1").found
        assert not registry.get_deployment("nope", "u1").found

    def test_update_project_bumps_updated_at(self, registry):
        project, _ = _seed(registry)
        updated = registry.update_project(
            project.id, "u1", {"status": "DEPLOYED", "url": "https://x.test/"},
        ).value
        assert updated.status == "DEPLOYED"
        assert updated.url == "https://x.test/"
        assert updated.updated_at >= project.updated_at
        assert registry.get_project(project.id, "u1").value == updated

    def test_update_with_wrong_owner_is_noop(self, registry):
        project, _ = _seed(registry)
        assert registry.update_project(project.id, "intruder", {"name": "x"}).value is None
        assert registry.get_project(project.id, "u1").value.name == "demo"

    def test_update_accepts_camel_case_keys(self, registry):
        _, deployment = _seed(registry)
        registry.update_deployment(deployment.id, "u1", {"status": "BUILDING"})
        done = registry.update_deployment(
            deployment.id, "u1",
            {"status": "SUCCESS", "url": "u", "completedAt": "2026-01-01T00:00:00+00:00"},
        ).value
        assert done.completed_at == "2026-01-01T00:00:00+00:00"

    def test_immutable_keys_rejected(self, registry):
        project, _ = _seed(registry)
        with pytest.raises(ValueError):
            registry.update_project(project.id, "u1", {"ownerId": "someone-else"})

    def test_unknown_keys_rejected(self, registry):
        project, _ = _seed(registry)
        with pytest.raises(ValueError):
            registry.update_project(project.id, "u1", {"colour": "red"})

    def test_deployment_cannot_regress(self, registry):
        _, deployment = _seed(registry)
        registry.update_deployment(deployment.id, "u1", {"status": "BUILDING"})
        with pytest.raises(InvalidTransition):
            registry.update_deployment(deployment.id, "u1", {"status": "PROCESSING"})

    def test_terminal_deployment_is_immutable(self, registry):
        _, deployment = _seed(registry)
        registry.update_deployment(
            deployment.id, "u1",
            {"status": "FAILED", "error": "boom", "completedAt": "2026-01-01T00:00:00+00:00"},
        )
        with pytest.raises(InvalidTransition):
            registry.update_deployment(deployment.id, "u1", {"url": "late"})
        assert registry.get_deployment(deployment.id, "u1").value.status == DeploymentStatus.FAILED

    def test_lists_are_newest_first(self, registry):
        older = Project(name="a", owner_id="u1", created_at="2026-01-01T00:00:00+00:00")
        newer = Project(name="b", owner_id="u1", created_at="2026-02-01T00:00:00+00:00")
        registry.create_project(older)
        registry.create_project(newer)
        assert [p.name for p in registry.list_projects("u1").value] == ["b", "a"]

    def test_list_deployments_scoped_to_project(self, registry):
        project, deployment = _seed(registry)
        _seed(registry)
        listed = registry.list_deployments(project.id, "u1").value
        assert [d.id for d in listed] == [deployment.id]


class TestInMemoryRegistry:
    def test_duplicate_create_rejected(self):
        registry = InMemoryRegistry()
        project = Project(name="demo", owner_id="u1")
        registry.create_project(project)
        with pytest.raises(ValueError):
            registry.create_project(project)

    def test_status_counts(self):
        registry = InMemoryRegistry()
        _seed(registry)
        status = registry.status()
        assert status["backend"] == "memory"
        assert status["projects"] == 1
        assert status["deployments"] == 1


class TestJsonFileRegistry:
    def test_layout_on_disk(self, tmp_path):
        registry = JsonFileRegistry(tmp_path)
        project, deployment = _seed(registry)
        data = json.loads((tmp_path / "projects" / f"{project.id}.json").read_text())
        assert data["ownerId"] == "u1"
        assert (tmp_path / "deployments" / f"{deployment.id}.json").is_file()

    def test_no_temp_files_left(self, tmp_path):
        registry = JsonFileRegistry(tmp_path)
        _seed(registry)
        assert not list(tmp_path.rglob("*.tmp"))

    def test_survives_restart(self, tmp_path):
        project, deployment = _seed(JsonFileRegistry(tmp_path))
        reopened = JsonFileRegistry(tmp_path)
        assert reopened.get_project(project.id, "u1").value == project
        assert reopened.list_deployments(project.id, "u1").value == [deployment]

    def test_corrupt_record_is_skipped(self, tmp_path):
        registry = JsonFileRegistry(tmp_path)
        project, _ = _seed(registry)
        (tmp_path / "projects" / "broken.json").write_text("{not json")
        reopened = JsonFileRegistry(tmp_path)
        assert [p.id for p in reopened.list_projects("u1").value] == [project.id]

    def test_ping(self, tmp_path):
        registry = JsonFileRegistry(tmp_path / "store")
        assert registry.ping()
        assert (tmp_path / "store" / "projects").is_dir()


class TestDegradedMode:
    @pytest.fixture
    def blocked(self, tmp_path):
        """Registry whose root is a regular file, so every store call fails."""
        root = tmp_path / "blocked"
        root.write_text("not a directory")
        return JsonFileRegistry(
            root, breaker=CircuitBreaker(name="registry", failure_threshold=2, recovery_timeout=60),
        )

    def test_create_echoes_value(self, blocked):
        project = Project(name="demo", owner_id="u1")
        result = blocked.create_project(project)
        assert result.degraded
        assert result.value == project
        assert result.error

    def test_reads_serve_mirror(self, blocked):
        project, deployment = _seed(blocked)
        got = blocked.get_project(project.id, "u1")
        assert got.degraded
        assert got.value == project
        assert blocked.list_deployments(project.id, "u1").value == [deployment]

    def test_fresh_process_reads_empty(self, blocked):
        result = blocked.list_projects("u1")
        assert result.degraded
        assert result.value == []

    def test_updates_still_respect_lifecycle(self, blocked):
        _, deployment = _seed(blocked)
        building = blocked.update_deployment(deployment.id, "u1", {"status": "BUILDING"})
        assert building.degraded
        assert building.value.status == DeploymentStatus.BUILDING
        with pytest.raises(InvalidTransition):
            blocked.update_deployment(deployment.id, "u1", {"status": "PROCESSING"})

    def test_breaker_opens_after_threshold(self, blocked):
        assert not blocked.ping()
        assert not blocked.ping()
        assert blocked.breaker.state == CircuitState.OPEN
        assert blocked.degraded
        result = blocked.list_projects("u1")
        assert result.degraded
        assert "circuit open" in result.error
        assert blocked.status()["breaker"]["state"] == "open"

    def test_recovers_and_promotes_mirror_records(self, tmp_path):
        root = tmp_path / "store"
        root.write_text("not yet")
        registry = JsonFileRegistry(
            root, breaker=CircuitBreaker(name="registry", failure_threshold=1, recovery_timeout=0),
        )
        project, deployment = _seed(registry)
        assert registry.breaker.state == CircuitState.OPEN

        root.unlink()
        result = registry.update_project(project.id, "u1", {"status": "BUILDING"})
        assert not result.degraded
        assert registry.breaker.state == CircuitState.CLOSED
        assert (root / "projects" / f"{project.id}.json").is_file()
        assert (root / "deployments" / f"{deployment.id}.json").is_file()
        assert registry.pending_count == 0


class TestCreateRegistry:
    def test_memory_backend(self, tmp_path):
        registry = create_registry(RegistrySettings(backend="memory", path=tmp_path))
        assert isinstance(registry, InMemoryRegistry)

    def test_json_backend(self, tmp_path):
        registry = create_registry(
            RegistrySettings(backend="json", path=tmp_path / "reg", failure_threshold=5),
        )
        assert isinstance(registry, JsonFileRegistry)
        assert registry.breaker.failure_threshold == 5
        assert not registry.degraded

    def test_unreachable_store_starts_degraded(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        registry = create_registry(
            RegistrySettings(backend="json", path=blocker, failure_threshold=1),
        )
        assert registry.degraded


class TestStoreRecovery:
    """Store fails for one call, then works again."""

    def test_update_after_failed_write_uses_newer_copy(self, tmp_path):
        registry = FlakyJsonRegistry(tmp_path, fail_deployment_writes=[2])
        _, deployment = _seed(registry)

        building = registry.update_deployment(deployment.id, "u1", {"status": "BUILDING"})
        assert building.degraded
        assert registry.pending_count == 1

        done = registry.update_deployment(
            deployment.id, "u1",
            {"status": "SUCCESS", "url": "u", "completedAt": "2026-01-01T00:00:00+00:00"},
        )
        assert not done.degraded
        assert done.value.status == DeploymentStatus.SUCCESS
        assert registry.pending_count == 0
        on_disk = json.loads((tmp_path / "deployments" / f"{deployment.id}.json").read_text())
        assert on_disk["status"] == "SUCCESS"

    def test_failed_terminal_write_is_flushed_by_next_call(self, tmp_path):
        registry = FlakyJsonRegistry(tmp_path, fail_deployment_writes=[3])
        project, deployment = _seed(registry)
        registry.update_deployment(deployment.id, "u1", {"status": "BUILDING"})
        failed = registry.update_deployment(
            deployment.id, "u1",
            {"status": "FAILED", "error": "boom", "completedAt": "2026-01-01T00:00:00+00:00"},
        )
        assert failed.degraded

        reads = [registry.get_deployment(deployment.id, "u1") for _ in range(3)]
        assert [r.value.status for r in reads] == [DeploymentStatus.FAILED] * 3
        assert not any(r.degraded for r in reads)
        assert registry.status()["pending"] == 0

        reopened = JsonFileRegistry(tmp_path)
        assert reopened.get_deployment(deployment.id, "u1").value.status == DeploymentStatus.FAILED
        assert [d.status for d in reopened.list_deployments(project.id, "u1").value] == [
            DeploymentStatus.FAILED,
        ]

    def test_reads_prefer_memory_over_stale_disk(self, tmp_path):
        registry = JsonFileRegistry(tmp_path)
        project, deployment = _seed(registry)
        stale = deployment.to_dict()
        registry.update_deployment(deployment.id, "u1", {"status": "BUILDING"})
        # Another writer left an older copy on disk
        (tmp_path / "deployments" / f"{deployment.id}.json").write_text(json.dumps(stale))

        assert registry.get_deployment(deployment.id, "u1").value.status == DeploymentStatus.BUILDING
        listed = registry.list_deployments(project.id, "u1").value
        assert [d.status for d in listed] == [DeploymentStatus.BUILDING]

    def test_ping_flushes_pending(self, tmp_path):
        registry = FlakyJsonRegistry(tmp_path, fail_deployment_writes=[1])
        _, deployment = _seed(registry)
        assert not (tmp_path / "deployments" / f"{deployment.id}.json").exists()
        assert registry.ping()
        assert (tmp_path / "deployments" / f"{deployment.id}.json").is_file()
