"""
Tests for CLI commands — deploy, projects, status, token, health.
"""

import json
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from sitedeploy.core.services.auth import verify_token
from sitedeploy.main import cli


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "sitedeploy.yml"
    path.write_text(textwrap.dedent("""\
        staging_root: staging
        publish_root: sites
        secret_key: cli-secret
        site_url_template: "https://sites.example.test/{project_id}/"
        registry:
          backend: json
          path: registry
    """))
    return path


@pytest.fixture()
def site_dir(tmp_path: Path) -> Path:
    site = tmp_path / "site"
    site.mkdir()
    (site / "index.html").write_text("<h1>cli</h1>")
    (site / "style.css").write_text("body {}")
    return site


def _invoke(config_file: Path, *args: str):
    return CliRunner().invoke(cli, ["--config", str(config_file), *args])


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "static sites" in result.output
        for command in ("deploy", "projects", "status", "serve", "token", "health"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_missing_config_exits_1(self, tmp_path):
        result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.yml"), "projects"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestDeployCommand:
    def test_deploy_directory(self, config_file, site_dir, tmp_path):
        result = _invoke(config_file, "deploy", str(site_dir), "--name", "cli-site")
        assert result.exit_code == 0, result.output
        assert "cli-site" in result.output
        assert "BUILDING" in result.output
        assert "SUCCESS" in result.output
        assert "https://sites.example.test/" in result.output

    def test_deploy_json(self, config_file, site_dir, tmp_path):
        result = _invoke(config_file, "deploy", str(site_dir), "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert [e["status"] for e in data["events"]] == ["BUILDING", "SUCCESS"]
        published = tmp_path / "sites" / data["projectId"] / "index.html"
        assert published.read_text() == "<h1>cli</h1>"
        assert (tmp_path / "registry" / "deployments" / f"{data['deploymentId']}.json").is_file()

    def test_rejected_file(self, config_file, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hi")
        result = _invoke(config_file, "deploy", str(notes))
        assert result.exit_code == 1
        assert "Invalid file type" in result.output

    def test_no_files(self, config_file):
        result = _invoke(config_file, "deploy")
        assert result.exit_code == 1
        assert "No files uploaded" in result.output


class TestReadCommands:
    def test_projects_empty(self, config_file):
        result = _invoke(config_file, "projects")
        assert result.exit_code == 0
        assert "No projects yet" in result.output

    def test_projects_and_status_after_deploy(self, config_file, site_dir):
        deployed = json.loads(_invoke(config_file, "deploy", str(site_dir), "--json", "-n", "x").stdout)

        listed = _invoke(config_file, "projects", "--json")
        assert listed.exit_code == 0
        projects = json.loads(listed.stdout)
        assert [p["id"] for p in projects] == [deployed["projectId"]]
        assert projects[0]["status"] == "DEPLOYED"

        shown = _invoke(config_file, "status", deployed["deploymentId"], "--json")
        assert shown.exit_code == 0
        record = json.loads(shown.stdout)
        assert record["status"] == "SUCCESS"
        assert [f["name"] for f in record["files"]] == ["index.html", "style.css"]

        human = _invoke(config_file, "status", deployed["deploymentId"])
        assert "SUCCESS" in human.output
        assert "index.html" in human.output

    def test_other_owner_sees_nothing(self, config_file, site_dir):
        deployed = json.loads(_invoke(config_file, "deploy", str(site_dir), "--json").stdout)
        result = _invoke(config_file, "status", deployed["deploymentId"], "--owner", "someone")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_status_unknown(self, config_file):
        result = _invoke(config_file, "status", "nope")
        assert result.exit_code == 1


class TestTokenCommand:
    def test_issues_verifiable_token(self, config_file):
        result = _invoke(config_file, "token", "--owner", "ops", "--email", "ops@example.test")
        assert result.exit_code == 0
        identity = verify_token("cli-secret", result.stdout.strip())
        assert identity.owner_id == "ops"
        assert identity.email == "ops@example.test"


class TestHealthCommand:
    def test_health_json(self, config_file):
        result = _invoke(config_file, "health", "--json")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["status"] == "healthy"

    def test_health_human(self, config_file):
        result = _invoke(config_file, "health")
        assert result.exit_code == 0
        assert "System Health: HEALTHY" in result.output
