"""Tests for project type detection."""

import json
from datetime import datetime, timezone
from pathlib import Path

from friday.memory.models import ProjectProfile
from friday.profiler import ProjectProfiler


class TestProjectProfiler:
    def test_empty_project_defaults_to_api(self, tmp_path: Path):
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.type == "api"
        assert profile.tech_stack == []
        assert profile.confidence == 0.3
        assert profile.name == tmp_path.name

    def test_react_app(self, tmp_path: Path):
        (tmp_path / "package.json").write_text(
            json.dumps({"name": "shop", "dependencies": {"react": "^18", "next": "14"}})
        )
        (tmp_path / "tsconfig.json").write_text("{}")
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.name == "shop"
        assert profile.type == "web"
        assert profile.tech_stack[0] == "typescript"
        assert {"react", "nextjs"} <= set(profile.tech_stack)
        assert profile.confidence > 0.5

    def test_node_cli(self, tmp_path: Path):
        (tmp_path / "package.json").write_text(
            json.dumps({"name": "tool", "bin": {"tool": "index.js"}, "dependencies": {"commander": "1"}})
        )
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.type == "cli"
        assert profile.tech_stack == ["javascript", "commander"]

    def test_python_api(self, tmp_path: Path):
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "svc"\ndependencies = ["fastapi>=0.100", "uvicorn"]\n'
        )
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.name == "svc"
        assert profile.type == "api"
        assert profile.tech_stack == ["python", "fastapi"]

    def test_requirements_txt(self, tmp_path: Path):
        (tmp_path / "requirements.txt").write_text("# deps\nDjango==5.0\n-r other.txt\n")
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.type == "web"
        assert profile.tech_stack == ["python", "django"]

    def test_go_cli(self, tmp_path: Path):
        (tmp_path / "go.mod").write_text(
            "module github.com/acme/deploy\n\nrequire github.com/spf13/cobra v1.8.0\n"
        )
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.name == "deploy"
        assert profile.type == "cli"
        assert profile.tech_stack == ["go", "cobra"]

    def test_rust_api(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text(
            '[package]\nname = "edge"\n\n[dependencies]\naxum = "0.7"\n'
        )
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.name == "edge"
        assert profile.type == "api"
        assert profile.tech_stack == ["rust", "axum"]

    def test_unparseable_manifest_is_ignored(self, tmp_path: Path):
        (tmp_path / "package.json").write_text("{broken")
        profile = ProjectProfiler(tmp_path).detect()
        assert profile.type == "api"
        assert profile.confidence == 0.3

    def test_keeps_previous_created_at(self, tmp_path: Path):
        created = datetime(2025, 1, 1, tzinfo=timezone.utc)
        previous = ProjectProfile(name="x", type="api", created_at=created)
        profile = ProjectProfiler(tmp_path).detect(previous=previous)
        assert profile.created_at == created
        assert profile.updated_at > created

    def test_redetection_refreshes_confidence_only(self, tmp_path: Path):
        created = datetime(2025, 1, 1, tzinfo=timezone.utc)
        previous = ProjectProfile(
            name="shop", type="web", tech_stack=["typescript", "react"], confidence=0.8, created_at=created
        )
        (tmp_path / "go.mod").write_text("module example.com/other\n")
        profile = ProjectProfiler(tmp_path).detect(previous=previous)
        assert (profile.name, profile.type, profile.tech_stack) == ("shop", "web", ["typescript", "react"])
        assert profile.confidence == 0.3
        assert profile.created_at == created
