"""Tests for the headless entry point."""

import json
import sys

import pytest

import main
from timeline_fx.models import Project


@pytest.fixture
def project_file(tmp_path, effects_project: Project):
    path = tmp_path / "demo.json"
    path.write_text(effects_project.to_json(), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _restore_excepthook(monkeypatch) -> None:
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)


class TestLoadProject:
    def test_loads_and_overrides_fps(self, project_file) -> None:
        project = main.load_project(project_file, fps=30)
        assert project.fps == 30
        assert project.id == "proj-effects"


class TestMain:
    def test_missing_file(self, tmp_path) -> None:
        assert main.main([str(tmp_path / "nope.json")]) == main.EXIT_INVALID_PROJECT

    def test_malformed_json(self, tmp_path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        assert main.main([str(path)]) == main.EXIT_INVALID_PROJECT

    def test_invalid_project(self, project_file) -> None:
        assert main.main([str(project_file), "--fps", "0"]) == main.EXIT_INVALID_PROJECT

    def test_renders_project(self, qapp, project_file, tmp_path) -> None:
        out = tmp_path / "render.jsonl"
        code = main.main([str(project_file), "-o", str(out),
                          "--chunk-frames", "100", "--workers", "2"])
        assert code == 0
        lines = out.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 300
        assert json.loads(lines[0])["clipId"] == "clip-a"
