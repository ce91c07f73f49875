"""Shared fixtures for the harness tests."""

import json
from pathlib import Path
from typing import Optional

import pytest

from feature_harness.agent_client import AgentRequest
from feature_harness.models import HarnessConfig


def make_task(
    task_id: str,
    title: Optional[str] = None,
    passes: bool = False,
    task_type: Optional[str] = None,
    **extra
) -> dict:
    """A task record as the agent writes it on disk."""
    data = {
        "id": task_id,
        "title": title or f"Task {task_id}",
        "description": f"Implement {task_id}",
        "acceptance_criteria": [f"{task_id} works"],
        "passes": passes,
    }
    if task_type:
        data["type"] = task_type
    data.update(extra)
    return data


def write_feature_list(project_path: Path, features: list[dict], **metadata) -> Path:
    data = {
        "project_name": metadata.pop("project_name", "Test Project"),
        "description": metadata.pop("description", "A test project"),
        **metadata,
        "features": features,
    }
    path = project_path / "feature_list.json"
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def mark_passing(project_path: Path, task_id: str) -> None:
    """Flip a task to passing, the way the coding agent does."""
    path = project_path / "feature_list.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    for feature in data["features"]:
        if feature["id"] == task_id:
            feature["passes"] = True
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


class FakeHistory:
    """In-memory stand-in for git history."""

    def __init__(self, log: Optional[str] = "abc1234 Initial commit", ref: Optional[str] = "abc1234"):
        self.log = log
        self.ref = ref

    def get_recent_log(self, count: int = 10) -> Optional[str]:
        return self.log

    def current_ref(self) -> Optional[str]:
        return self.ref


@pytest.fixture
def project(tmp_path):
    """A project with two pending features."""
    write_feature_list(tmp_path, [make_task("F001"), make_task("F002")])
    return tmp_path


@pytest.fixture
def config():
    return HarnessConfig(session_delay_seconds=0)


@pytest.fixture
def history():
    return FakeHistory()


def completes_target(project_path: Path):
    """Side effect that marks the task named in the session prompt as passing."""
    def side_effect(request: AgentRequest) -> None:
        first_line = request.prompt.splitlines()[0]
        task_id = first_line.split(":", 1)[1].strip().split(" ")[0]
        mark_passing(project_path, task_id)
    return side_effect
