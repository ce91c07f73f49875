"""Session context assembly.

Every coding session starts with no memory, so before each one the harness
gathers what the next agent needs to orient itself: the task, the recent
progress journal, recent change history and a shallow view of the project
tree. Everything here is read only, and a signal that cannot be gathered
degrades to a placeholder rather than failing the session.
"""

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .git_manager import GitManager
from .models import Task
from .progress import ProgressJournal
from .protocols import HistorySource
from .prompts import load_prompt


NO_HISTORY = "(no git history)"
NO_PROGRESS = "(no progress yet)"
NO_STRUCTURE = "(empty project)"

# Directories never shown in the structure listing
IGNORED_DIRS = frozenset({
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "__pycache__",
    ".venv",
    "venv",
    ".harness",
})


class SessionContext(BaseModel):
    """Everything handed to a coding session besides the persona."""
    task: Task
    progress_log: str = ""
    git_log: str = ""
    project_structure: str = ""

    def render(self, project_path: Optional[Path] = None) -> str:
        """Render the per-session user message from the ``session`` template."""
        template = load_prompt("session", project_path)
        criteria = "\n".join(f"- [ ] {c}" for c in self.task.acceptance_criteria)
        return template.format(
            task_id=self.task.id,
            task_title=self.task.title,
            task_json=json.dumps(self.task.to_json_dict(), indent=2, ensure_ascii=False),
            acceptance_criteria=criteria or "- No specific criteria defined",
            progress_log=self.progress_log or NO_PROGRESS,
            git_log=self.git_log or NO_HISTORY,
            project_structure=self.project_structure or NO_STRUCTURE,
        )


class ContextAssembler:
    """Gathers session context from the project directory."""

    def __init__(
        self,
        project_path: Path,
        git: Optional[HistorySource] = None,
        progress_file: str = "progress.log"
    ):
        self.project_path = Path(project_path)
        self.git = git or GitManager(self.project_path)
        self.journal = ProgressJournal(self.project_path, progress_file)

    def recent_progress(self, entries: int = 10) -> str:
        try:
            return self.journal.read_recent(entries)
        except OSError:
            return ""

    def recent_history(self, entries: int = 10) -> str:
        log = self.git.get_recent_log(entries)
        return log or NO_HISTORY

    def project_structure(self, max_depth: int = 3) -> str:
        """Draw the project tree with box-drawing connectors.

        Directories come before files and each group is sorted by name.
        Unreadable directories are skipped.
        """
        lines: list[str] = []
        self._walk(self.project_path, "", 0, max_depth, lines)
        return "\n".join(lines)

    def _walk(self, directory: Path, prefix: str, depth: int, max_depth: int, lines: list[str]) -> None:
        if depth >= max_depth:
            return

        try:
            children = [c for c in directory.iterdir() if c.name not in IGNORED_DIRS]
        except OSError:
            return

        dirs = sorted((c for c in children if c.is_dir()), key=lambda p: p.name)
        files = sorted((c for c in children if not c.is_dir()), key=lambda p: p.name)
        ordered = dirs + files

        for i, child in enumerate(ordered):
            is_last = i == len(ordered) - 1
            connector = "└── " if is_last else "├── "
            if child.is_dir():
                lines.append(f"{prefix}{connector}{child.name}/")
                extension = "    " if is_last else "│   "
                self._walk(child, prefix + extension, depth + 1, max_depth, lines)
            else:
                lines.append(f"{prefix}{connector}{child.name}")

    def assemble(
        self,
        task: Task,
        progress_entries: int = 10,
        history_entries: int = 10,
        max_depth: int = 3
    ) -> SessionContext:
        """Collect all context signals for a session working on ``task``."""
        return SessionContext(
            task=task,
            progress_log=self.recent_progress(progress_entries),
            git_log=self.recent_history(history_entries),
            project_structure=self.project_structure(max_depth),
        )
