"""Git operations for the harness.

The harness only reads change history and the current commit; committing is
the coding agent's job. The one write is the initial commit of a new project.
"""

import subprocess
from pathlib import Path
from typing import Optional


class GitManager:
    """Manages git operations for the project."""

    def __init__(self, project_path: Path):
        self.project_path = Path(project_path)

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        """Run a git command."""
        return subprocess.run(
            ["git", *args],
            cwd=self.project_path,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=check
        )

    def init_repo(self) -> bool:
        """Initialize a git repository with an initial commit.

        Does nothing if the project already has a .git directory.

        Returns:
            True if a repository was created.
        """
        if (self.project_path / ".git").exists():
            return False

        self._run("init")
        self._run("add", "-A")
        self._run("commit", "--allow-empty", "-m", "Initial commit: project setup")
        return True

    def get_recent_log(self, count: int = 10) -> Optional[str]:
        """Get recent history as ``git log --oneline`` text, or None if unavailable."""
        try:
            result = self._run("log", "--oneline", f"-{count}", check=False)
        except OSError:
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def current_ref(self) -> Optional[str]:
        """Get the short hash of HEAD, or None if there is no commit."""
        try:
            result = self._run("rev-parse", "--short", "HEAD", check=False)
        except OSError:
            return None
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return result.stdout.strip()
