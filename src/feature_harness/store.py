"""Durable storage for the task list (feature_list.json).

The store is deliberately stateless: every call goes back to disk, since
the coding agent edits the same file from another process and the file on
disk is the only source of truth.
"""

import json
import os
import stat
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .exceptions import DuplicateTaskError, StoreNotFoundError, TaskStoreError
from .models import Task, TaskCategory, TaskList


class TaskStore:
    """Reads and writes the task list for one project."""

    def __init__(self, project_path: Path, filename: str = "feature_list.json"):
        self.project_path = Path(project_path)
        self.path = self.project_path / filename

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> TaskList:
        """Load the task list from disk.

        Raises:
            StoreNotFoundError: If no task list exists at the path.
            TaskStoreError: If the file cannot be read or is not a valid task list.
        """
        if not self.path.exists():
            raise StoreNotFoundError(self.path)

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise TaskStoreError(f"Could not read {self.path}: {e}", self.path) from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise TaskStoreError(f"{self.path.name} is not valid JSON: {e}", self.path) from e

        try:
            return TaskList.model_validate(data)
        except ValidationError as e:
            raise TaskStoreError(f"{self.path.name} is not a valid task list: {e}", self.path) from e

    def save(self, task_list: TaskList) -> None:
        """Persist the full task list.

        Writes to a temporary file in the same directory and renames it over
        the target, so a concurrent reader sees either the old or the new
        file, never a partial one.
        """
        content = task_list.to_json() + "\n"
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
        except OSError as e:
            raise TaskStoreError(f"Could not write {self.path}: {e}", self.path) from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, self._file_mode())
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TaskStoreError(f"Could not write {self.path}: {e}", self.path) from e

    def _file_mode(self) -> int:
        """Permissions for the saved file: keep the existing mode, else honor the umask."""
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            umask = os.umask(0)
            os.umask(umask)
            return 0o666 & ~umask

    def create(self, task_list: TaskList, overwrite: bool = False) -> None:
        """Create a new task list file."""
        if self.path.exists() and not overwrite:
            raise TaskStoreError(f"Task list already exists: {self.path}", self.path)
        self.save(task_list)

    def next_task(self, category: Optional[TaskCategory] = None) -> Optional[Task]:
        """Get the first pending task in list order (FIFO), or None."""
        return self.load().next_task(category)

    def append_tasks(self, tasks: list[Task]) -> TaskList:
        """Append a batch of tasks.

        The batch is all-or-nothing: if any incoming ID already exists (or
        repeats inside the batch) nothing is written.

        Raises:
            DuplicateTaskError: On any ID collision.
        """
        task_list = self.load()
        existing = task_list.ids()

        duplicates = []
        seen: set[str] = set()
        for task in tasks:
            if task.id in existing or task.id in seen:
                duplicates.append(task.id)
            seen.add(task.id)

        if duplicates:
            raise DuplicateTaskError(duplicates)

        task_list.features.extend(tasks)
        self.save(task_list)
        return task_list

    def append_task(self, task: Task) -> TaskList:
        """Append a single task."""
        return self.append_tasks([task])

    def reset_all(self) -> int:
        """Mark every task as not done. Returns how many were reset.

        This is the explicit bulk reset behind the ``reset`` command;
        sessions never clear a done flag.
        """
        task_list = self.load()
        count = 0
        for task in task_list.features:
            if task.done:
                task.done = False
                count += 1
        self.save(task_list)
        return count
