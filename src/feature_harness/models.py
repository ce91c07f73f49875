"""Data models for the feature harness.

Uses Pydantic for validation. The task list is stored as JSON because the
coding agent edits it directly, and a schema-checked format is much harder
for a model to corrupt than free text.
"""

import json
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# Directory (inside a project) for harness-owned files: config, prompt overrides
HARNESS_DIR = ".harness"


class TaskCategory(str, Enum):
    """Category of a task. Selects the persona used for the session."""
    FEATURE = "feature"
    REFACTORING = "refactoring"
    BUGFIX = "bugfix"
    IMPROVEMENT = "improvement"
    DOCS = "docs"

    @property
    def prefix(self) -> str:
        """ID prefix reserved for this category (F001, B001, ...)."""
        return CATEGORY_PREFIXES[self]

    @classmethod
    def resolve(cls, value: Optional[str]) -> "TaskCategory":
        """Resolve a stored category tag.

        Absent or unknown values fall back to FEATURE, so older task lists
        without a ``type`` field keep working.
        """
        if not value:
            return cls.FEATURE
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            return CATEGORY_SYNONYMS.get(normalized, cls.FEATURE)


CATEGORY_PREFIXES: dict[TaskCategory, str] = {
    TaskCategory.FEATURE: "F",
    TaskCategory.REFACTORING: "R",
    TaskCategory.BUGFIX: "B",
    TaskCategory.IMPROVEMENT: "I",
    TaskCategory.DOCS: "D",
}

CATEGORY_SYNONYMS: dict[str, TaskCategory] = {
    "standard-feature": TaskCategory.FEATURE,
    "functional": TaskCategory.FEATURE,
    "refactor": TaskCategory.REFACTORING,
    "bug": TaskCategory.BUGFIX,
    "fix": TaskCategory.BUGFIX,
    "improve": TaskCategory.IMPROVEMENT,
    "doc": TaskCategory.DOCS,
    "documentation": TaskCategory.DOCS,
}


class Task(BaseModel):
    """A single unit of backlog work (called a "feature" in user-facing text).

    Field names on disk follow the format the agent prompts describe:
    ``passes`` for the completion flag and ``type`` for the category.
    The Python names are accepted as well. Unknown keys written by the
    agent are kept so that saving never silently drops them.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(..., description="Unique identifier, prefixed by category (F001, B002...)")
    title: str = Field(..., description="Short human-readable summary")
    description: str = Field(..., description="Technical detail sufficient to implement")
    acceptance_criteria: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("acceptance_criteria", "acceptanceCriteria"),
        description="Ordered, testable statements that define done"
    )
    done: bool = Field(
        default=False,
        validation_alias=AliasChoices("passes", "done"),
        serialization_alias="passes",
    )
    category: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("type", "category"),
        serialization_alias="type",
    )
    target: Optional[str] = Field(
        default=None,
        description="Free-form subsystem label (web, mobile, backend...) for filtering"
    )

    @property
    def kind(self) -> TaskCategory:
        """The resolved category (absent means FEATURE)."""
        return TaskCategory.resolve(self.category)

    def to_json_dict(self) -> dict:
        """Serialize using the on-disk field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ProgressStats(BaseModel):
    """Completion counters for a task list or a slice of it."""
    total: int = 0
    completed: int = 0
    pending: int = 0
    percentage: int = 0

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> "ProgressStats":
        total = len(tasks)
        completed = sum(1 for t in tasks if t.done)
        percentage = int(completed * 100 / total + 0.5) if total else 0
        return cls(
            total=total,
            completed=completed,
            pending=total - completed,
            percentage=percentage,
        )


class TaskList(BaseModel):
    """The durable, ordered backlog plus project metadata.

    Ordering is the only prioritization mechanism: tasks are worked in the
    order they were appended.
    """
    model_config = ConfigDict(extra="allow")

    project_name: str
    description: str = ""
    tech_stack: Optional[list[str]] = None
    features: list[Task] = Field(default_factory=list)

    def get(self, task_id: str) -> Optional[Task]:
        """Find a task by ID."""
        for task in self.features:
            if task.id == task_id:
                return task
        return None

    def ids(self) -> set[str]:
        return {t.id for t in self.features}

    def next_task(self, category: Optional[TaskCategory] = None) -> Optional[Task]:
        """Get the first pending task in list order, optionally filtered by category."""
        for task in self.features:
            if task.done:
                continue
            if category is None or task.kind == category:
                return task
        return None

    def is_complete(self) -> bool:
        return all(t.done for t in self.features)

    def stats(self) -> ProgressStats:
        return ProgressStats.from_tasks(self.features)

    def stats_by_category(self) -> dict[TaskCategory, ProgressStats]:
        """Completion counters per category, in first-seen order."""
        grouped: dict[TaskCategory, list[Task]] = {}
        for task in self.features:
            grouped.setdefault(task.kind, []).append(task)
        return {kind: ProgressStats.from_tasks(tasks) for kind, tasks in grouped.items()}

    def suggest_next_id(self, category: TaskCategory) -> str:
        """Next free ID for a category prefix (F001 -> F002, B009 -> B010)."""
        pattern = re.compile(rf"^{category.prefix}(\d+)$")
        highest = 0
        for task_id in self.ids():
            match = pattern.match(task_id)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{category.prefix}{highest + 1:03d}"

    def to_json(self) -> str:
        """Serialize using the on-disk field names."""
        return json.dumps(
            self.model_dump(by_alias=True, exclude_none=True),
            indent=2,
            ensure_ascii=False,
        )


class SessionOutcome(str, Enum):
    """How a coding session ended, as recorded in the progress journal."""
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    ERROR = "error"


class JournalEntry(BaseModel):
    """A single entry in the progress journal."""
    timestamp: datetime = Field(default_factory=datetime.now)
    task_id: str
    title: str = ""
    outcome: SessionOutcome
    narrative: str = ""

    def render(self) -> str:
        """Render as a text block.

        Blank lines are stripped from the narrative because a blank line is
        the entry separator in progress.log.
        """
        header = f"[{self.timestamp.isoformat(timespec='seconds')}] [{self.task_id}]"
        if self.title:
            header += f" {self.title}"
        header += f" - {self.outcome.value.upper()}"

        body = [line.rstrip() for line in self.narrative.splitlines() if line.strip()]
        return "\n".join([header, *body])


class HarnessConfig(BaseModel):
    """Configuration for the harness.

    Defaults can be overridden per project in ``.harness/config.json`` and
    per invocation by CLI options.
    """
    model: Optional[str] = Field(
        default=None,
        description="Model passed to the agent SDK (None = SDK default)"
    )

    # Session limits
    max_turns: int = Field(default=50, description="Maximum agentic turns per coding session")
    max_sessions: int = Field(default=100, description="Maximum sessions in a loop run")
    session_delay_seconds: float = Field(
        default=2.0,
        description="Pause between loop iterations to bound the rate of agent calls"
    )
    session_timeout_seconds: int = Field(
        default=0,
        description="Wall-clock limit per agent call in seconds (0 = rely on max_turns only)"
    )

    # Generation passes
    initializer_max_turns: int = Field(default=10)
    adder_max_turns: int = Field(default=15)
    atomizer_max_turns: int = Field(default=20)

    # Context assembly
    progress_entries: int = Field(default=10, description="Journal entries shown to the agent")
    history_entries: int = Field(default=10, description="Commits shown to the agent")
    structure_depth: int = Field(default=3, description="Depth of the directory listing")

    # Paths
    feature_list_file: str = Field(default="feature_list.json")
    progress_file: str = Field(default="progress.log")

    @classmethod
    def load(cls, project_path: Path, **overrides) -> "HarnessConfig":
        """Load config from ``.harness/config.json`` with explicit overrides on top.

        Overrides whose value is None are ignored so CLI options that were
        not given do not mask the file.

        Raises:
            ValueError: If the config file cannot be read, is not valid JSON or
                fails validation.
        """
        data: dict = {}
        config_file = Path(project_path) / HARNESS_DIR / "config.json"
        if config_file.exists():
            try:
                content = config_file.read_text(encoding="utf-8")
            except OSError as e:
                raise ValueError(f"Could not read {config_file}: {e}") from e
            data = json.loads(content)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)
