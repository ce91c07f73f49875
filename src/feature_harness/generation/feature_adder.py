"""Backlog growth passes for an existing project.

FeatureAdderAgent turns a short description into one new task.
FeatureAtomizerAgent breaks a larger request (an epic) into several.
Both append to feature_list.json through the task store, so an ID
collision rejects the whole result and leaves the file untouched.
"""

from pathlib import Path
from typing import Callable, Optional

from ..agent_client import AgentRequest, AgentResult
from ..context import ContextAssembler
from ..exceptions import CollaboratorError
from ..extraction import extract_task, extract_tasks
from ..models import HarnessConfig, Task, TaskCategory, TaskList
from ..prompts import load_prompt
from ..protocols import AgentClient
from ..store import TaskStore
from .common import ATOMIZER_DEBUG_FILE, DEBUG_OUTPUT_FILE, summarize_tasks, write_debug_output


VALID_TARGETS = ("web", "mobile", "shared", "full", "backend", "api")


def _target_section(target: Optional[str]) -> str:
    if not target:
        return ""
    return f"\n### Target\n{target}\n"


def _apply_defaults(task: Task, category: TaskCategory, target: Optional[str]) -> None:
    if not task.category:
        task.category = category.value
    if target:
        task.target = target


class _BacklogAgent:
    """Shared plumbing: load the store, call the agent, keep debug output."""

    debug_file = DEBUG_OUTPUT_FILE
    system_prompt_name = ""

    def __init__(
        self,
        project_path: Path,
        client: AgentClient,
        config: Optional[HarnessConfig] = None,
        on_progress: Optional[Callable[[str], None]] = None
    ):
        self.project_path = Path(project_path)
        self.client = client
        self.config = config or HarnessConfig()
        self.store = TaskStore(self.project_path, self.config.feature_list_file)
        self.context = ContextAssembler(self.project_path, progress_file=self.config.progress_file)
        self._on_progress = on_progress

    def _log(self, message: str) -> None:
        if self._on_progress:
            self._on_progress(message)

    @property
    def debug_path(self) -> Path:
        return self.project_path / self.debug_file

    async def _call(
        self,
        prompt: str,
        max_turns: int,
        on_text: Optional[Callable[[str], None]] = None
    ) -> AgentResult:
        result = await self.client.run(
            AgentRequest(
                prompt=prompt,
                system_prompt=load_prompt(self.system_prompt_name, self.project_path),
                working_directory=self.project_path,
                max_turns=max_turns,
                model=self.config.model,
            ),
            on_text=on_text,
        )
        if write_debug_output(self.debug_path, result):
            self._log(f"Debug saved to {self.debug_path}")

        if not result.success or not result.output:
            raise CollaboratorError(
                f"Agent failed: {result.error or 'no output'}. Check {self.debug_path}",
                output=result.output,
            )
        return result


class FeatureAdderAgent(_BacklogAgent):
    """Adds a single generated task to the backlog."""

    system_prompt_name = "feature_adder"

    def build_prompt(
        self,
        task_list: TaskList,
        category: TaskCategory,
        description: str,
        related_files: Optional[str] = None,
        target: Optional[str] = None
    ) -> str:
        related = ""
        if related_files:
            related = f"\n### Related files mentioned\n{related_files}\n"
        return load_prompt("feature_adder_request", self.project_path).format(
            category=category.value,
            suggested_id=task_list.suggest_next_id(category),
            description=description,
            target_section=_target_section(target),
            project_structure=self.context.project_structure(self.config.structure_depth),
            existing_tasks=summarize_tasks(task_list),
            related_files_section=related,
        )

    async def add_task(
        self,
        category: TaskCategory,
        description: str,
        related_files: Optional[str] = None,
        target: Optional[str] = None,
        on_text: Optional[Callable[[str], None]] = None
    ) -> Task:
        """Generate one task from ``description`` and append it.

        Raises:
            StoreNotFoundError: If the project has no task list.
            CollaboratorError: If the agent call fails.
            ExtractionError: If no valid task is found in the output.
            DuplicateTaskError: If the generated ID already exists.
        """
        self._log("Loading project context...")
        task_list = self.store.load()
        prompt = self.build_prompt(task_list, category, description, related_files, target)

        self._log("Generating feature...")
        result = await self._call(prompt, self.config.adder_max_turns, on_text)

        self._log("Parsing generated feature...")
        task = extract_task(result.output)
        _apply_defaults(task, category, target)

        self._log(f"Adding {task.id} to {self.store.path.name}...")
        self.store.append_task(task)
        return task


class FeatureAtomizerAgent(_BacklogAgent):
    """Breaks a large request into several atomic tasks and appends them."""

    debug_file = ATOMIZER_DEBUG_FILE
    system_prompt_name = "feature_atomizer"

    def build_prompt(
        self,
        task_list: TaskList,
        category: TaskCategory,
        description: str,
        target: Optional[str] = None
    ) -> str:
        return load_prompt("feature_atomizer_request", self.project_path).format(
            category=category.value,
            suggested_id=task_list.suggest_next_id(category),
            description=description,
            target_section=_target_section(target),
            project_structure=self.context.project_structure(self.config.structure_depth),
            existing_tasks=summarize_tasks(task_list),
            tech_stack=", ".join(task_list.tech_stack or []) or "(not specified)",
        )

    async def atomize(
        self,
        category: TaskCategory,
        description: str,
        target: Optional[str] = None,
        on_text: Optional[Callable[[str], None]] = None
    ) -> list[Task]:
        """Generate several tasks from ``description`` and append them all.

        Either every generated task is appended or none is.

        Raises:
            StoreNotFoundError: If the project has no task list.
            CollaboratorError: If the agent call fails.
            ExtractionError: If no valid task array is found in the output.
            DuplicateTaskError: If any generated ID collides.
        """
        self._log("Loading project context...")
        task_list = self.store.load()
        prompt = self.build_prompt(task_list, category, description, target)

        self._log("Atomizing feature...")
        result = await self._call(prompt, self.config.atomizer_max_turns, on_text)

        self._log("Parsing generated features...")
        tasks = extract_tasks(result.output)
        for task in tasks:
            _apply_defaults(task, category, target)

        self._log(f"Adding {len(tasks)} features to {self.store.path.name}...")
        self.store.append_tasks(tasks)
        return tasks
