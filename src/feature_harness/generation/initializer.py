"""Project initialization pass.

Turns a free-text project description into a new project directory with a
generated feature_list.json, a fresh progress.log and an initial commit.
"""

import subprocess
from pathlib import Path
from typing import Callable, Optional

from ..agent_client import AgentRequest
from ..exceptions import CollaboratorError, HarnessError
from ..extraction import extract_task_list
from ..git_manager import GitManager
from ..models import HarnessConfig, TaskList
from ..progress import ProgressJournal
from ..prompts import load_prompt
from ..protocols import AgentClient
from ..store import TaskStore
from .common import DEBUG_OUTPUT_FILE, write_debug_output


class InitializerAgent:
    """Creates a new project and its initial backlog."""

    def __init__(
        self,
        client: AgentClient,
        config: Optional[HarnessConfig] = None,
        on_progress: Optional[Callable[[str], None]] = None
    ):
        self.client = client
        self.config = config or HarnessConfig()
        self._on_progress = on_progress

    def _log(self, message: str) -> None:
        if self._on_progress:
            self._on_progress(message)

    def build_prompt(self, description: str, tech_stack: Optional[list[str]] = None) -> str:
        tech_stack_line = ""
        if tech_stack:
            tech_stack_line = f"Preferred tech stack: {', '.join(tech_stack)}"
        return load_prompt("initializer_request").format(
            description=description,
            tech_stack_line=tech_stack_line,
        ).rstrip() + "\n"

    async def initialize(
        self,
        project_name: str,
        description: str,
        tech_stack: Optional[list[str]] = None,
        workspace_path: Path = Path("."),
        on_text: Optional[Callable[[str], None]] = None
    ) -> TaskList:
        """Create ``workspace_path / project_name`` and generate its backlog.

        Raises:
            HarnessError: If the project directory already exists.
            CollaboratorError: If the agent call fails.
            ExtractionError: If no valid feature list is found in the output.
        """
        project_path = Path(workspace_path) / project_name
        if project_path.exists():
            raise HarnessError(f"Project directory already exists: {project_path}")

        self._log("Creating project directory...")
        project_path.mkdir(parents=True)

        self._log("Generating feature list...")
        result = await self.client.run(
            AgentRequest(
                prompt=self.build_prompt(description, tech_stack),
                system_prompt=load_prompt("initializer"),
                working_directory=project_path,
                max_turns=self.config.initializer_max_turns,
                model=self.config.model,
            ),
            on_text=on_text,
        )
        write_debug_output(project_path / DEBUG_OUTPUT_FILE, result)

        if not result.success:
            raise CollaboratorError(
                result.error or "Agent failed to generate a feature list",
                output=result.output,
            )

        self._log("Parsing feature list...")
        task_list = extract_task_list(result.output)
        task_list.project_name = project_name
        if not task_list.description:
            task_list.description = description
        if not task_list.tech_stack and tech_stack:
            task_list.tech_stack = list(tech_stack)

        self._log(f"Writing {self.config.feature_list_file}...")
        TaskStore(project_path, self.config.feature_list_file).create(task_list)

        self._log(f"Creating {self.config.progress_file}...")
        ProgressJournal(project_path, self.config.progress_file).initialize(project_name)

        self._log("Initializing git repository...")
        try:
            GitManager(project_path).init_repo()
        except (OSError, subprocess.CalledProcessError) as e:
            self._log(f"Could not initialize git: {e}")

        self._log("Project initialized successfully!")
        return task_list
