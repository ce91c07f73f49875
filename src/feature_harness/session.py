"""Single coding session execution.

A session selects the next pending task, builds the agent's context, runs
the agent once and then decides the outcome from durable state: the task
succeeded only if ``feature_list.json`` now marks it done. Whatever the
agent says about its own work is recorded but never trusted.
"""

from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from .agent_client import AgentRequest, AgentResult
from .context import ContextAssembler
from .git_manager import GitManager
from .models import HarnessConfig, JournalEntry, SessionOutcome, TaskCategory
from .progress import ProgressJournal
from .prompts import get_system_prompt
from .protocols import AgentClient, HistorySource
from .store import TaskStore


# Longest slice of agent output kept in a journal entry
NARRATIVE_LIMIT = 2000


class SessionResult(BaseModel):
    """Result of one coding session."""
    success: bool
    task_id: Optional[str] = None
    task_title: Optional[str] = None
    commit_ref: Optional[str] = None
    error: Optional[str] = None
    journal_entry: Optional[JournalEntry] = None
    queue_empty: bool = False
    # What the agent claimed, kept for diagnostics only
    collaborator_success: bool = False
    total_cost_usd: Optional[float] = None
    num_turns: Optional[int] = None


class SessionExecutor:
    """Runs one coding session against a project.

    The executor never writes the task list. Only the agent (by editing
    the file) can flip a task to done.
    """

    def __init__(
        self,
        project_path: Path,
        client: AgentClient,
        config: Optional[HarnessConfig] = None,
        git: Optional[HistorySource] = None,
        on_progress: Optional[Callable[[str], None]] = None
    ):
        self.project_path = Path(project_path)
        self.client = client
        self.config = config or HarnessConfig()
        self.git = git or GitManager(self.project_path)
        self.store = TaskStore(self.project_path, self.config.feature_list_file)
        self.journal = ProgressJournal(self.project_path, self.config.progress_file)
        self.context = ContextAssembler(self.project_path, self.git, self.config.progress_file)
        self._on_progress = on_progress

    def _log(self, message: str) -> None:
        if self._on_progress:
            self._on_progress(message)

    async def run_session(
        self,
        category: Optional[TaskCategory] = None,
        on_text: Optional[Callable[[str], None]] = None
    ) -> SessionResult:
        """Run one session on the next pending task.

        Raises:
            StoreNotFoundError: If the project has no task list.
            TaskStoreError: If the task list cannot be read.
        """
        task = self.store.next_task(category)
        if task is None:
            self._log("No pending features found")
            return SessionResult(
                success=False,
                queue_empty=True,
                error="No pending features found. All features may be complete.",
            )

        self._log(f"Working on feature: {task.id} - {task.title}")

        session_context = self.context.assemble(
            task,
            progress_entries=self.config.progress_entries,
            history_entries=self.config.history_entries,
            max_depth=self.config.structure_depth,
        )
        request = AgentRequest(
            prompt=session_context.render(self.project_path),
            system_prompt=get_system_prompt(task.kind, self.project_path),
            working_directory=self.project_path,
            max_turns=self.config.max_turns,
            model=self.config.model,
        )

        self._log("Starting agent session...")
        try:
            agent_result = await self.client.run(request, on_text=on_text)
        except Exception as e:
            agent_result = AgentResult(success=False, error=str(e))

        # Ground truth: re-read the file the agent may have edited
        updated = self.store.load().get(task.id)
        success = updated is not None and updated.done

        error = agent_result.error
        if not agent_result.success and not error:
            error = "Agent session failed"

        if success:
            outcome = SessionOutcome.COMPLETED
        elif not agent_result.success:
            outcome = SessionOutcome.ERROR
        else:
            outcome = SessionOutcome.INCOMPLETE

        commit_ref = self.git.current_ref()

        entry = JournalEntry(
            task_id=task.id,
            title=task.title,
            outcome=outcome,
            narrative=self._narrative(agent_result, error, outcome),
        )
        self.journal.append(entry)

        self._log(f"Session finished: {task.id} {outcome.value}")
        return SessionResult(
            success=success,
            task_id=task.id,
            task_title=task.title,
            commit_ref=commit_ref,
            error=error,
            journal_entry=entry,
            collaborator_success=agent_result.success,
            total_cost_usd=agent_result.total_cost_usd,
            num_turns=agent_result.num_turns,
        )

    @staticmethod
    def _narrative(agent_result: AgentResult, error: Optional[str], outcome: SessionOutcome) -> str:
        lines = []
        if outcome == SessionOutcome.ERROR and error:
            lines.append(f"Error: {error}")
        elif outcome == SessionOutcome.INCOMPLETE and agent_result.success:
            lines.append("Agent finished but the feature is not marked as passing")

        output = agent_result.output.strip()
        if output:
            if len(output) > NARRATIVE_LIMIT:
                output = "..." + output[-NARRATIVE_LIMIT:]
            lines.append(output)
        return "\n".join(lines)
