"""Queue controller - runs sessions until the backlog is drained.

State machine:

    SELECTING --no pending task--------> DONE
    SELECTING --session budget spent---> EXHAUSTED
    SELECTING --otherwise--------------> EXECUTING
    EXECUTING --session finished-------> SELECTING
    any state --store error or stop----> ABORTED

A failed session does not stop the loop and does not skip its task: the
same task is simply selected again on the next iteration until the budget
runs out.
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .exceptions import StoreNotFoundError, TaskStoreError
from .models import HarnessConfig, ProgressStats, Task, TaskCategory
from .protocols import AgentClient, HistorySource
from .session import SessionExecutor, SessionResult


class LoopState(str, Enum):
    SELECTING = "selecting"
    EXECUTING = "executing"
    DONE = "done"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


class LoopSummary(BaseModel):
    """Final report of a loop run."""
    state: LoopState
    sessions_run: int = 0
    completed_task_ids: list[str] = Field(default_factory=list)
    results: list[SessionResult] = Field(default_factory=list)
    error: Optional[str] = None
    stats: Optional[ProgressStats] = None

    @property
    def total_cost_usd(self) -> float:
        return sum(r.total_cost_usd or 0.0 for r in self.results)


class QueueController:
    """Drives sessions in a loop with a session budget."""

    def __init__(
        self,
        project_path: Path,
        client: AgentClient,
        config: Optional[HarnessConfig] = None,
        git: Optional[HistorySource] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        on_session_start: Optional[Callable[[int, Task], None]] = None,
        on_session_end: Optional[Callable[[int, SessionResult], None]] = None
    ):
        self.project_path = Path(project_path)
        self.config = config or HarnessConfig()
        self.executor = SessionExecutor(
            self.project_path, client, self.config, git=git, on_progress=on_progress
        )
        self.on_session_start = on_session_start
        self.on_session_end = on_session_end
        self.state = LoopState.SELECTING
        self._stop_requested = False

    def request_stop(self) -> None:
        """Ask the loop to stop before starting another session."""
        self._stop_requested = True

    async def run_loop(
        self,
        max_sessions: Optional[int] = None,
        category: Optional[TaskCategory] = None,
        on_text: Optional[Callable[[str], None]] = None
    ) -> LoopSummary:
        """Run sessions until no task is pending, the budget is spent, or an abort.

        Args:
            max_sessions: Session budget (defaults to ``config.max_sessions``).
            category: Only select tasks of this category.
            on_text: Receives streamed agent text.
        """
        if max_sessions is None:
            max_sessions = self.config.max_sessions

        summary = LoopSummary(state=LoopState.SELECTING)
        self.state = LoopState.SELECTING
        self._stop_requested = False

        while True:
            if self._stop_requested:
                summary.error = "Stopped by user"
                self.state = LoopState.ABORTED
                break

            try:
                task = self.executor.store.next_task(category)
            except (StoreNotFoundError, TaskStoreError) as e:
                summary.error = str(e)
                self.state = LoopState.ABORTED
                break

            if task is None:
                self.state = LoopState.DONE
                break
            if summary.sessions_run >= max_sessions:
                self.state = LoopState.EXHAUSTED
                break

            if summary.sessions_run > 0 and self.config.session_delay_seconds > 0:
                await asyncio.sleep(self.config.session_delay_seconds)
                if self._stop_requested:
                    continue

            self.state = LoopState.EXECUTING
            number = summary.sessions_run + 1
            if self.on_session_start:
                self.on_session_start(number, task)

            try:
                result = await self.executor.run_session(category, on_text=on_text)
            except (StoreNotFoundError, TaskStoreError) as e:
                summary.error = str(e)
                self.state = LoopState.ABORTED
                break

            summary.sessions_run += 1
            summary.results.append(result)
            if result.success and result.task_id:
                summary.completed_task_ids.append(result.task_id)

            if self.on_session_end:
                self.on_session_end(number, result)

            self.state = LoopState.SELECTING

        summary.state = self.state
        summary.stats = self._final_stats()
        return summary

    def _final_stats(self) -> Optional[ProgressStats]:
        try:
            return self.executor.store.load().stats()
        except (StoreNotFoundError, TaskStoreError):
            return None
