"""Protocol definitions for dependency injection.

These protocols define the seams between the harness core and its
collaborators, so tests can pass in scripted implementations and the core
never depends on a concrete SDK.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from .agent_client import AgentRequest, AgentResult


TextCallback = Callable[[str], None]


@runtime_checkable
class AgentClient(Protocol):
    """Protocol for the external coding agent.

    One call is one agent session: it receives a prompt and a persona and
    may edit files under the working directory. Implementations never
    raise for agent-side failures; they return an unsuccessful result.
    """

    async def run(
        self,
        request: AgentRequest,
        on_text: Optional[TextCallback] = None
    ) -> AgentResult:
        """Run one agent session and return its outcome."""
        ...


@runtime_checkable
class HistorySource(Protocol):
    """Protocol for change history lookups used by context assembly."""

    def get_recent_log(self, count: int = 10) -> Optional[str]:
        """Recent history, one commit per line, or None if unavailable."""
        ...

    def current_ref(self) -> Optional[str]:
        """Short identifier of the current commit, or None."""
        ...

