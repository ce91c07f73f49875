"""Client for the external coding agent.

Uses the Claude Agent SDK. One ``run`` call is one agent session: the agent
gets a persona (system prompt), a user message and a working directory, and
may edit any file under it.

Architecture:
- AgentRequest / AgentResult: what goes in and what comes back
- SDKAgentClient: real implementation over ``claude_agent_sdk.query``
- MockAgentClient: scripted implementation for tests and dry runs
"""

import asyncio
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from claude_agent_sdk import AssistantMessage, ClaudeAgentOptions, ResultMessage, TextBlock, query
from pydantic import BaseModel


class AgentRequest(BaseModel):
    """A single agent invocation."""
    prompt: str
    system_prompt: str
    working_directory: Path
    max_turns: int = 50
    model: Optional[str] = None


class AgentResult(BaseModel):
    """Outcome of an agent invocation.

    ``success`` is only the agent's own claim. Callers that care whether
    work was actually done must check durable state instead.
    """
    success: bool
    output: str = ""
    error: Optional[str] = None
    total_cost_usd: Optional[float] = None
    num_turns: Optional[int] = None


# =============================================================================
# Authentication
# =============================================================================

def get_auth_method() -> Optional[str]:
    """Which credential the SDK will pick up, or None if none is set."""
    if os.environ.get("CLAUDE_CODE_OAUTH_TOKEN"):
        return "oauth"
    if os.environ.get("ANTHROPIC_API_KEY"):
        return "api_key"
    return None


def is_auth_configured() -> bool:
    return get_auth_method() is not None


# =============================================================================
# SDK Client
# =============================================================================

class SDKAgentClient:
    """Agent client backed by the Claude Agent SDK.

    Streams assistant text to ``on_text`` as it arrives. The final
    ResultMessage decides success; its ``result`` text, when present,
    replaces the streamed output. Exceptions raised by the SDK are caught
    and returned as a failed result with the message verbatim.
    """

    def __init__(self, timeout_seconds: int = 0, verbose: bool = False):
        self.timeout_seconds = timeout_seconds
        self.verbose = verbose

    async def run(
        self,
        request: AgentRequest,
        on_text: Optional[Callable[[str], None]] = None
    ) -> AgentResult:
        timeout = self.timeout_seconds
        try:
            coro = self._query(request, on_text)
            if timeout > 0:
                if self.verbose:
                    print(f"[SDK] Timeout set: {timeout}s", flush=True)
                return await asyncio.wait_for(coro, timeout=timeout)
            return await coro
        except asyncio.TimeoutError:
            return AgentResult(success=False, error=f"Session timeout after {timeout}s")

    async def _query(
        self,
        request: AgentRequest,
        on_text: Optional[Callable[[str], None]] = None
    ) -> AgentResult:
        output_parts: list[str] = []
        result: Optional[AgentResult] = None

        options = ClaudeAgentOptions(
            system_prompt=request.system_prompt,
            cwd=str(request.working_directory),
            max_turns=request.max_turns,
            model=request.model,
            permission_mode="bypassPermissions",
        )

        if self.verbose:
            print(f"[SDK] Working directory: {request.working_directory}", flush=True)
            print(f"[SDK] Max turns: {request.max_turns}", flush=True)

        try:
            async for message in query(prompt=request.prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            output_parts.append(block.text)
                            if on_text:
                                on_text(block.text)
                elif isinstance(message, ResultMessage):
                    result = self._from_result_message(message, "".join(output_parts))
        except Exception as e:
            if self.verbose:
                print(f"[SDK ERROR] {e}", flush=True)
            return AgentResult(success=False, output="".join(output_parts), error=str(e))

        if result is None:
            return AgentResult(
                success=False,
                output="".join(output_parts),
                error="Agent session ended without a result message",
            )
        return result

    @staticmethod
    def _from_result_message(message: ResultMessage, streamed: str) -> AgentResult:
        success = message.subtype == "success" and not message.is_error
        return AgentResult(
            success=success,
            output=message.result or streamed,
            error=None if success else (message.result or f"Agent session ended with {message.subtype}"),
            total_cost_usd=message.total_cost_usd,
            num_turns=message.num_turns,
        )


# =============================================================================
# Mock Client (for testing)
# =============================================================================

MockResponse = Union[AgentResult, str, BaseException]
SideEffect = Callable[[AgentRequest], Union[None, Awaitable[None]]]


class MockAgentClient:
    """Scripted agent client.

    Responses are consumed in order; once exhausted the last one repeats.
    A string response is a successful result with that output, and an
    exception response is raised from ``run``. The optional side effect runs
    before the response is returned and stands in for the agent editing
    files (for example marking a task done).
    """

    def __init__(
        self,
        responses: Optional[list[MockResponse]] = None,
        side_effect: Optional[SideEffect] = None
    ):
        self.responses = list(responses or [AgentResult(success=True)])
        self.side_effect = side_effect
        self.requests: list[AgentRequest] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def run(
        self,
        request: AgentRequest,
        on_text: Optional[Callable[[str], None]] = None
    ) -> AgentResult:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        response: Any = self.responses[index]

        if self.side_effect is not None:
            outcome = self.side_effect(request)
            if asyncio.iscoroutine(outcome):
                await outcome

        if isinstance(response, BaseException):
            raise response
        if isinstance(response, str):
            response = AgentResult(success=True, output=response)

        if on_text and response.output:
            on_text(response.output)
        return response
