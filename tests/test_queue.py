"""Tests for the queue controller loop."""

from unittest.mock import patch

import pytest

from feature_harness.agent_client import AgentRequest, AgentResult, MockAgentClient
from feature_harness.models import HarnessConfig, TaskCategory
from feature_harness.queue import LoopState, QueueController

from conftest import completes_target, make_task, write_feature_list


class TestQueueController:
    @pytest.mark.asyncio
    async def test_drains_queue_in_order(self, project, config, history):
        client = MockAgentClient(side_effect=completes_target(project))
        controller = QueueController(project, client, config, git=history)

        summary = await controller.run_loop()

        assert summary.state == LoopState.DONE
        assert summary.sessions_run == 2
        assert summary.completed_task_ids == ["F001", "F002"]
        assert client.call_count == 2
        assert summary.stats.completed == 2
        assert summary.stats.percentage == 100

    @pytest.mark.asyncio
    async def test_already_complete(self, tmp_path, config, history):
        write_feature_list(tmp_path, [make_task("F001", passes=True)])
        client = MockAgentClient()

        summary = await QueueController(tmp_path, client, config, git=history).run_loop()

        assert summary.state == LoopState.DONE
        assert summary.sessions_run == 0
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, project, config, history):
        client = MockAgentClient(side_effect=completes_target(project))

        summary = await QueueController(project, client, config, git=history).run_loop(max_sessions=1)

        assert summary.state == LoopState.EXHAUSTED
        assert summary.sessions_run == 1
        assert summary.completed_task_ids == ["F001"]

    @pytest.mark.asyncio
    async def test_failed_task_is_retried(self, project, config, history):
        """A failed session neither stops the loop nor skips the task."""
        client = MockAgentClient(["did nothing"])

        summary = await QueueController(project, client, config, git=history).run_loop(max_sessions=3)

        assert summary.state == LoopState.EXHAUSTED
        assert summary.sessions_run == 3
        assert summary.completed_task_ids == []
        assert all("TARGET FEATURE: F001" in r.prompt for r in client.requests)

    @pytest.mark.asyncio
    async def test_missing_store_aborts(self, tmp_path, config, history):
        summary = await QueueController(tmp_path, MockAgentClient(), config, git=history).run_loop()

        assert summary.state == LoopState.ABORTED
        assert "not found" in summary.error
        assert summary.stats is None

    @pytest.mark.asyncio
    async def test_store_deleted_mid_run_aborts(self, project, config, history):
        def delete_store(request: AgentRequest) -> None:
            (project / "feature_list.json").unlink()

        client = MockAgentClient(side_effect=delete_store)
        summary = await QueueController(project, client, config, git=history).run_loop()

        assert summary.state == LoopState.ABORTED
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_category_filter(self, tmp_path, config, history):
        write_feature_list(tmp_path, [
            make_task("F001"),
            make_task("B001", task_type="bugfix"),
            make_task("B002", task_type="bugfix"),
        ])
        client = MockAgentClient(side_effect=completes_target(tmp_path))

        summary = await QueueController(tmp_path, client, config, git=history).run_loop(
            category=TaskCategory.BUGFIX
        )

        assert summary.state == LoopState.DONE
        assert summary.completed_task_ids == ["B001", "B002"]
        assert summary.stats.pending == 1

    @pytest.mark.asyncio
    async def test_request_stop(self, project, config, history):
        controller = None

        def stop_after_first(request: AgentRequest) -> None:
            controller.request_stop()

        client = MockAgentClient(["nope"], side_effect=stop_after_first)
        controller = QueueController(project, client, config, git=history)

        summary = await controller.run_loop()

        assert summary.state == LoopState.ABORTED
        assert summary.error == "Stopped by user"
        assert summary.sessions_run == 1

    @pytest.mark.asyncio
    async def test_default_budget_from_config(self, project, history):
        config = HarnessConfig(max_sessions=2, session_delay_seconds=0)
        client = MockAgentClient(["nope"])

        summary = await QueueController(project, client, config, git=history).run_loop()

        assert summary.state == LoopState.EXHAUSTED
        assert client.call_count == 2

    @pytest.mark.asyncio
    async def test_delay_only_between_sessions(self, project, history):
        config = HarnessConfig(session_delay_seconds=3)
        client = MockAgentClient(side_effect=completes_target(project))

        with patch("feature_harness.queue.asyncio.sleep") as sleep:
            await QueueController(project, client, config, git=history).run_loop()

        sleep.assert_called_once_with(3)

    @pytest.mark.asyncio
    async def test_callbacks(self, project, config, history):
        started = []
        ended = []
        client = MockAgentClient(side_effect=completes_target(project))
        controller = QueueController(
            project, client, config, git=history,
            on_session_start=lambda n, task: started.append((n, task.id)),
            on_session_end=lambda n, result: ended.append((n, result.success)),
        )

        await controller.run_loop()

        assert started == [(1, "F001"), (2, "F002")]
        assert ended == [(1, True), (2, True)]

    @pytest.mark.asyncio
    async def test_total_cost(self, project, config, history):
        client = MockAgentClient(
            [AgentResult(success=True, total_cost_usd=0.5)],
            side_effect=completes_target(project),
        )
        summary = await QueueController(project, client, config, git=history).run_loop()

        assert summary.total_cost_usd == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_undecodable_progress_log_does_not_crash(self, project, config, history):
        (project / "progress.log").write_bytes(b"caf\xe9\n")
        client = MockAgentClient(side_effect=completes_target(project))

        summary = await QueueController(project, client, config, git=history).run_loop(max_sessions=1)

        assert summary.state == LoopState.EXHAUSTED
        assert summary.completed_task_ids == ["F001"]
        assert "\ufffd" in client.requests[0].prompt
