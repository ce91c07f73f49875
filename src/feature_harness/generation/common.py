"""Helpers shared by the generation passes."""

import json
from datetime import datetime
from pathlib import Path

from ..agent_client import AgentResult
from ..models import TaskList


DEBUG_OUTPUT_FILE = ".harness-debug-output.txt"
ATOMIZER_DEBUG_FILE = ".harness-atomizer-debug.txt"


def write_debug_output(path: Path, result: AgentResult) -> bool:
    """Save raw agent output so a rejected extraction can be inspected later.

    Returns False if the file could not be written; that never fails the pass.
    """
    content = (
        f"=== Debug Output ({datetime.now().isoformat(timespec='seconds')}) ===\n"
        f"SUCCESS: {result.success}\n"
        f"ERROR: {result.error or 'none'}\n"
        f"OUTPUT LENGTH: {len(result.output)}\n"
        f"\n"
        f"OUTPUT:\n"
        f"{result.output or '(empty)'}\n"
        f"\n"
        f"=== End of Output ===\n"
    )
    try:
        path.write_text(content, encoding="utf-8")
    except OSError:
        return False
    return True


def summarize_tasks(task_list: TaskList) -> str:
    """Existing IDs, types and titles as JSON, for ID generation in prompts."""
    return json.dumps(
        [
            {"id": t.id, "type": t.kind.value, "title": t.title}
            for t in task_list.features
        ],
        indent=2,
        ensure_ascii=False,
    )
