"""Recover task records from free-text model output.

The agent is told to answer with pure JSON but regularly wraps it in prose,
code fences, or trailing commentary. No single strategy is reliable, so the
extractor runs an ordered cascade of strategies and returns the first
candidate that both parses as JSON and passes validation.

Each strategy is a pure function ``text -> iterable of candidate strings``.
``first_success`` composes them; adding a strategy means writing one more
function and putting it in the tuple.

Bracket scanning is string-aware: braces inside quoted values do not count
toward nesting depth.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional

from pydantic import ValidationError

from .exceptions import ExtractionError, TaskValidationError
from .models import Task, TaskList


Strategy = Callable[[str], Iterable[str]]

_FENCED_BLOCK = re.compile(r"```[\w+-]*[ \t]*\n?([\s\S]*?)```")
_FENCED_ARRAY = re.compile(r"```(?:json)?\s*(\[[\s\S]*?\])\s*```", re.IGNORECASE)

# An opening brace followed, at the same nesting level, by "id" then "title"
# (or the reverse order).
_KEYED_OBJECT_PATTERNS = (
    re.compile(r'\{[^{}]*?"id"\s*:\s*"[^"]*"[^{}]*?"title"\s*:'),
    re.compile(r'\{[^{}]*?"title"\s*:\s*"[^"]*"[^{}]*?"id"\s*:'),
)

# A bracketed, comma separated run of objects that each carry an "id" key.
_ID_OBJECT_ARRAY = re.compile(
    r'\[\s*\{[\s\S]*?"id"\s*:[\s\S]*?\}\s*(?:,\s*\{[\s\S]*?"id"\s*:[\s\S]*?\}\s*)*\]'
)


# =============================================================================
# Bracket scanning
# =============================================================================

class _DepthCounter:
    """Tracks bracket depth across chunks of text, ignoring quoted strings."""

    def __init__(self, open_char: str, close_char: str):
        self.open_char = open_char
        self.close_char = close_char
        self.depth = 0
        self._in_string = False
        self._escaped = False

    def feed(self, char: str) -> None:
        if self._in_string:
            if self._escaped:
                self._escaped = False
            elif char == "\\":
                self._escaped = True
            elif char == '"':
                self._in_string = False
            return

        if char == '"':
            self._in_string = True
        elif char == self.open_char:
            self.depth += 1
        elif char == self.close_char:
            self.depth -= 1


def find_balanced_end(text: str, start: int, open_char: str = "{", close_char: str = "}") -> Optional[int]:
    """Return the index just past the bracket that closes ``text[start]``.

    Returns None if the bracket is never closed.
    """
    counter = _DepthCounter(open_char, close_char)
    for i in range(start, len(text)):
        counter.feed(text[i])
        if counter.depth == 0:
            return i + 1
    return None


def _top_level_spans(text: str, open_char: str, close_char: str) -> Iterator[str]:
    """Yield every top-level balanced region that starts with ``open_char``."""
    pos = text.find(open_char)
    while pos != -1:
        end = find_balanced_end(text, pos, open_char, close_char)
        if end is None:
            pos = text.find(open_char, pos + 1)
            continue
        yield text[pos:end]
        pos = text.find(open_char, end)


# =============================================================================
# Strategies
# =============================================================================

def whole_text(text: str) -> Iterator[str]:
    """The entire trimmed text."""
    stripped = text.strip()
    if stripped:
        yield stripped


def fenced_blocks(text: str) -> Iterator[str]:
    """Contents of triple-backtick code blocks, optionally language tagged."""
    for match in _FENCED_BLOCK.finditer(text):
        content = match.group(1).strip()
        if content:
            yield content


def keyed_object(text: str) -> Iterator[str]:
    """An object whose own keys include "id" and "title", expanded to its closing brace."""
    starts: set[int] = set()
    for pattern in _KEYED_OBJECT_PATTERNS:
        for match in pattern.finditer(text):
            starts.add(match.start())

    for start in sorted(starts):
        end = find_balanced_end(text, start)
        if end is not None:
            yield text[start:end]


def line_scan(text: str) -> Iterator[str]:
    """The region from the first line starting with "{" to the line where depth returns to zero."""
    lines = text.split("\n")
    counter: Optional[_DepthCounter] = None
    start = 0

    for i, line in enumerate(lines):
        if counter is None:
            if not line.strip().startswith("{"):
                continue
            counter = _DepthCounter("{", "}")
            start = i

        for char in line:
            counter.feed(char)

        if counter.depth <= 0:
            yield "\n".join(lines[start:i + 1])
            return


def all_objects(text: str) -> Iterator[str]:
    """Every top-level balanced object, in order of appearance."""
    yield from _top_level_spans(text, "{", "}")


def fenced_array(text: str) -> Iterator[str]:
    """A code block whose content is a JSON array."""
    for match in _FENCED_ARRAY.finditer(text):
        yield match.group(1).strip()


def first_array(text: str) -> Iterator[str]:
    """The array starting at the first "[" expanded to its closing bracket."""
    start = text.find("[")
    if start == -1:
        return
    end = find_balanced_end(text, start, "[", "]")
    if end is not None:
        yield text[start:end]


def all_arrays(text: str) -> Iterator[str]:
    """Every top-level balanced array, in order of appearance."""
    yield from _top_level_spans(text, "[", "]")


def id_object_array(text: str) -> Iterator[str]:
    """A bracketed run of comma separated objects that each contain an "id" key."""
    for match in _ID_OBJECT_ARRAY.finditer(text):
        yield match.group(0)


OBJECT_STRATEGIES: tuple[Strategy, ...] = (
    whole_text,
    fenced_blocks,
    keyed_object,
    line_scan,
    all_objects,
)

ARRAY_STRATEGIES: tuple[Strategy, ...] = (
    whole_text,
    fenced_blocks,
    fenced_array,
    first_array,
    all_arrays,
    id_object_array,
)


# =============================================================================
# Validation
# =============================================================================

def _first_present(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_valid_task(data: Any) -> bool:
    """Check the required shape of a task record.

    ``id``, ``title`` and ``description`` must be non-empty strings,
    ``acceptance_criteria`` a non-empty list of strings and
    ``passes`` a boolean.
    """
    if not isinstance(data, dict):
        return False

    if not all(_is_non_empty_str(data.get(key)) for key in ("id", "title", "description")):
        return False

    criteria = _first_present(data, "acceptance_criteria", "acceptanceCriteria")
    if not isinstance(criteria, list) or not criteria:
        return False
    if not all(isinstance(c, str) for c in criteria):
        return False

    return isinstance(_first_present(data, "passes", "done"), bool)


def as_task(data: Any) -> Optional[Task]:
    """Convert parsed JSON to a Task, or None if it is not a valid task."""
    if not is_valid_task(data):
        return None
    try:
        return Task.model_validate(data)
    except ValidationError:
        return None


def as_task_array(data: Any) -> Optional[list[Task]]:
    """Convert parsed JSON to a non-empty list of Tasks. Every element must be valid."""
    if not isinstance(data, list) or not data:
        return None

    tasks = []
    for item in data:
        task = as_task(item)
        if task is None:
            return None
        tasks.append(task)
    return tasks


def as_task_list(data: Any) -> Optional[TaskList]:
    """Convert parsed JSON to a TaskList with at least one valid task."""
    if not isinstance(data, dict):
        return None

    tasks = as_task_array(data.get("features"))
    if tasks is None:
        return None

    payload = dict(data)
    payload["features"] = tasks
    payload.setdefault("project_name", "")
    payload.setdefault("description", "")
    try:
        return TaskList.model_validate(payload)
    except ValidationError:
        return None


# =============================================================================
# Cascade
# =============================================================================

@dataclass
class CascadeResult:
    """Outcome of running a strategy cascade."""
    value: Any = None
    strategy: Optional[str] = None
    parsed_candidates: int = 0


def first_success(
    strategies: Iterable[Strategy],
    text: str,
    convert: Callable[[Any], Any]
) -> CascadeResult:
    """Run strategies in order and return the first candidate that converts.

    A candidate counts only if it parses as JSON and ``convert`` returns a
    non-None value for it.
    """
    parsed = 0
    for strategy in strategies:
        for candidate in strategy(text):
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError:
                continue

            parsed += 1
            value = convert(data)
            if value is not None:
                return CascadeResult(value=value, strategy=strategy.__name__, parsed_candidates=parsed)

    return CascadeResult(parsed_candidates=parsed)


def _run(strategies: tuple[Strategy, ...], text: str, convert: Callable[[Any], Any], what: str) -> Any:
    names = [s.__name__ for s in strategies]
    result = first_success(strategies, text or "", convert)
    if result.value is not None:
        return result.value

    if result.parsed_candidates:
        raise TaskValidationError(
            f"Found {result.parsed_candidates} JSON candidate(s) but none is a valid {what}",
            raw_text=text,
            strategies=names,
        )
    raise ExtractionError(
        f"Could not find a {what} in the model output",
        raw_text=text,
        strategies=names,
    )


def extract_task(text: str) -> Task:
    """Recover a single task from model output.

    Raises:
        TaskValidationError: JSON was found but no candidate was a valid task.
        ExtractionError: No parseable candidate was found.
    """
    return _run(OBJECT_STRATEGIES, text, as_task, "feature")


def extract_tasks(text: str) -> list[Task]:
    """Recover a non-empty array of tasks from model output.

    Raises:
        TaskValidationError: JSON was found but no candidate was a valid array of tasks.
        ExtractionError: No parseable candidate was found.
    """
    return _run(ARRAY_STRATEGIES, text, as_task_array, "feature array")


def extract_task_list(text: str) -> TaskList:
    """Recover a full task list (initialization output) from model output."""
    return _run(OBJECT_STRATEGIES, text, as_task_list, "feature list")
