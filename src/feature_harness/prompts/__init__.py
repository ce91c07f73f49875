"""Prompt templates for the agent personas and generation passes.

Templates are plain text files in this package. A project can override any
of them by placing a file with the same name in ``.harness/prompts/``.

Persona and generation system prompts are used verbatim. The ``session``
and ``*_request`` templates are filled with ``str.format``.
"""

from pathlib import Path
from typing import Optional

from ..models import HARNESS_DIR, TaskCategory


PROMPTS_DIR = Path(__file__).parent

# One persona per category; anything else uses the feature persona
PERSONA_PROMPTS: dict[TaskCategory, str] = {
    TaskCategory.FEATURE: "coding",
    TaskCategory.REFACTORING: "refactoring",
    TaskCategory.BUGFIX: "bugfix",
    TaskCategory.IMPROVEMENT: "improvement",
    TaskCategory.DOCS: "docs",
}


def load_prompt(name: str, project_path: Optional[Path] = None) -> str:
    """Load a prompt template by name.

    Project-local prompts in ``.harness/prompts/`` take precedence over the
    packaged ones.

    Raises:
        FileNotFoundError: If no template with that name exists.
    """
    if project_path is not None:
        local_prompt = Path(project_path) / HARNESS_DIR / "prompts" / f"{name}.txt"
        if local_prompt.exists():
            return local_prompt.read_text(encoding="utf-8")

    package_prompt = PROMPTS_DIR / f"{name}.txt"
    if package_prompt.exists():
        return package_prompt.read_text(encoding="utf-8")

    raise FileNotFoundError(f"Prompt template not found: {name}")


def get_system_prompt(category: Optional[TaskCategory | str] = None, project_path: Optional[Path] = None) -> str:
    """System prompt for the persona matching a task category."""
    if not isinstance(category, TaskCategory):
        category = TaskCategory.resolve(category)
    return load_prompt(PERSONA_PROMPTS[category], project_path)
