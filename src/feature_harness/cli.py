"""CLI interface for the feature harness."""

import asyncio
import json
import signal
import sys
import tomllib
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .agent_client import SDKAgentClient, get_auth_method, is_auth_configured
from .exceptions import DuplicateTaskError, ExtractionError, HarnessError
from .generation import VALID_TARGETS, FeatureAdderAgent, FeatureAtomizerAgent, InitializerAgent
from .models import HarnessConfig, ProgressStats, Task, TaskCategory, TaskList
from .progress import ProgressJournal
from .protocols import AgentClient
from .queue import LoopState, LoopSummary, QueueController
from .session import SessionExecutor, SessionResult
from .store import TaskStore

console = Console()

if sys.platform == "win32":
    SYM_OK = "[OK]"
    SYM_FAIL = "[X]"
    SYM_PENDING = "[ ]"
else:
    SYM_OK = "✓"
    SYM_FAIL = "✗"
    SYM_PENDING = "○"

CATEGORY_CHOICES = [c.value for c in TaskCategory]

# Command that works each category
RUN_COMMANDS = {
    TaskCategory.FEATURE: "run",
    TaskCategory.REFACTORING: "refactor",
    TaskCategory.BUGFIX: "fix",
    TaskCategory.IMPROVEMENT: "improve",
    TaskCategory.DOCS: "docs",
}

# Dependency name -> tech stack label, for `adopt`
KNOWN_PACKAGES = {
    "react": "React",
    "next": "Next.js",
    "vue": "Vue",
    "angular": "Angular",
    "express": "Express",
    "typescript": "TypeScript",
    "tailwindcss": "TailwindCSS",
    "prisma": "Prisma",
    "@supabase/supabase-js": "Supabase",
    "django": "Django",
    "flask": "Flask",
    "fastapi": "FastAPI",
    "pydantic": "Pydantic",
    "sqlalchemy": "SQLAlchemy",
    "click": "Click",
    "pytest": "pytest",
}


def create_client(config: HarnessConfig) -> AgentClient:
    """Build the agent client used by all commands."""
    return SDKAgentClient(timeout_seconds=config.session_timeout_seconds)


def project_option(f):
    return click.option(
        '--project', '-p', 'project',
        type=click.Path(file_okay=False),
        default='.',
        help='Project path (defaults to current directory)'
    )(f)


def _resolve(project: str) -> Path:
    return Path(project).resolve()


def _load_config(project_path: Path, **overrides) -> HarnessConfig:
    try:
        return HarnessConfig.load(project_path, **overrides)
    except ValueError as e:
        console.print(f"[red]Invalid .harness/config.json:[/red] {escape(str(e))}")
        sys.exit(1)


def _require_auth() -> None:
    if is_auth_configured():
        return
    console.print(f"[red]{SYM_FAIL} No credentials found.[/red]")
    console.print("  Set CLAUDE_CODE_OAUTH_TOKEN or ANTHROPIC_API_KEY and try again.")
    sys.exit(1)


def _require_store(project_path: Path, config: HarnessConfig) -> TaskStore:
    store = TaskStore(project_path, config.feature_list_file)
    if not store.exists():
        console.print(f"[red]{SYM_FAIL} No {config.feature_list_file} found in project.[/red]")
        console.print(f"  Looked in: {store.path}")
        console.print("\n  Run 'harness init <name>' or 'harness adopt' first.")
        sys.exit(1)
    return store


def _fail(e: HarnessError) -> None:
    console.print(f"[red]{SYM_FAIL} {escape(str(e))}[/red]")
    if isinstance(e, ExtractionError) and e.strategies:
        console.print(f"[dim]Strategies tried: {', '.join(e.strategies)}[/dim]")
    sys.exit(1)


def _print_text(text: str) -> None:
    console.print(text, end="", markup=False, highlight=False)


def _print_progress(message: str) -> None:
    console.print(f"[dim][Progress] {message}[/dim]")


def _progress_bar(stats: ProgressStats, width: int = 40) -> str:
    filled = round(stats.percentage / 100 * width)
    return f"[green]{'█' * filled}[/green][dim]{'░' * (width - filled)}[/dim]"


# =============================================================================
# Commands
# =============================================================================

@click.group()
@click.version_option(package_name="feature-harness")
def main():
    """Feature harness - runs a coding agent through a backlog one feature at a time."""
    pass


@main.command()
@click.argument('name')
@click.option('--description', '-d', help='Project description (prompted if not provided)')
@click.option('--tech', '-t', help='Comma-separated tech stack')
@click.option('--workspace', '-w', type=click.Path(file_okay=False), default='workspace',
              help='Directory the project is created in')
def init(name: str, description: Optional[str], tech: Optional[str], workspace: str):
    """Create a new project with an AI-generated feature list.

    \b
    Examples:
        harness init todo-app -d "A todo app with tags" -t "python,fastapi"
    """
    _require_auth()

    if not description:
        description = click.prompt('Project description')
    tech_stack = [t.strip() for t in tech.split(',') if t.strip()] if tech else None
    workspace_path = Path(workspace).resolve()
    config = _load_config(workspace_path)

    console.print(Panel(
        f"[bold]Project:[/bold] {name}\n"
        f"[bold]Location:[/bold] {workspace_path / name}",
        title="Generating feature list"
    ))

    agent = InitializerAgent(create_client(config), config, on_progress=_print_progress)
    try:
        task_list = asyncio.run(agent.initialize(
            name, description, tech_stack, workspace_path, on_text=_print_text
        ))
    except HarnessError as e:
        _fail(e)

    console.print(f"\n[green]{SYM_OK} Project initialized[/green]")
    console.print(f"  Features: {len(task_list.features)}")
    console.print(f"  Tech stack: {', '.join(task_list.tech_stack or []) or 'Not specified'}")
    for task in task_list.features:
        console.print(f"  [cyan]{task.id}[/cyan] {task.title}")
    console.print(f"\nNext steps:\n  cd {workspace_path / name}\n  harness run")


def _detect_project_info(project_path: Path) -> tuple[Optional[str], Optional[str], list[str]]:
    """Read name, description and a tech stack guess from pyproject.toml or package.json."""
    name = None
    description = None
    deps: list[str] = []

    pyproject = project_path / "pyproject.toml"
    if pyproject.exists():
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            data = {}
        project = data.get("project", {})
        name = project.get("name")
        description = project.get("description")
        for requirement in project.get("dependencies", []):
            dep = requirement.split(";")[0]
            for sep in ("[", "<", ">", "=", "!", "~", " "):
                dep = dep.split(sep)[0]
            deps.append(dep.strip().lower())

    package_json = project_path / "package.json"
    if package_json.exists():
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = {}
        name = name or data.get("name")
        description = description or data.get("description")
        deps.extend(data.get("dependencies", {}))
        deps.extend(data.get("devDependencies", {}))

    tech_stack = []
    for dep in deps:
        label = KNOWN_PACKAGES.get(dep)
        if label and label not in tech_stack:
            tech_stack.append(label)
    return name, description, tech_stack


@main.command()
@project_option
@click.option('--name', '-n', help='Project name (detected from pyproject.toml, package.json or the directory)')
@click.option('--description', '-d', help='Project description')
def adopt(project: str, name: Optional[str], description: Optional[str]):
    """Adopt an existing project by creating an empty feature list."""
    project_path = _resolve(project)
    config = _load_config(project_path)
    store = TaskStore(project_path, config.feature_list_file)

    if store.exists():
        console.print(f"[yellow]{config.feature_list_file} already exists in this project.[/yellow]")
        if not click.confirm("Overwrite?", default=False):
            console.print("[dim]Cancelled[/dim]")
            return

    detected_name, detected_description, tech_stack = _detect_project_info(project_path)
    name = name or detected_name or project_path.name
    description = description or detected_description
    if not description:
        description = click.prompt('Project description', default='Project adopted by harness')

    task_list = TaskList(
        project_name=name,
        description=description,
        tech_stack=tech_stack or None,
    )
    try:
        store.create(task_list, overwrite=True)
        ProgressJournal(project_path, config.progress_file).initialize(name)
    except HarnessError as e:
        _fail(e)

    console.print(f"\n[green]{SYM_OK} Project adopted[/green]")
    console.print(f"  Created: {store.path}")
    console.print(f"  Name: {name}")
    if tech_stack:
        console.print(f"  Tech stack: {', '.join(tech_stack)}")
    console.print("\nNext steps:")
    console.print('  harness add-bug "description"      # Add a bug to fix')
    console.print('  harness add-improvement "desc"     # Add an improvement')
    console.print('  harness add-refactor "desc"        # Add a refactoring task')
    console.print('  harness add "desc"                 # Add any feature type')


def _run_single(project: str, max_turns: Optional[int], category: Optional[TaskCategory]) -> None:
    _require_auth()
    project_path = _resolve(project)
    config = _load_config(project_path, max_turns=max_turns)
    store = _require_store(project_path, config)

    try:
        task = store.next_task(category)
    except HarnessError as e:
        _fail(e)

    if task is None:
        kind = f" of type '{category.value}'" if category else ""
        console.print(f"[green]{SYM_OK} No pending features{kind} found. All features may be complete![/green]")
        console.print("\n  Run 'harness status' to see project status.")
        return

    console.print(Panel(
        f"[bold green]Feature:[/bold green] {task.id} - {task.title}\n"
        f"[bold]Type:[/bold] {task.kind.value}\n"
        f"[bold]Max turns:[/bold] {config.max_turns}",
        title="Starting session"
    ))

    executor = SessionExecutor(project_path, create_client(config), config, on_progress=_print_progress)
    try:
        result = asyncio.run(executor.run_session(category, on_text=_print_text))
    except HarnessError as e:
        _fail(e)

    _print_session_result(result)
    if not result.success:
        sys.exit(1)


def _print_session_result(result: SessionResult, number: Optional[int] = None) -> None:
    label = f"Session {number}" if number else "Session"
    console.print("")
    if result.success:
        console.print(f"[green]{SYM_OK} {label} complete: {result.task_id} passes[/green]")
        if result.commit_ref:
            console.print(f"  Commit: {result.commit_ref}")
    else:
        console.print(f"[yellow]{label} incomplete: {result.task_id} is not passing yet[/yellow]")
        if result.error:
            console.print(f"  [red]Error:[/red] {escape(result.error)}")
    if result.total_cost_usd:
        console.print(f"  [dim]Cost: ${result.total_cost_usd:.4f}[/dim]")


@main.command()
@project_option
@click.option('--max-turns', '-m', type=int, help='Maximum agent turns for the session')
def run(project: str, max_turns: Optional[int]):
    """Run a single coding session on the next pending feature."""
    _run_single(project, max_turns, None)


@main.command()
@project_option
@click.option('--max-turns', '-m', type=int, help='Maximum agent turns for the session')
def refactor(project: str, max_turns: Optional[int]):
    """Run a single session on the next pending refactoring task."""
    _run_single(project, max_turns, TaskCategory.REFACTORING)


@main.command()
@project_option
@click.option('--max-turns', '-m', type=int, help='Maximum agent turns for the session')
def fix(project: str, max_turns: Optional[int]):
    """Run a single session on the next pending bugfix."""
    _run_single(project, max_turns, TaskCategory.BUGFIX)


@main.command()
@project_option
@click.option('--max-turns', '-m', type=int, help='Maximum agent turns for the session')
def improve(project: str, max_turns: Optional[int]):
    """Run a single session on the next pending improvement."""
    _run_single(project, max_turns, TaskCategory.IMPROVEMENT)


@main.command()
@project_option
@click.option('--max-turns', '-m', type=int, help='Maximum agent turns for the session')
def docs(project: str, max_turns: Optional[int]):
    """Run a single session on the next pending documentation task."""
    _run_single(project, max_turns, TaskCategory.DOCS)


@main.command()
@project_option
@click.option('--max', '-m', 'max_sessions', type=int, help='Maximum sessions (default 100)')
@click.option('--max-turns', '-t', type=int, help='Maximum agent turns per session')
@click.option('--type', 'task_type', type=click.Choice(CATEGORY_CHOICES), help='Only process features of this type')
def loop(project: str, max_sessions: Optional[int], max_turns: Optional[int], task_type: Optional[str]):
    """Run coding sessions until every feature passes or the budget runs out.

    Press Ctrl+C to stop after the current session.
    """
    _require_auth()
    project_path = _resolve(project)
    config = _load_config(project_path, max_turns=max_turns, max_sessions=max_sessions)
    _require_store(project_path, config)
    category = TaskCategory(task_type) if task_type else None

    if category:
        console.print(f"[dim]Filtering by type: {category.value}[/dim]")

    def on_session_start(number: int, task: Task) -> None:
        console.print(f"\n{'=' * 60}")
        console.print(f"[bold cyan]Session {number}: {task.id} - {task.title}[/bold cyan]")
        console.print(f"{'=' * 60}\n")

    controller = QueueController(
        project_path,
        create_client(config),
        config,
        on_progress=_print_progress,
        on_session_start=on_session_start,
        on_session_end=lambda number, result: _print_session_result(result, number),
    )

    def handle_interrupt(signum, frame):
        console.print("\n[yellow]Stop requested - finishing current session...[/yellow]")
        controller.request_stop()

    previous_handler = signal.signal(signal.SIGINT, handle_interrupt)
    try:
        summary = asyncio.run(controller.run_loop(category=category, on_text=_print_text))
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    _print_loop_summary(summary, category)
    if summary.state == LoopState.ABORTED:
        sys.exit(1)


def _print_loop_summary(summary: LoopSummary, category: Optional[TaskCategory] = None) -> None:
    if summary.state == LoopState.DONE:
        scope = f"{category.value} features" if category else "features"
        headline = f"[green]{SYM_OK} All {scope} are complete![/green]"
    elif summary.state == LoopState.EXHAUSTED:
        headline = "[yellow]Session budget reached with features still pending[/yellow]"
    else:
        headline = f"[red]Stopped: {escape(summary.error or '')}[/red]"

    lines = [
        headline,
        f"[bold]Sessions run:[/bold] {summary.sessions_run}",
        f"[bold]Completed this run:[/bold] {', '.join(summary.completed_task_ids) or 'none'}",
    ]
    if summary.stats:
        lines.append(
            f"[bold]Features passing:[/bold] {summary.stats.completed}/{summary.stats.total} "
            f"({summary.stats.percentage}%)"
        )
    if summary.total_cost_usd:
        lines.append(f"[bold]Total cost:[/bold] ${summary.total_cost_usd:.4f}")

    console.print(Panel("\n".join(lines), title="Final Status"))


@main.command()
@project_option
def status(project: str):
    """Show project progress."""
    project_path = _resolve(project)
    config = _load_config(project_path)
    store = _require_store(project_path, config)

    try:
        task_list = store.load()
    except HarnessError as e:
        _fail(e)

    stats = task_list.stats()
    console.print(Panel(
        f"[bold]Description:[/bold] {task_list.description or '-'}\n"
        f"[bold]Tech stack:[/bold] {', '.join(task_list.tech_stack or []) or 'Not specified'}\n\n"
        f"Progress: {_progress_bar(stats)} {stats.percentage}%\n"
        f"{stats.completed} completed / {stats.pending} pending / {stats.total} total",
        title=f"Project: {task_list.project_name}"
    ))

    by_category = task_list.stats_by_category()
    if by_category:
        breakdown = Table(title="Breakdown by type")
        breakdown.add_column("Type")
        breakdown.add_column("Done", justify="right")
        breakdown.add_column("Percent", justify="right")
        for kind, kind_stats in by_category.items():
            breakdown.add_row(kind.value, f"{kind_stats.completed}/{kind_stats.total}", f"{kind_stats.percentage}%")
        console.print(breakdown)

    table = Table(title="Features")
    table.add_column("", width=3)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Target")
    for task in task_list.features:
        mark = f"[green]{SYM_OK}[/green]" if task.done else f"[dim]{SYM_PENDING}[/dim]"
        title = f"[dim]{task.title}[/dim]" if task.done else task.title
        table.add_row(mark, task.id, title, task.kind.value, task.target or "")
    console.print(table)

    next_task = task_list.next_task()
    if next_task:
        console.print(f"\n[cyan]Next feature:[/cyan] {next_task.id} - {next_task.title}")
        console.print(f"  [dim]{next_task.description}[/dim]")
        console.print(f"  Run 'harness {RUN_COMMANDS[next_task.kind]}' to work on it.")
    elif task_list.features:
        console.print(f"\n[green]{SYM_OK} All features complete![/green]")


@main.command()
@project_option
@click.option('--entries', '-n', default=10, help='Number of recent entries to show')
def progress(project: str, entries: int):
    """Show recent entries from the progress log."""
    project_path = _resolve(project)
    config = _load_config(project_path)
    journal = ProgressJournal(project_path, config.progress_file)

    if not journal.progress_file.exists():
        console.print("[yellow]No progress log yet. Run 'harness run' to start.[/yellow]")
        return

    console.print(journal.read_recent(entries), markup=False, highlight=False)


@main.command()
@project_option
@click.option('--yes', '-y', is_flag=True, help='Skip the confirmation prompt')
def reset(project: str, yes: bool):
    """Mark every feature as not passing (code is kept)."""
    project_path = _resolve(project)
    config = _load_config(project_path)
    store = _require_store(project_path, config)

    if not yes and not click.confirm("Reset all features to passes: false?", default=False):
        console.print("[dim]Cancelled[/dim]")
        return

    try:
        count = store.reset_all()
    except HarnessError as e:
        _fail(e)
    console.print(f"[green]{SYM_OK} Reset {count} feature(s)[/green]")


# =============================================================================
# Backlog growth
# =============================================================================

def _add(
    project: str,
    description: str,
    category: TaskCategory,
    related_file: Optional[str],
    atomize: bool,
    target: Optional[str]
) -> None:
    if not description.strip():
        console.print(f"[red]{SYM_FAIL} Description is required[/red]")
        sys.exit(1)

    _require_auth()
    project_path = _resolve(project)
    config = _load_config(project_path)
    _require_store(project_path, config)
    client = create_client(config)

    label = f" [{target.upper()}]" if target else ""
    try:
        if atomize:
            console.print(Panel(
                f"{description}\n\n[dim]This will be broken down into 3-10 atomic features.[/dim]",
                title=f"Atomizing {category.value}{label}"
            ))
            agent = FeatureAtomizerAgent(project_path, client, config, on_progress=_print_progress)
            tasks = asyncio.run(agent.atomize(category, description, target))
        else:
            console.print(Panel(description, title=f"Adding {category.value}{label}"))
            agent = FeatureAdderAgent(project_path, client, config, on_progress=_print_progress)
            tasks = [asyncio.run(agent.add_task(category, description, related_file, target))]
    except DuplicateTaskError as e:
        console.print(f"[red]{SYM_FAIL} {escape(str(e))}[/red]")
        console.print("[dim]Nothing was added. Try again to get fresh IDs.[/dim]")
        sys.exit(1)
    except HarnessError as e:
        _fail(e)

    console.print(f"\n[green]{SYM_OK} Added {len(tasks)} feature(s)[/green]")
    for task in tasks:
        console.print(f"  [cyan]{task.id}[/cyan] {task.title} [dim]({task.kind.value})[/dim]")
    console.print(f"\n  Run 'harness {RUN_COMMANDS[category]}' to implement.")


def add_options(f):
    f = click.option('--target', '-t', type=click.Choice(VALID_TARGETS),
                     help='Subsystem the work applies to')(f)
    f = click.option('--atomize', '-a', is_flag=True,
                     help='Break a large request into several atomic features')(f)
    f = click.option('--file', '-f', 'related_file', help='Related file path')(f)
    f = project_option(f)
    return f


@main.command()
@click.argument('description')
@add_options
@click.option('--type', 'task_type', type=click.Choice(CATEGORY_CHOICES), help='Feature type (prompted if not provided)')
def add(description: str, project: str, related_file: Optional[str], atomize: bool, target: Optional[str],
        task_type: Optional[str]):
    """Add a feature of any type to the backlog."""
    if not task_type:
        task_type = click.prompt('Feature type', type=click.Choice(CATEGORY_CHOICES), default='feature')
    _add(project, description, TaskCategory(task_type), related_file, atomize, target)


@main.command('add-bug')
@click.argument('description')
@add_options
def add_bug(description: str, project: str, related_file: Optional[str], atomize: bool, target: Optional[str]):
    """Add a bug to fix."""
    _add(project, description, TaskCategory.BUGFIX, related_file, atomize, target)


@main.command('add-refactor')
@click.argument('description')
@add_options
def add_refactor(description: str, project: str, related_file: Optional[str], atomize: bool, target: Optional[str]):
    """Add a refactoring task."""
    _add(project, description, TaskCategory.REFACTORING, related_file, atomize, target)


@main.command('add-improvement')
@click.argument('description')
@add_options
def add_improvement(description: str, project: str, related_file: Optional[str], atomize: bool,
                    target: Optional[str]):
    """Add an improvement."""
    _add(project, description, TaskCategory.IMPROVEMENT, related_file, atomize, target)


@main.command('add-docs')
@click.argument('description')
@add_options
def add_docs(description: str, project: str, related_file: Optional[str], atomize: bool, target: Optional[str]):
    """Add a documentation task."""
    _add(project, description, TaskCategory.DOCS, related_file, atomize, target)


@main.command('add-epic')
@click.argument('description')
@project_option
@click.option('--type', 'task_type', type=click.Choice(CATEGORY_CHOICES), default='feature',
              help='Type of the generated features')
@click.option('--target', '-t', type=click.Choice(VALID_TARGETS), help='Subsystem the work applies to')
def add_epic(description: str, project: str, task_type: str, target: Optional[str]):
    """Add a large feature, broken down into several atomic ones."""
    _add(project, description, TaskCategory(task_type), None, True, target)


@main.command()
def auth():
    """Show which credentials the agent will use."""
    method = get_auth_method()
    if method == "oauth":
        console.print(f"[green]{SYM_OK}[/green] Using CLAUDE_CODE_OAUTH_TOKEN")
    elif method == "api_key":
        console.print(f"[green]{SYM_OK}[/green] Using ANTHROPIC_API_KEY")
    else:
        console.print(f"[red]{SYM_FAIL}[/red] No credentials configured")
        sys.exit(1)


if __name__ == '__main__':
    main()
