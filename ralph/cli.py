"""CLI entry point for the Ralph loop.

Commands:
- ralph init: Create .ralph/config.yaml, logs/ and the default prompt files
- ralph build [MAX]: Run the loop in build mode
- ralph plan [MAX]: Run the loop in planning mode (stops at the first DONE)
- ralph status: Show work sources and effective configuration
- ralph agents: List supported agent CLIs and whether they are installed
- ralph version: Show version information
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ralph import __version__
from ralph.agents.backends import BACKENDS, AgentError, get_backend
from ralph.core.config import ConfigError, LoopConfig, load_config, write_default_config
from ralph.core.git import GitSync
from ralph.core.lock import LoopLock, LoopLockedError
from ralph.core.logs import LogDirectory, SessionLog
from ralph.core.models import LoopSummary, Mode, StopReason
from ralph.core.project import ProjectStatus, inspect_project
from ralph.core.prompts import PromptError, PromptSource, ensure_prompt_files, resolve_prompt
from ralph.core.supervisor import IterationSupervisor

console = Console()

EXIT_INTERRUPTED = 130


def get_repo_path() -> Path:
    """Get the repository path (current directory)."""
    return Path.cwd()


_log_handler: logging.Handler | None = None


def _setup_logging(verbose: bool) -> None:
    global _log_handler
    package_logger = logging.getLogger("ralph")
    if _log_handler is not None:
        package_logger.removeHandler(_log_handler)
    if verbose:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True), show_path=False, markup=False
        )
        handler.setLevel(logging.DEBUG)
        package_logger.setLevel(logging.DEBUG)
    else:
        # Operator output goes through the console; records only reach the session log
        handler = logging.NullHandler()
    package_logger.addHandler(handler)
    _log_handler = handler


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on stderr")
def main(verbose: bool) -> None:
    """Ralph - iteration supervisor for AI coding-agent CLIs.

    Runs an agent CLI with the same prompt over and over, each time in a
    fresh process, until it prints <promise>DONE</promise>.
    """
    _setup_logging(verbose)


@main.command()
@click.option("--force", is_flag=True, help="Overwrite existing config and prompt files")
def init(force: bool) -> None:
    """Initialize the project for the Ralph loop."""
    repo_path = get_repo_path()

    created = []
    config_file = write_default_config(repo_path, overwrite=force)
    if config_file is not None:
        created.append(f"- {config_file.relative_to(repo_path)}: loop configuration")

    logs_dir = LogDirectory(repo_path / "logs")
    if not logs_dir.root.exists():
        logs_dir.ensure()
        created.append("- logs/: iteration and session logs")

    for path in ensure_prompt_files(repo_path, overwrite=force):
        created.append(f"- {path.name}: prompt for {path.stem.split('_')[-1]} mode")

    if not created:
        console.print("[yellow]Project already initialized[/yellow]")
        return

    console.print(
        Panel(
            "[green]Project initialized![/green]\n\n" + "\n".join(created),
            title="Ralph Initialized",
        )
    )


def loop_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by the build and plan commands."""
    options = [
        click.argument("max_iterations", type=click.IntRange(min=0), required=False),
        click.option(
            "--agent", "-a",
            type=click.Choice(sorted(BACKENDS)),
            default=None,
            help="Agent CLI to run (default: from config, else claude)",
        ),
        click.option("--model", "-m", default=None, help="Model override passed to the agent"),
        click.option("--command", default=None, help="Agent binary name or path override"),
        click.option(
            "--yolo/--no-yolo",
            default=None,
            help="Let the agent skip its permission prompts (default: on unless the constitution disables it)",
        ),
        click.option("--prompt-file", "-p", default=None, help="Prompt file to feed each iteration"),
        click.option("--prompt", "prompt_text", default=None, help="Inline prompt text"),
        click.option("--spec", "-s", default=None, help="Generate a prompt for one spec"),
        click.option("--all-specs", is_flag=True, help="Generate a prompt covering all specs"),
        click.option("--delay", type=float, default=None, help="Seconds to wait between iterations"),
        click.option(
            "--threshold", type=click.IntRange(min=1), default=None,
            help="Consecutive misses before warning (default: 3)",
        ),
        click.option(
            "--single-shot/--no-single-shot",
            default=None,
            help="Stop at the first completion signal (default: plan mode only)",
        ),
        click.option("--no-push", is_flag=True, help="Don't push after each iteration"),
        click.option("--no-watch", is_flag=True, help="Stream agent output instead of a rolling tail"),
        click.option("--no-session-log", is_flag=True, help="Don't write a consolidated session log"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@main.command()
@loop_options
def build(**options: Any) -> None:
    """Run the loop in build mode.

    MAX_ITERATIONS bounds the loop; 0 or omitted runs until interrupted.

    Example:
        ralph build 20 --agent codex
    """
    _run_loop(Mode.BUILD, **options)


@main.command()
@loop_options
def plan(**options: Any) -> None:
    """Run the loop in planning mode.

    Stops at the first completion signal unless --no-single-shot is given.

    Example:
        ralph plan --agent gemini
    """
    _run_loop(Mode.PLAN, **options)


def _build_config(repo_path: Path, mode: Mode, options: dict[str, Any]) -> LoopConfig:
    return load_config(
        repo_path,
        mode=mode,
        max_iterations=options["max_iterations"],
        agent=options["agent"],
        model=options["model"],
        command=options["command"],
        yolo=options["yolo"],
        prompt_file=options["prompt_file"],
        prompt=options["prompt_text"],
        spec=options["spec"],
        all_specs=options["all_specs"] or None,
        delay_seconds=options["delay"],
        failure_threshold=options["threshold"],
        single_shot=options["single_shot"],
        push=False if options["no_push"] else None,
        watch=False if options["no_watch"] else None,
        session_log=False if options["no_session_log"] else None,
    )


def _run_loop(mode: Mode, **options: Any) -> None:
    repo_path = get_repo_path()

    # Setup: every check here happens before any log file exists
    try:
        config = _build_config(repo_path, mode, options)
        project = inspect_project(repo_path)
        yolo = config.yolo if config.yolo is not None else not project.yolo_disabled
        backend = get_backend(
            config.agent,
            command=config.command,
            model=config.model,
            yolo=yolo,
            cwd=repo_path,
        )
        backend.require_binary()
        if config.generate_prompts:
            ensure_prompt_files(repo_path)
        prompt = resolve_prompt(config, repo_path)
    except (ConfigError, AgentError, PromptError) as e:
        _fail(str(e))
        return

    git = GitSync(repo_path, remote=config.remote)
    logs = LogDirectory(config.log_path(repo_path))

    try:
        with LoopLock(repo_path):
            session_path = (
                logs.session_log(backend.name, mode.value) if config.session_log else None
            )
            _print_banner(config, backend.label, backend.model, yolo, prompt, git, project, session_path)

            session = SessionLog(session_path) if session_path else None
            if session is not None:
                session.open()
            try:
                supervisor = IterationSupervisor(
                    config,
                    backend,
                    prompt,
                    logs,
                    git=git if config.push else None,
                    console=console,
                    session=session,
                )
                summary = supervisor.run()
            finally:
                if session is not None:
                    session.close()
    except LoopLockedError as e:
        _fail(str(e))
        return

    _print_summary(summary)
    if summary.stop_reason == StopReason.INTERRUPTED:
        sys.exit(EXIT_INTERRUPTED)


def _print_banner(
    config: LoopConfig,
    agent_label: str,
    model: str | None,
    yolo: bool,
    prompt: PromptSource,
    git: GitSync,
    project: ProjectStatus,
    session_path: Path | None,
) -> None:
    lines = [
        f"[blue]Mode:[/blue]     {config.mode.value}",
        f"[blue]Agent:[/blue]    {escape(agent_label)}",
        f"[blue]Model:[/blue]    {escape(model or 'agent default')}",
        f"[blue]Prompt:[/blue]   {escape(prompt.origin)}",
        f"[blue]Branch:[/blue]   {escape(git.current_branch())}",
        f"[yellow]YOLO:[/yellow]     {'ENABLED' if yolo else 'DISABLED'}",
    ]
    if session_path is not None:
        lines.append(f"[blue]Log:[/blue]      {escape(str(session_path))}")
    if config.max_iterations > 0:
        lines.append(f"[blue]Max:[/blue]      {config.max_iterations} iterations")

    console.print()
    console.print(Panel("\n".join(lines), title="RALPH LOOP STARTING", border_style="green"))
    _print_work_sources(project)
    console.print("[cyan]The loop checks for <promise>DONE</promise> in each iteration.[/cyan]")
    console.print("[yellow]Press Ctrl+C to stop the loop[/yellow]\n")


def _print_work_sources(project: ProjectStatus) -> None:
    console.print("[blue]Work source:[/blue]")
    if project.plan_file:
        console.print(f"  [green]✓[/green] {project.plan_file.name} (will use this)")
    else:
        console.print("  [yellow]○[/yellow] IMPLEMENTATION_PLAN.md (not found, that's OK)")
    if project.has_specs:
        specs_dir = project.specs_dir.relative_to(project.root)
        console.print(f"  [green]✓[/green] {specs_dir}/ folder ({project.spec_count} specs)")
    else:
        console.print("  [red]✗[/red] specs/ folder (no .md files found in specs/ or .specify/specs/)")
    if project.agents_file:
        console.print("  [green]✓[/green] AGENTS.md found")
    else:
        console.print("  [yellow]○[/yellow] AGENTS.md not found (optional)")
    console.print()


def _print_summary(summary: LoopSummary) -> None:
    reason = {
        StopReason.MAX_ITERATIONS: "max iterations reached",
        StopReason.PLAN_COMPLETE: "completion signal received",
        StopReason.INTERRUPTED: "interrupted",
    }[summary.stop_reason]
    console.print()
    console.print(
        Panel(
            f"Iterations: {summary.iterations}\n"
            f"Completed:  {summary.completed}\n"
            f"Warnings:   {summary.warnings_emitted}\n"
            f"Stopped:    {reason}",
            title=f"RALPH LOOP FINISHED ({summary.iterations} iterations)",
            border_style="green" if summary.stop_reason != StopReason.INTERRUPTED else "yellow",
        )
    )


@main.command()
def status() -> None:
    """Show work sources and the effective loop configuration."""
    repo_path = get_repo_path()
    try:
        config = load_config(repo_path)
    except ConfigError as e:
        _fail(str(e))
        return

    project = inspect_project(repo_path)
    yolo = config.yolo if config.yolo is not None else not project.yolo_disabled

    console.print(
        Panel(
            f"Agent: {escape(config.agent)}\n"
            f"Model: {escape(config.model or 'agent default')}\n"
            f"YOLO: {'ENABLED' if yolo else 'DISABLED'}\n"
            f"Failure threshold: {config.failure_threshold}\n"
            f"Delay: {config.delay_seconds:g}s\n"
            f"Push: {'on' if config.push else 'off'} ({escape(config.remote)})\n"
            f"Logs: {escape(str(config.log_path(repo_path)))}",
            title="Ralph Status",
        )
    )
    _print_work_sources(project)


@main.command()
def agents() -> None:
    """List supported agent CLIs."""
    table = Table(title="Agent CLIs")
    table.add_column("Agent", style="cyan")
    table.add_column("Command", style="white")
    table.add_column("Default model", style="white")
    table.add_column("YOLO flag", style="yellow")
    table.add_column("Installed", style="green")

    for name in sorted(BACKENDS):
        backend = get_backend(name)
        table.add_row(
            name,
            backend.command,
            backend.model or "-",
            backend.yolo_flag,
            "yes" if backend.is_available() else "[red]no[/red]",
        )

    console.print(table)


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"Ralph v{__version__}")
    console.print("Iteration supervisor for AI coding-agent CLIs")


if __name__ == "__main__":
    main()
