# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from . import settings
from .context import EVENT_KINDS, context_from_env
from .errors import ConfigurationError
from .loader import find_workflow_files, load_workflow
from .pipeline import Pipeline
from .runner import TaskRunner
from .ui.console import Console, get_console, set_console


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, TASKGATE_WORKFLOW, or the current directory.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    workflow_arg = workflow_arg or settings.WORKFLOW
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and not workflow_path.suffix:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  taskgate run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *(f"  {n}" for n in settings.WORKFLOW_CANDIDATES), "  *_workflow.py"],
            suggestion="Create a workflow file:\n  taskgate_workflow.py\n\nOr specify a workflow explicitly:\n  taskgate run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  taskgate run --workflow taskgate_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(ctx: click.Context, workflow: str | None) -> tuple[Path, Pipeline]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            f"{workflow_path}: {e}",
            suggestion="Fix the workflow definition; nothing was run.",
        )
        sys.exit(1)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """taskgate: declarative task pipelines with gated steps."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("tasks", nargs=-1)
@click.option("--workflow", default=None, help="Workflow file (.py or .yaml); discovered if omitted")
@click.option("--event", type=click.Choice(EVENT_KINDS), default=None, help="Triggering event (default: from CI env, else local)")
@click.option("--ref", default=None, help="Branch or ref (default: from CI env, else current git branch)")
@click.option("--flag", "flags", multiple=True, help="Custom flag for flag(...) gates; repeatable")
@click.option("--workers", default=settings.MAX_WORKERS, type=click.IntRange(min=1), help="Number of parallel tasks")
@click.option("--step-timeout", default=settings.STEP_TIMEOUT, type=click.FloatRange(min=0, min_open=True), help="Default per-step timeout in seconds")
@click.option("--output-dir", default=settings.OUTPUT_DIR, show_default=True, help="Artifact output root")
@click.option("--report", "report_path", default=None, type=click.Path(dir_okay=False), help="Write a JSON run report here")
@click.option("--print-plan/--no-print-plan", default=True, show_default=True, help="Print the resolved stages before running")
@click.pass_context
def run(ctx, tasks, workflow, event, ref, flags, workers, step_timeout, output_dir, report_path, print_plan):
    """Run TASKS (default: the workflow's default target) and their prerequisites."""
    console = get_console()
    workflow_path, pipeline = _load(ctx, workflow)

    try:
        targets = list(tasks) or [pipeline.default]
        levels = pipeline.registry.levels(targets)
    except ConfigurationError as e:
        console.print_error("Invalid target", str(e), suggestion="Run `taskgate list` to see the available tasks.")
        sys.exit(1)

    context = context_from_env(event, ref, flags=flags, secret_names=pipeline.secret_names())
    console.print_run_started(
        workflow=workflow_path.name,
        targets=targets,
        event=context.event,
        branch=context.branch,
        task_count=sum(len(level) for level in levels),
    )
    if print_plan:
        console.print_plan(levels)

    try:
        runner = TaskRunner(
            pipeline,
            context,
            repo_root=workflow_path.resolve().parent,
            output_root=output_dir,
            max_workers=workers,
            step_timeout=step_timeout,
            console=console,
        )
        report = runner.run(targets)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(report)

    if report_path:
        Path(report_path).write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        console.print_debug(f"report written to {report_path}")

    sys.exit(report.exit_code)


@cli.command()
@click.argument("tasks", nargs=-1)
@click.option("--workflow", default=None, help="Workflow file (.py or .yaml); discovered if omitted")
@click.pass_context
def plan(ctx, tasks, workflow):
    """Show the stages TASKS would run in, without running anything."""
    console = get_console()
    _, pipeline = _load(ctx, workflow)

    try:
        targets = list(tasks) or [pipeline.default]
        levels = pipeline.registry.levels(targets)
    except ConfigurationError as e:
        console.print_error("Invalid target", str(e), suggestion="Run `taskgate list` to see the available tasks.")
        sys.exit(1)

    console.print_header(f"Plan for {', '.join(targets)}")
    console.print_plan(levels)
    for task in pipeline.registry.resolve_many(targets):
        for step in task.steps:
            gate = f"  [when {step.gate}]" if step.gate is not None else ""
            policy = "  [continue-on-error]" if step.policy.value == "continue-on-error" else ""
            console.print_info(f"  {task.name} / {step.name}{gate}{policy}")


@cli.command(name="list")
@click.option("--workflow", default=None, help="Workflow file (.py or .yaml); discovered if omitted")
@click.pass_context
def list_tasks(ctx, workflow):
    """List the workflow's tasks (* marks the default target)."""
    console = get_console()
    _, pipeline = _load(ctx, workflow)
    rows = [(t.name, list(t.needs), t.description) for t in pipeline.registry]
    console.print_task_list(rows, default=pipeline.default)


if __name__ == "__main__":
    cli()
