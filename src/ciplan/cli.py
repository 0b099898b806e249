# cli.py
from __future__ import annotations

import json
import logging
import subprocess
import sys
from pathlib import Path

import click

from ciplan import settings
from ciplan.context import RunContext
from ciplan.errors import PlanError
from ciplan.executor import DryRunExecutor, ShellExecutor
from ciplan.git_facts.git import current_ref, head_sha
from ciplan.loader import Workflow, load_workflow
from ciplan.model import Status
from ciplan.plan import Plan, build_plan
from ciplan.runner import run_plan
from ciplan.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOWS = ("ciplan.yml", "ciplan.yaml", "ciplan_workflow.py")


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """
    Find candidate workflow files.

    Looks for ciplan.yml / ciplan.yaml / ciplan_workflow.py first; only when
    none exists, falls back to .github/workflows/*.yml and *_workflow.py.
    """
    defaults = [root / name for name in DEFAULT_WORKFLOWS if (root / name).exists()]
    if defaults:
        return defaults

    found = sorted((root / ".github" / "workflows").glob("*.yml"))
    found += sorted((root / ".github" / "workflows").glob("*.yaml"))
    found += sorted(root.glob("*_workflow.py"))
    return found


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, CIPLAN_WORKFLOW, or the defaults.

    Raises:
        SystemExit: If workflow cannot be found or is ambiguous
    """
    console = get_console()

    workflow_arg = workflow_arg or settings.WORKFLOW
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  ciplan run --workflow ciplan.yml",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  ciplan.yml / ciplan.yaml / ciplan_workflow.py",
                "  .github/workflows/*.yml",
                "  *_workflow.py",
            ],
            suggestion="Specify a workflow explicitly:\n  ciplan run --workflow my_pipeline.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  ciplan run --workflow ciplan.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def load_plan(workflow_path: Path, fail_fast: bool | None = None) -> tuple[Workflow, Plan]:
    """Load and validate; plan errors are reported and exit with status 1."""
    console = get_console()
    try:
        wf = load_workflow(workflow_path)
        if fail_fast is None:
            fail_fast = wf.fail_fast or settings.FAIL_FAST
        return wf, build_plan(wf.jobs, fail_fast=fail_fast)
    except PlanError as e:
        console.print_error(
            "Invalid plan",
            str(e),
            details=[f"kind={e.kind}", f"workflow={workflow_path}"],
        )
        sys.exit(1)
    except (FileNotFoundError, TypeError, ValueError) as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if console.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


def resolve_trigger(ref: str | None, sha: str | None, event: str | None) -> RunContext:
    """Trigger inputs: CLI options, then environment, then the local git checkout."""
    console = get_console()
    ref = ref or settings.REF
    sha = sha or settings.SHA
    if not ref or not sha:
        try:
            ref = ref or current_ref()
            sha = sha or head_sha()
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_debug("not in a git checkout; ref/sha left empty")
    return RunContext(ref=ref or "", sha=sha or "", event=event or settings.EVENT)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and state transitions)",
)
@click.pass_context
def cli(ctx, debug):
    """ciplan: gated CI pipeline planner and executor."""
    console = Console(debug=debug)
    set_console(console)
    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(threadName)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to ciplan.yml if present)")
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Number of parallel workers")
@click.option("--fail-fast/--no-fail-fast", default=None, help="Skip not-yet-started jobs after the first failure")
@click.option("--ref", default=None, help="Git ref that triggered the run (e.g. refs/tags/v1.0.0)")
@click.option("--sha", default=None, help="Commit SHA of the run")
@click.option("--event", default=None, help="Event kind (default: push)")
@click.option("--repo-root", default=".", show_default=True, help="Working directory for shell steps")
@click.option("--dry-run", is_flag=True, default=False, help="Do not execute steps; every step succeeds")
@click.option("--fail", "fail_steps", multiple=True, help="With --dry-run: make the named step fail (repeatable)")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the final report as JSON")
@click.pass_context
def run(ctx, workflow, workers, fail_fast, ref, sha, event, repo_root, dry_run, fail_steps, as_json):
    """Run a ciplan workflow."""
    if as_json:
        # keep stdout for the report
        set_console(Console(debug=ctx.obj.get("debug", False), stream=sys.stderr))
    console = get_console()

    workflow_path = discover_workflow(workflow)
    wf, plan = load_plan(workflow_path, fail_fast)
    trigger = resolve_trigger(ref, sha, event)

    executor = DryRunExecutor(fail=fail_steps) if dry_run else ShellExecutor(repo_root)

    try:
        console.print_run_started(
            workflow=wf.name,
            ref=trigger.ref,
            sha=trigger.sha,
            event=trigger.event,
            instance_count=len(plan.instances),
        )
        report = run_plan(plan, trigger, executor, max_workers=workers)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        console.print_results(report)

    if report.status == Status.FAILED:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to ciplan.yml if present)")
def plan(workflow):
    """Show the execution plan: stages, job instances and conditions."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    wf, built = load_plan(workflow_path)

    console.print_header(f"PLAN: {wf.name}")
    labels = {name: [i.label for i in built.instances_of(name)] for name in built.graph.nodes}
    console.print_plan(built.levels(), labels)
    for name in built.graph.nodes:
        template = built.templates[name]
        if template.condition:
            console.print_info(f"  if[{name}]: {template.condition}")
    if built.fail_fast:
        console.print_info("fail-fast: on")


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (defaults to ciplan.yml if present)")
def validate(workflow):
    """Check a workflow for unknown dependencies, cycles and bad conditions."""
    workflow_path = discover_workflow(workflow)
    wf, built = load_plan(workflow_path)
    get_console().print_info(
        f"OK: {wf.name} ({len(built.templates)} jobs, {len(built.instances)} job instances)"
    )


if __name__ == "__main__":
    cli()
