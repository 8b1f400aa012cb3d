# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import Optional

import click

from railci.cache import DEFAULT_CACHE_DIR, CacheManager, FileCacheStore
from railci.dag import StepScheduler
from railci.git_facts.git import current_branch, repository_name
from railci.model import PipelineConfig, PipelineConfigError, TriggerEvent
from railci.runner import load_pipeline, run_pipeline
from railci.trigger import TriggerEvaluator
from railci.ui.console import Console, get_console, set_console


DEFAULT_PIPELINE_FILE = "railci_pipeline.py"


def find_pipeline_files() -> list[Path]:
    """Find pipeline files in the current directory."""
    pipeline_files = []
    current_dir = Path(".")

    default_pipeline = current_dir / DEFAULT_PIPELINE_FILE
    if default_pipeline.exists():
        pipeline_files.append(default_pipeline)

    for path in current_dir.glob("*_pipeline.py"):
        if path != default_pipeline:
            pipeline_files.append(path)

    return sorted(pipeline_files)


def discover_pipeline(pipeline_arg: str | None) -> Path:
    """
    Discover pipeline file from argument or default.

    Raises:
        SystemExit: If the pipeline cannot be found or is ambiguous
    """
    console = get_console()

    if pipeline_arg:
        pipeline_path = Path(pipeline_arg)
        if not pipeline_path.exists() and pipeline_path.suffix != ".py":
            pipeline_path = Path(str(pipeline_path) + ".py")
        if not pipeline_path.exists():
            console.print_error(
                "Pipeline file not found",
                f"Could not find pipeline file: {pipeline_arg}",
                suggestion="Create a pipeline file or specify a different path:\n  railci run --pipeline my_pipeline.py",
            )
            sys.exit(1)
        return pipeline_path

    pipeline_files = find_pipeline_files()

    if len(pipeline_files) == 0:
        console.print_error(
            "No pipeline file found",
            "Could not find any pipeline files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_PIPELINE_FILE}",
                "  *_pipeline.py",
            ],
            suggestion=f"Create a pipeline file:\n  {DEFAULT_PIPELINE_FILE}\n\nOr specify one explicitly:\n  railci run --pipeline my_pipeline.py",
        )
        sys.exit(1)

    # the default file wins over other *_pipeline.py files
    if len(pipeline_files) > 1 and Path(DEFAULT_PIPELINE_FILE) not in pipeline_files:
        file_list = "\n".join(f"  {f}" for f in pipeline_files)
        console.print_error(
            "Multiple pipeline files found",
            "Found multiple pipeline files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a pipeline explicitly:\n  railci run --pipeline {pipeline_files[0]}",
        )
        sys.exit(1)

    if Path(DEFAULT_PIPELINE_FILE) in pipeline_files:
        return Path(DEFAULT_PIPELINE_FILE)
    return pipeline_files[0]


def _load_config(pipeline_arg: str | None) -> PipelineConfig:
    console = get_console()
    pipeline_path = discover_pipeline(pipeline_arg)
    try:
        return load_pipeline(pipeline_path)
    except (PipelineConfigError, FileNotFoundError) as e:
        console.print_error(
            "Failed to load pipeline",
            f"Could not load pipeline from {pipeline_path}",
            details=[str(e)],
        )
        sys.exit(1)


def _parse_inputs(pairs: tuple[str, ...]) -> dict[str, str]:
    inputs: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected name=value, got {pair!r}", param_hint="--input")
        name, value = pair.split("=", 1)
        inputs[name.strip()] = value
    return inputs


def build_event(
    event_file: Optional[str],
    kind: Optional[str],
    branch: Optional[str],
    inputs: tuple[str, ...],
) -> TriggerEvent:
    """
    Build the trigger event from an event file and/or options.

    Options override the file. Without a branch, the current git branch is used.
    """
    payload: dict = {}
    if event_file:
        try:
            payload = json.loads(Path(event_file).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise click.BadParameter(f"could not read event file: {e}", param_hint="--event")
        if not isinstance(payload, dict):
            raise click.BadParameter("event file must contain a JSON object", param_hint="--event")

    if kind:
        payload["kind"] = kind
    if branch:
        payload["branch"] = branch
    if inputs:
        payload["inputs"] = {**(payload.get("inputs") or {}), **_parse_inputs(inputs)}

    if not payload.get("kind"):
        payload["kind"] = "manual"
    if not payload.get("branch") and not payload.get("ref"):
        try:
            payload["branch"] = current_branch()
        except (subprocess.CalledProcessError, FileNotFoundError):
            get_console().print_debug("could not determine current git branch")

    return TriggerEvent.from_dict(payload)


def event_options(fn):
    fn = click.option("--input", "inputs", multiple=True, help="Manual input as name=value (e.g. runBenchmarks=true)")(fn)
    fn = click.option("--branch", default=None, help="Target branch (defaults to the current git branch)")(fn)
    fn = click.option("--kind", default=None, help="Event kind: push, pull_request or manual (default)")(fn)
    fn = click.option("--event", "event_file", default=None, help="JSON trigger payload file")(fn)
    fn = click.option(
        "--pipeline",
        default=None,
        help=f"Pipeline file path (defaults to {DEFAULT_PIPELINE_FILE} if present)",
    )(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and stage output)",
)
@click.pass_context
def cli(ctx, debug):
    """railci: trigger-aware, cache-aware build pipeline runner."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@event_options
@click.option("--cache-dir", default=DEFAULT_CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--color/--no-color", default=None, help="Override the pipeline's color setting")
@click.pass_context
def run(ctx, pipeline, event_file, kind, branch, inputs, cache_dir, color):
    """Evaluate an event and run the pipeline it triggers."""
    config = _load_config(pipeline)
    event = build_event(event_file, kind, branch, inputs)

    # --color only changes console styling; stage env comes from the pipeline
    use_color = config.color if color is None else color
    console = Console(debug=ctx.obj.get("debug", False), color=use_color)
    set_console(console)

    try:
        console.print_run_started(pipeline=config.name, event=event)
        result = run_pipeline(config, event, repo_root=".", cache_root=cache_dir)
        console.print_results(result)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except PipelineConfigError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    sys.exit(result.exit_code)


@cli.command()
@event_options
@click.pass_context
def plan(ctx, pipeline, event_file, kind, branch, inputs):
    """Show the trigger decision and stage plan without running anything."""
    console = get_console()
    config = _load_config(pipeline)
    event = build_event(event_file, kind, branch, inputs)

    decision = TriggerEvaluator(config.branches).evaluate(event)
    console.print_decision(decision)
    if not decision.should_run:
        return

    try:
        stages = StepScheduler(config).plan(decision.resolved_inputs)
    except PipelineConfigError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(1)
    console.print_plan(stages)


@cli.command("cache-key")
@click.option("--pipeline", default=None, help=f"Pipeline file path (defaults to {DEFAULT_PIPELINE_FILE} if present)")
@click.option("--cache-dir", default=DEFAULT_CACHE_DIR, show_default=True, help="Cache directory")
@click.option("--check", is_flag=True, default=False, help="Also report what a restore would find")
def cache_key(pipeline, cache_dir, check):
    """Print the cache key and restore keys for the current lock file."""
    console = get_console()
    config = _load_config(pipeline)

    manager = CacheManager(FileCacheStore(cache_dir), repo_root=".")
    key = manager.compute_key(config.lock_file, platform_id=config.platform, prefix=config.cache_prefix)
    console.print_info(f"key: {key.key}")
    for rk in key.restore_keys:
        console.print_info(f"restore-key: {rk}")

    if check:
        console.print_cache_restore(key.key, manager.restore(key.key, key.restore_keys))


@cli.command()
def info():
    """Print repository and pipeline discovery information."""
    console = get_console()
    console.print_info(f"Repository: {repository_name()}")
    files = find_pipeline_files()
    console.print_info(f"Pipeline files: {', '.join(str(f) for f in files) if files else '(none)'}")


if __name__ == "__main__":
    cli()
