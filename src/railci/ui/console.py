"""Console output formatting utilities for railci."""

from __future__ import annotations

import sys
from typing import List, Optional

import click

from railci.model import CacheRestore, PipelineRun, RunDecision, RunStatus, Stage, TriggerEvent


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, color: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            color: If True, style status lines with ANSI colors
        """
        self.debug = debug
        self.color = color

    def _style(self, text: str, **styles) -> str:
        if not self.color:
            return text
        return click.style(text, **styles)

    def print_run_started(self, pipeline: str, event: TriggerEvent) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Pipeline: {pipeline}")
        print(f"Event: {event.kind or '<none>'}")
        if event.branch:
            print(f"Branch: {event.branch}")
        if event.inputs:
            for k, v in sorted(event.inputs.items()):
                print(f"Input: {k}={v}")
        print()

    def print_decision(self, decision: RunDecision) -> None:
        """Print the trigger decision."""
        if decision.should_run:
            inputs = decision.resolved_inputs
            print(f"TRIGGER: run ({decision.reason})")
            print(f"  runTests={str(inputs.run_tests).lower()} runBenchmarks={str(inputs.run_benchmarks).lower()}")
        else:
            print(self._style(f"TRIGGER: no run ({decision.reason})", fg="yellow"))

    def print_plan(self, plan: List[Stage]) -> None:
        """Print the stage plan."""
        print(f"PLAN: {' -> '.join(s.name for s in plan) if plan else '(empty)'}")

    def print_stage_start(self, name: str, cmd: str) -> None:
        """Print stage start message."""
        print(f"\nSTAGE STARTED: {name}")
        print(f"RUN: {cmd}")

    def print_success(self, name: str, duration: Optional[float] = None) -> None:
        """Print success message."""
        suffix = f" ({duration:.1f}s)" if duration is not None else ""
        print(self._style(f"STATUS: success{suffix}", fg="green"))

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Stage name
            reason: Failure reason/error message
            exit_code: Optional exit code
            output: Optional captured output (tail shown, full in debug mode)
        """
        print(self._style(f"STAGE FAILED: {name}", fg="red", bold=True))
        if exit_code is not None:
            print(f"Exit code: {exit_code}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            print(f"Error: {error_line}")
        if output:
            text = output if self.debug else output[-4000:]
            print("Output:")
            for line in text.rstrip().splitlines():
                print(f"  {line}")

    def print_cache_restore(self, key: str, result: CacheRestore) -> None:
        """Print the outcome of a cache restore."""
        if result.hit:
            print(self._style(f"CACHE: hit ({key})", fg="green"))
        elif result.partial:
            print(f"CACHE: restored from {result.matched_key} (partial, key {key} missed)")
        else:
            print(f"CACHE: miss ({key})")

    def print_cache_saved(self, key: str) -> None:
        """Print cache save message."""
        print(f"CACHE: saved ({key})")

    def print_warning(self, message: str) -> None:
        """Print a non-fatal warning."""
        print(self._style(f"WARNING: {message}", fg="yellow"), file=sys.stderr)

    def print_results(self, run: PipelineRun) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for r in run.stages:
            status_display = "SUCCESS" if r.ok else f"FAILED (exit {r.exit_code})"
            print(f"  {r.name}: {status_display}")
        colors = {
            RunStatus.SUCCESS: "green",
            RunStatus.FAILED: "red",
            RunStatus.SKIPPED: "yellow",
        }
        print(self._style(f"PIPELINE: {run.status.value.upper()}", fg=colors[run.status], bold=True))
        if run.failed_stage:
            print(f"Failed stage: {run.failed_stage}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
