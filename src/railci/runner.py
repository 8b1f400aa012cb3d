# runner.py
from __future__ import annotations

import os
import runpy
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .cache import CacheManager, CacheStore, FileCacheStore, DEFAULT_CACHE_DIR
from .dag import StepScheduler
from .model import (
    GENERIC_FAILURE_CODE,
    CommandResult,
    PipelineConfig,
    PipelineConfigError,
    PipelineRun,
    RunStatus,
    Stage,
    StageResult,
    TriggerEvent,
)
from .trigger import TriggerEvaluator
from .ui.console import get_console


# event ---> trigger ---> cache restore ---> plan ---> stages ---> cache save


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

@dataclass
class StageFailed(Exception):
    stage: str
    cmd: str
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""

    def __str__(self) -> str:
        return f"stage '{self.stage}' failed (exit={self.exit_code}): {self.cmd}"

    @property
    def output(self) -> str:
        text = (self.stdout or b"") + (self.stderr or b"")
        return text.decode("utf-8", errors="replace")


# ----------------------------------------------------------------------
# Pipeline loading (local file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path) -> PipelineConfig:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - build_pipeline() -> PipelineConfig
      - PIPELINE = PipelineConfig(...)
    """
    pl_path = Path(path).expanduser().resolve()
    if not pl_path.exists():
        raise FileNotFoundError(f"Pipeline file not found: {pl_path}")
    if pl_path.suffix != ".py":
        raise PipelineConfigError(f"Pipeline must be a .py file, got: {pl_path.name}")

    module_name = f"railci_pipeline_{pl_path.stem}"
    globals_dict = runpy.run_path(str(pl_path), run_name=module_name)

    config = None
    if "build_pipeline" in globals_dict and callable(globals_dict["build_pipeline"]):
        config = globals_dict["build_pipeline"]()
    elif "PIPELINE" in globals_dict:
        config = globals_dict["PIPELINE"]

    if not isinstance(config, PipelineConfig):
        raise PipelineConfigError(
            "Pipeline file must return/define a PipelineConfig. "
            "Define build_pipeline() -> PipelineConfig or PIPELINE = pipeline(...)."
        )
    return config


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

class CommandExecutor(Protocol):
    def execute(self, stage: Stage) -> CommandResult: ...


class ShellExecutor:
    """Runs a stage's shell command in the repository root."""

    def __init__(self, repo_root: str | Path = ".", env: Optional[Dict[str, str]] = None):
        self.repo_root = Path(repo_root).resolve()
        self.env = dict(env or {})

    def execute(self, stage: Stage) -> CommandResult:
        cwd = (self.repo_root / (stage.cwd or ".")).resolve()
        if not cwd.exists():
            raise FileNotFoundError(f"stage '{stage.name}' cwd not found: {cwd}")

        env = os.environ.copy()
        env.update(self.env)

        proc = subprocess.run(
            stage.run,
            shell=True,
            cwd=str(cwd),
            env=env,
            capture_output=True,
        )
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)


class StepExecutor:
    """Runs planned stages in order; the first failing stage ends the run."""

    def __init__(self, command: CommandExecutor):
        self.command = command

    def _run_stage(self, stage: Stage) -> StageResult:
        started = time.monotonic()
        try:
            result = self.command.execute(stage)
        except Exception as e:
            # the collaborator could not produce an exit code
            raise StageFailed(
                stage=stage.name,
                cmd=stage.run,
                exit_code=GENERIC_FAILURE_CODE,
                stderr=str(e).encode("utf-8"),
            ) from e

        stage_result = StageResult(
            name=stage.name,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=time.monotonic() - started,
        )
        if result.exit_code != 0:
            raise StageFailed(
                stage=stage.name,
                cmd=stage.run,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return stage_result

    def run(self, plan: List[Stage]) -> PipelineRun:
        console = get_console()
        results: List[StageResult] = []

        for stage in plan:
            console.print_stage_start(stage.name, stage.run)
            try:
                r = self._run_stage(stage)
            except StageFailed as e:
                results.append(
                    StageResult(name=e.stage, exit_code=e.exit_code, stdout=e.stdout, stderr=e.stderr)
                )
                console.print_failure(stage.name, str(e), exit_code=e.exit_code, output=e.output)
                return PipelineRun(
                    status=RunStatus.FAILED,
                    stages=results,
                    failed_stage=stage.name,
                    failure_code=e.exit_code or GENERIC_FAILURE_CODE,
                )
            results.append(r)
            if r.stdout:
                console.print_debug(r.stdout.decode("utf-8", errors="replace").rstrip())
            console.print_success(stage.name, r.duration)

        return PipelineRun(status=RunStatus.SUCCESS, stages=results)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

@dataclass
class Pipeline:
    """Wires the four parts of a run together for one pipeline config."""
    config: PipelineConfig
    store: CacheStore
    command: CommandExecutor
    repo_root: Path = field(default_factory=lambda: Path(".").resolve())

    def run(self, event: TriggerEvent) -> PipelineRun:
        console = get_console()
        config = self.config

        decision = TriggerEvaluator(config.branches).evaluate(event)
        console.print_decision(decision)
        if not decision.should_run:
            return PipelineRun(status=RunStatus.SKIPPED, decision=decision)

        # ---- restore ----
        cache = CacheManager(self.store, repo_root=self.repo_root)
        key = cache.compute_key(
            config.lock_file,
            platform_id=config.platform,
            prefix=config.cache_prefix,
        )
        restored = cache.restore_into(key.key, key.restore_keys)
        console.print_cache_restore(key.key, restored)

        # ---- plan + run, then save whatever the verdict ----
        try:
            plan = StepScheduler(config).plan(decision.resolved_inputs)
            console.print_plan(plan)
            result = StepExecutor(self.command).run(plan)
        finally:
            if cache.save(key.key, config.cache_path, keep=config.cache_keep):
                console.print_cache_saved(key.key)

        result.decision = decision
        result.cache = restored

        return result


def run_pipeline(
    config: PipelineConfig,
    event: TriggerEvent,
    *,
    repo_root: str | Path = ".",
    cache_root: str | Path = DEFAULT_CACHE_DIR,
    store: Optional[CacheStore] = None,
    command: Optional[CommandExecutor] = None,
) -> PipelineRun:
    """Evaluate `event` against `config` and, if it triggers, run the pipeline."""
    root = Path(repo_root).resolve()
    if store is None:
        store = FileCacheStore(root / cache_root)
    if command is None:
        command = ShellExecutor(root, env=config.env)
    return Pipeline(config=config, store=store, command=command, repo_root=root).run(event)
