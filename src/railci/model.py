# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


STAGE_NAMES = ("build", "test", "benchmark")

# exit code used when a stage could not report one of its own
GENERIC_FAILURE_CODE = 1

# exit code for an event that did not trigger a run (the "neutral" code)
SKIPPED_EXIT_CODE = 78


class TriggerKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "manual"


# hosting-side spellings of the same event kinds
KIND_ALIASES = {
    "workflow_dispatch": TriggerKind.MANUAL.value,
}


class RunStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TriggerEvent:
    """
    An incoming repository event.

    `kind` is kept as the raw string so unrecognized kinds can still be
    evaluated (they simply do not run). Only manual events carry inputs.
    """
    kind: str
    branch: str = ""
    inputs: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerEvent":
        """Build an event from a trigger payload (e.g. a JSON event file)."""
        if not isinstance(data, dict):
            raise TypeError(f"Trigger payload must be an object, got {type(data).__name__}")

        kind = str(data.get("kind") or data.get("event") or "").strip()
        kind = KIND_ALIASES.get(kind, kind)

        branch = data.get("branch")
        if not branch:
            ref = str(data.get("ref") or "")
            branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref

        inputs = data.get("inputs") or {}
        if not isinstance(inputs, dict):
            inputs = {}

        return cls(kind=kind, branch=str(branch or ""), inputs=dict(inputs))


@dataclass(frozen=True)
class ResolvedInputs:
    run_tests: bool = True
    run_benchmarks: bool = False


@dataclass(frozen=True)
class RunDecision:
    should_run: bool
    resolved_inputs: ResolvedInputs
    reason: str = ""


@dataclass(frozen=True)
class StageDef:
    """A declared stage: the command behind a stage name plus its dependencies."""
    name: str
    run: str
    needs: List[str] = field(default_factory=list)
    cwd: str | None = None


@dataclass(frozen=True)
class Stage:
    """A stage as it appears in a plan."""
    name: str
    run: str
    condition: bool = True
    required: bool = True
    needs: List[str] = field(default_factory=list)
    cwd: str | None = None


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""


@dataclass(frozen=True)
class StageResult:
    name: str
    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class CacheKey:
    key: str
    restore_keys: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CacheRestore:
    """
    Outcome of a cache restore.

    hit=True only for an exact key match. A prefix match restores data
    (`data` is set, `matched_key` names the entry) but still reports hit=False.
    """
    hit: bool
    data: Optional[bytes] = None
    matched_key: Optional[str] = None

    @property
    def partial(self) -> bool:
        return not self.hit and self.data is not None


@dataclass
class PipelineRun:
    """Result of one evaluation-through-execution cycle."""
    status: RunStatus
    stages: List[StageResult] = field(default_factory=list)
    decision: Optional[RunDecision] = None
    failed_stage: Optional[str] = None
    failure_code: Optional[int] = None
    cache: Optional[CacheRestore] = None

    @property
    def exit_code(self) -> int:
        if self.status is RunStatus.FAILED:
            return self.failure_code or GENERIC_FAILURE_CODE
        if self.status is RunStatus.SKIPPED:
            return SKIPPED_EXIT_CODE
        return 0

    @property
    def executed(self) -> List[str]:
        return [r.name for r in self.stages]


class PipelineConfigError(ValueError):
    """Raised when a pipeline definition cannot be used."""


@dataclass(frozen=True)
class PipelineConfig:
    """
    Run-scoped, immutable pipeline configuration.

    `color` only affects presentation: it is exported to stage commands
    through `env` by the DSL and used for console styling.
    """
    name: str
    stages: List[StageDef]
    branches: List[str] = field(default_factory=lambda: ["master"])
    lock_file: str = "Cargo.lock"
    cache_path: str = "target"
    cache_prefix: str = "target"
    platform: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    color: bool = True
    cache_keep: int = 3

    def stage(self, name: str) -> Optional[StageDef]:
        for s in self.stages:
            if s.name == name:
                return s
        return None
