# src/railci/dsl.py
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .dag import build_dag
from .model import STAGE_NAMES, PipelineConfig, PipelineConfigError, StageDef


# ---------------------------------------------------------------------
# Stage helper
# ---------------------------------------------------------------------

def stage(
    name: str,
    cmd: str,
    *,
    needs: Optional[List[str]] = None,
    cwd: str | None = None,
) -> StageDef:
    """Declare the shell command behind one of the pipeline's stages."""
    if name not in STAGE_NAMES:
        raise PipelineConfigError(
            f"Unknown stage {name!r}. Stages must be one of: {', '.join(STAGE_NAMES)}"
        )
    if not cmd or not cmd.strip():
        raise PipelineConfigError(f"stage({name!r}) must have a command")

    # test and benchmark consume the build's output
    if needs is None:
        needs = [] if name == "build" else ["build"]
    return StageDef(name=name, run=cmd, needs=list(needs), cwd=cwd)


# ---------------------------------------------------------------------
# Pipeline helper
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *stages: StageDef,
    branches: Iterable[str] = ("master",),
    lock_file: str = "Cargo.lock",
    cache_path: str = "target",
    cache_prefix: str = "target",
    platform: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    color: bool = True,
    color_env: Optional[str] = None,
    cache_keep: int = 3,
) -> PipelineConfig:
    """
    Build a PipelineConfig.

    Example (in railci_pipeline.py):
        PIPELINE = pipeline(
            "rust",
            stage("build", "cargo build --verbose"),
            stage("test", "cargo test --verbose"),
        )

    `color_env` names the env var a tool reads for colored output
    (e.g. CARGO_TERM_COLOR); it is set from `color` for every stage.
    """
    names = [s.name for s in stages]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise PipelineConfigError(f"Duplicate stage names found: {dupes}")
    if "build" not in names:
        raise PipelineConfigError(f"pipeline({name!r}) must declare a 'build' stage")

    # missing or out-of-order needs
    build_dag(list(stages))

    # force values to str for env compatibility
    env_final = {k: str(v) for k, v in (env or {}).items()}
    if color_env:
        env_final.setdefault(color_env, "always" if color else "never")

    return PipelineConfig(
        name=name,
        stages=list(stages),
        branches=list(branches),
        lock_file=lock_file,
        cache_path=cache_path,
        cache_prefix=cache_prefix,
        platform=platform,
        env=env_final,
        color=color,
        cache_keep=cache_keep,
    )


def rust_pipeline(
    name: str = "Rust",
    *,
    branches: Iterable[str] = ("master",),
    color: bool = True,
    platform: Optional[str] = None,
) -> PipelineConfig:
    """The stock cargo pipeline: build, test, bench with `target/` cached on Cargo.lock."""
    return pipeline(
        name,
        stage("build", "cargo build --verbose"),
        stage("test", "cargo test --verbose"),
        stage("benchmark", "cargo bench --verbose"),
        branches=branches,
        lock_file="Cargo.lock",
        cache_path="target",
        cache_prefix="target",
        platform=platform,
        color=color,
        color_env="CARGO_TERM_COLOR",
    )
