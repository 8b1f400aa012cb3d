# railci_pipeline.py
# Build, test and benchmark a cargo project. Pushes and pull requests to
# master run build + test; manual runs pick stages with
#   railci run --input runTests=false --input runBenchmarks=true
from __future__ import annotations

from railci.dsl import pipeline, stage

PIPELINE = pipeline(
    "Rust",
    stage("build", "cargo build --verbose"),
    stage("test", "cargo test --verbose"),
    stage("benchmark", "cargo bench --verbose"),
    branches=["master"],
    lock_file="Cargo.lock",
    cache_path="target",
    cache_prefix="target",
    color=True,
    color_env="CARGO_TERM_COLOR",
)
