from __future__ import annotations

from typing import Dict, List

import pytest

from railci.dsl import pipeline, stage
from railci.model import CommandResult, Stage
from railci.ui.console import Console, set_console


class FakeExecutor:
    """Records which stages ran and answers with preset exit codes."""

    def __init__(self, codes: Dict[str, int] | None = None, raises: Dict[str, Exception] | None = None):
        self.codes = codes or {}
        self.raises = raises or {}
        self.calls: List[str] = []

    def execute(self, stage: Stage) -> CommandResult:
        self.calls.append(stage.name)
        if stage.name in self.raises:
            raise self.raises[stage.name]
        code = self.codes.get(stage.name, 0)
        return CommandResult(
            exit_code=code,
            stdout=f"{stage.name} out\n".encode(),
            stderr=b"" if code == 0 else f"{stage.name} broke\n".encode(),
        )


@pytest.fixture(autouse=True)
def fresh_console():
    set_console(Console())
    yield
    set_console(Console())


@pytest.fixture()
def config():
    return pipeline(
        "Rust",
        stage("build", "cargo build --verbose"),
        stage("test", "cargo test --verbose"),
        stage("benchmark", "cargo bench --verbose"),
        branches=["master"],
        platform="Linux",
        color_env="CARGO_TERM_COLOR",
    )


@pytest.fixture()
def fake():
    return FakeExecutor()


@pytest.fixture()
def make_executor():
    return FakeExecutor
