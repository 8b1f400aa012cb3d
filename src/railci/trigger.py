# trigger.py
from __future__ import annotations

from fnmatch import fnmatch
from typing import Any, Iterable, List

from .model import ResolvedInputs, RunDecision, TriggerEvent, TriggerKind

# Manual inputs arrive as free-form strings. Each one flips away from its
# default only on the exact literal below; anything else keeps the default.
INPUT_DEFAULTS = {
    "runTests": (True, "false"),
    "runBenchmarks": (False, "true"),
}

DEFAULT_INPUTS = ResolvedInputs(run_tests=True, run_benchmarks=False)


def _as_literal(value: Any) -> Any:
    # JSON payloads may carry real booleans; compare them as their literals
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def resolve_input(inputs: dict, name: str) -> bool:
    default, flip = INPUT_DEFAULTS[name]
    if _as_literal(inputs.get(name)) == flip:
        return not default
    return default


class TriggerEvaluator:
    """
    Decides whether an event starts a run.

    Tracked branches accept fnmatch patterns (e.g. "release/*").
    """

    def __init__(self, branches: Iterable[str] = ("master",)):
        self.branches: List[str] = list(branches)

    def is_tracked(self, branch: str) -> bool:
        return any(fnmatch(branch, p) for p in self.branches)

    def evaluate(self, event: TriggerEvent) -> RunDecision:
        kind = event.kind

        if kind == TriggerKind.MANUAL.value:
            inputs = event.inputs or {}
            return RunDecision(
                should_run=True,
                resolved_inputs=ResolvedInputs(
                    run_tests=resolve_input(inputs, "runTests"),
                    run_benchmarks=resolve_input(inputs, "runBenchmarks"),
                ),
                reason="manual dispatch",
            )

        if kind in (TriggerKind.PUSH.value, TriggerKind.PULL_REQUEST.value):
            if not self.is_tracked(event.branch):
                return RunDecision(
                    should_run=False,
                    resolved_inputs=DEFAULT_INPUTS,
                    reason=f"branch {event.branch!r} is not tracked ({', '.join(self.branches)})",
                )
            # push/pull_request never carry inputs, whatever the payload says
            return RunDecision(
                should_run=True,
                resolved_inputs=DEFAULT_INPUTS,
                reason=f"{kind} to {event.branch}",
            )

        return RunDecision(
            should_run=False,
            resolved_inputs=DEFAULT_INPUTS,
            reason=f"unrecognized trigger {kind!r}",
        )


def evaluate(event: TriggerEvent, branches: Iterable[str] = ("master",)) -> RunDecision:
    return TriggerEvaluator(branches).evaluate(event)
