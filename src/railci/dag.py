# dag.py
from __future__ import annotations

from typing import Dict, List, Set, Tuple

from .model import STAGE_NAMES, PipelineConfig, PipelineConfigError, ResolvedInputs, Stage, StageDef


# the one stage every plan contains
ALWAYS_PLANNED = "build"


def build_dag(stages: List[StageDef]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from stage definitions.

    Requires:
      - stage.name: str (unique)
      - stage.needs: iterable[str] (names of stages that must run BEFORE this one)

    A stage may only need `build`: it precedes the other stages and is
    present in every plan.
    """
    names = [s.name for s in stages]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise PipelineConfigError(f"Duplicate stage names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = {n: 0 for n in names}

    for s in stages:
        for dep in s.needs:
            if dep not in name_set:
                raise PipelineConfigError(
                    f"Stage '{s.name}' needs missing stage '{dep}'. "
                    f"Known stages: {sorted(name_set)}"
                )
            _check_need(s.name, dep)
            # Edge dep -> s.name (dep must run before s)
            if s.name not in adj[dep]:
                adj[dep].add(s.name)
                indeg[s.name] += 1

    return adj, indeg


def _check_need(name: str, dep: str) -> None:
    if name in STAGE_NAMES and dep in STAGE_NAMES:
        if STAGE_NAMES.index(dep) >= STAGE_NAMES.index(name):
            raise PipelineConfigError(
                f"Stage '{name}' cannot need '{dep}': stages run in the order {' -> '.join(STAGE_NAMES)}"
            )
    if dep != ALWAYS_PLANNED:
        raise PipelineConfigError(
            f"Stage '{name}' cannot need '{dep}': only '{ALWAYS_PLANNED}' is planned on every run"
        )


def topo_order(stages: List[StageDef]) -> List[str]:
    """
    Linear topological order. Ties are broken by the canonical stage order
    (build, test, benchmark), then by declaration order.
    """
    adj, indeg = build_dag(stages)
    position = {
        s.name: (STAGE_NAMES.index(s.name) if s.name in STAGE_NAMES else len(STAGE_NAMES), i)
        for i, s in enumerate(stages)
    }

    indeg = dict(indeg)  # copy (we mutate it)
    ready = [n for n, d in indeg.items() if d == 0]
    order: List[str] = []

    while ready:
        ready.sort(key=position.__getitem__)
        node = ready.pop(0)
        order.append(node)
        for child in adj[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                ready.append(child)

    return order


def stage_conditions(inputs: ResolvedInputs) -> Dict[str, bool]:
    return {
        "build": True,
        "test": inputs.run_tests,
        "benchmark": inputs.run_benchmarks,
    }


class StepScheduler:
    """Turns resolved inputs into the ordered list of stages to execute."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.order = topo_order(config.stages)

    def plan(self, inputs: ResolvedInputs) -> List[Stage]:
        conditions = stage_conditions(inputs)
        plan: List[Stage] = []
        for name in self.order:
            # a stage whose condition is false is left out, not "skipped"
            if not conditions.get(name, False):
                continue
            s = self.config.stage(name)
            plan.append(
                Stage(
                    name=s.name,
                    run=s.run,
                    condition=True,
                    required=True,
                    needs=list(s.needs),
                    cwd=s.cwd,
                )
            )
        return plan
