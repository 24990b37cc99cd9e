from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .core.benchmark import BENCHMARK, execute_benchmark, plan_benchmark
from .core.config import WorkflowConfig, load_settings
from .core.pipeline import (
    Resolver,
    StageResult,
    default_resolver,
    execute_workflow,
    plan_workflow,
)
from .core.stages import ASSEMBLE, RECORD, RUN


@dataclass(frozen=True)
class WorkflowResult:
    run_dir: Path
    stages: List[StageResult]


ConfigSource = Union[WorkflowConfig, Path, str, None]


def record(
    config: ConfigSource = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowResult:
    return _execute(config, RECORD, overrides=overrides, run_id=run_id, resolver=resolver)


def assemble(
    config: ConfigSource = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowResult:
    return _execute(config, ASSEMBLE, overrides=overrides, run_id=run_id, resolver=resolver)


def run(
    config: ConfigSource = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowResult:
    return _execute(config, RUN, overrides=overrides, run_id=run_id, resolver=resolver)


def benchmark(
    config: ConfigSource = None,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowResult:
    settings = _settings(config, overrides)
    outcome = execute_benchmark(settings, run_id=run_id, resolver=resolver)
    return WorkflowResult(run_dir=outcome.run_dir, stages=outcome.stages)


def plan(
    config: ConfigSource = None,
    target: str = RUN,
    *,
    overrides: Optional[Dict[str, Any]] = None,
    resolver: Resolver = default_resolver,
) -> List[Dict[str, Any]]:
    settings = _settings(config, overrides)
    if target == BENCHMARK:
        return plan_benchmark(settings, resolver=resolver)
    return plan_workflow(settings, target, resolver=resolver)


def _execute(
    config: ConfigSource,
    target: str,
    *,
    overrides: Optional[Dict[str, Any]],
    run_id: Optional[str],
    resolver: Resolver,
) -> WorkflowResult:
    settings = _settings(config, overrides)
    outcome = execute_workflow(settings, target, run_id=run_id, resolver=resolver)
    return WorkflowResult(run_dir=outcome.run_dir, stages=outcome.stages)


def _settings(config: ConfigSource, overrides: Optional[Dict[str, Any]]) -> WorkflowConfig:
    if isinstance(config, WorkflowConfig):
        if overrides:
            raise ValueError("overrides cannot be applied to an already resolved WorkflowConfig")
        return config
    path = Path(config) if config is not None else None
    return load_settings(path, overrides)
