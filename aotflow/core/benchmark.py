from __future__ import annotations

import os
from typing import Any, Dict, Iterator, List, Optional

from .config import WorkflowConfig
from .diagnostics import fail
from .pipeline import Resolver, WorkflowOutcome, default_resolver, describe_stage, run_workflow
from .stages import ProcessInvocation, StageSpec, command_invocation, split_command, toolchain_env
from .toolchain import JavaToolchain

PREPARE = "prepare"
BENCHMARK = "benchmark"

# Unified logging: GC, safepoints and class loading, decorated with time, level and tags
LOG_SELECTORS = "gc*,safepoint,class+load=info"
LOG_DECORATORS = "time,level,tags"


def unified_logging_flag(log_file: str) -> str:
    return f"-Xlog:{LOG_SELECTORS}:file={log_file}:{LOG_DECORATORS}"


def system_property_flags(properties: Dict[str, Any]) -> List[str]:
    flags = []
    for key in sorted(properties):
        value = properties[key]
        if isinstance(value, bool):
            value = "true" if value else "false"
        flags.append(f"-D{key}={value}")
    return flags


def runtime_classpath(settings: WorkflowConfig) -> str:
    entries = [str(settings.resolve(entry)) for entry in settings.benchmark.classpath]
    return os.pathsep.join(entries)


def benchmark_args(settings: WorkflowConfig) -> List[str]:
    bench = settings.benchmark
    if not bench.main_class:
        raise fail(
            "E-BENCHMARK-MAIN-CLASS",
            "benchmark.main_class is required",
            location="benchmark.main_class",
        )
    if not bench.classpath:
        raise fail(
            "E-BENCHMARK-CLASSPATH",
            "benchmark.classpath is empty",
            location="benchmark.classpath",
        )
    return [
        *bench.jvm_args,
        unified_logging_flag(bench.log_file),
        *system_property_flags(bench.system_properties),
        "-cp",
        runtime_classpath(settings),
        bench.main_class,
        *bench.app_args,
    ]


def build_benchmark_stages(
    settings: WorkflowConfig, toolchain: JavaToolchain
) -> List[StageSpec]:
    """The optional prepare command, then the application launched from its classes."""
    log_file = settings.resolve(settings.benchmark.log_file)
    stages: List[StageSpec] = []
    prepare = split_command(settings.benchmark.prepare)
    if prepare:
        stages.append(
            StageSpec(
                name=PREPARE,
                invocation=command_invocation(prepare, settings.project_dir),
                timeout_s=settings.benchmark.timeout_s,
            )
        )
    stages.append(
        StageSpec(
            name=BENCHMARK,
            invocation=ProcessInvocation(
                executable=toolchain.executable,
                cwd=settings.project_dir,
                args=tuple(benchmark_args(settings)),
                env=toolchain_env(toolchain),
            ),
            depends_on=PREPARE if prepare else None,
            produces=log_file,
            invalidates=(log_file,),
            timeout_s=settings.benchmark.timeout_s,
            capture=False,
        )
    )
    return stages


def benchmark_stage_names(settings: WorkflowConfig) -> List[str]:
    return [PREPARE, BENCHMARK] if split_command(settings.benchmark.prepare) else [BENCHMARK]


def execute_benchmark(
    settings: WorkflowConfig,
    *,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowOutcome:
    def _planner(ctx) -> Iterator[StageSpec]:
        yield from build_benchmark_stages(ctx.settings, ctx.toolchain)

    return run_workflow(
        settings,
        BENCHMARK,
        benchmark_stage_names(settings),
        _planner,
        run_id=run_id,
        resolver=resolver,
    )


def plan_benchmark(
    settings: WorkflowConfig, *, resolver: Resolver = default_resolver
) -> List[Dict[str, Any]]:
    return [describe_stage(spec) for spec in build_benchmark_stages(settings, resolver(settings))]
