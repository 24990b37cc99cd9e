from __future__ import annotations

import os
import sys

import pytest

from aotflow.core.benchmark import (
    benchmark_args,
    execute_benchmark,
    plan_benchmark,
    unified_logging_flag,
)
from aotflow.core.diagnostics import AotFlowError, StageFailedError
from aotflow.core.pipeline import execute_workflow
from aotflow.core.stages import StageState
from aotflow.core.toolchain import JavaToolchain

from conftest import invocations, make_script, make_settings

MAIN_CLASS = "org.example.demouseraot.DemoUserAotApplication"


def test_unified_logging_flag():
    assert (
        unified_logging_flag("gc-benchmark.log")
        == "-Xlog:gc*,safepoint,class+load=info:file=gc-benchmark.log:time,level,tags"
    )


def test_benchmark_args_launch_from_classes(tmp_path):
    settings = make_settings(tmp_path, tmp_path / "jdk", {"benchmark": {"main_class": MAIN_CLASS}})
    args = benchmark_args(settings)
    classpath = os.pathsep.join(
        [
            str(tmp_path.absolute() / "build" / "classes" / "java" / "main"),
            str(tmp_path.absolute() / "build" / "resources" / "main"),
        ]
    )
    assert args == [
        "-Xlog:gc*,safepoint,class+load=info:file=gc-benchmark.log:time,level,tags",
        "-Dspring.main.log-startup-info=true",
        "-cp",
        classpath,
        MAIN_CLASS,
    ]
    assert "-jar" not in args


def test_benchmark_requires_main_class(tmp_path):
    settings = make_settings(tmp_path, tmp_path / "jdk")
    with pytest.raises(AotFlowError) as excinfo:
        benchmark_args(settings)
    assert excinfo.value.code == "E-BENCHMARK-MAIN-CLASS"


def test_benchmark_uses_same_launcher_as_aot_chain(project, fake_jdk):
    settings = make_settings(project, fake_jdk, {"benchmark": {"main_class": MAIN_CLASS}})
    execute_workflow(settings, "run")
    outcome = execute_benchmark(settings)

    assert outcome.stage("benchmark").state == StageState.SUCCEEDED
    assert (project / "gc-benchmark.log").is_file()
    calls = invocations(fake_jdk)
    assert len(calls) == 4
    assert len({call["exe"] for call in calls}) == 1
    assert calls[-1]["argv"][-1] == MAIN_CLASS


def test_benchmark_runs_prepare_first(project, fake_jdk):
    marker = project / "classes-built"
    settings = make_settings(
        project,
        fake_jdk,
        {
            "benchmark": {
                "main_class": MAIN_CLASS,
                "prepare": [sys.executable, "-c", f"open({str(marker)!r}, 'w').close()"],
            }
        },
    )
    outcome = execute_benchmark(settings)
    assert [r.name for r in outcome.stages] == ["prepare", "benchmark"]
    assert marker.exists()
    assert outcome.stage("benchmark").state == StageState.SUCCEEDED


def test_benchmark_plan(project, fake_jdk):
    settings = make_settings(project, fake_jdk, {"benchmark": {"main_class": MAIN_CLASS}})
    plan = plan_benchmark(settings)
    assert [entry["name"] for entry in plan] == ["benchmark"]
    assert plan[0]["invocation"]["cwd"] == str(settings.project_dir)
    assert invocations(fake_jdk) == []


def test_stale_benchmark_log_is_not_taken_as_output(project, fake_jdk):
    settings = make_settings(project, fake_jdk, {"benchmark": {"main_class": MAIN_CLASS}})
    stale = project / "gc-benchmark.log"
    stale.write_text("[gc] from an earlier run\n")
    quiet = make_script(project / "quiet-jdk" / "bin" / "java", "import sys; sys.exit(0)")

    def resolver(_settings):
        return JavaToolchain(home=quiet.parents[1], executable=quiet, version="25.0.1")

    with pytest.raises(StageFailedError) as excinfo:
        execute_benchmark(settings, resolver=resolver)
    assert excinfo.value.code == "E-STAGE-OUTPUT-MISSING"
    assert not stale.exists()
