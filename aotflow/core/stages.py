from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .artifacts import ArchiveLocation
from .config import WorkflowConfig
from .toolchain import JavaToolchain

PACKAGE = "package"
RECORD = "record"
ASSEMBLE = "assemble"
RUN = "run"
STAGE_ORDER: Tuple[str, ...] = (PACKAGE, RECORD, ASSEMBLE, RUN)

# Makes the training run initialize the context and exit without opening a port
AUTO_EXIT_FLAG = "--spring.main.web-application-type=none"
CLASS_PATH_LOGGING = "-Xlog:class+path=info"


class StageState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class AotLayout:
    aot_dir: Path
    config_file: Path
    cache_file: Path

    @classmethod
    def from_settings(cls, settings: WorkflowConfig) -> "AotLayout":
        return cls(
            aot_dir=settings.aot_dir,
            config_file=settings.config_path,
            cache_file=settings.cache_path,
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "aot_dir": str(self.aot_dir),
            "config_file": str(self.config_file),
            "cache_file": str(self.cache_file),
        }


@dataclass(frozen=True)
class ProcessInvocation:
    executable: Union[Path, str]
    cwd: Path
    args: Tuple[str, ...]
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def cmd(self) -> List[str]:
        return [str(self.executable), *self.args]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executable": str(self.executable),
            "cwd": str(self.cwd),
            "args": list(self.args),
            "env": dict(self.env),
        }


@dataclass(frozen=True)
class StageSpec:
    name: str
    invocation: Optional[ProcessInvocation]
    depends_on: Optional[str] = None
    consumes: Tuple[Path, ...] = ()
    produces: Optional[Path] = None
    invalidates: Tuple[Path, ...] = ()
    timeout_s: Optional[float] = None
    capture: bool = True
    reusable: bool = False
    skip_reason: Optional[str] = None


def stage_chain(target: str) -> List[str]:
    if target not in STAGE_ORDER:
        raise KeyError(target)
    return list(STAGE_ORDER[: STAGE_ORDER.index(target) + 1])


def record_args(
    archive: ArchiveLocation,
    layout: AotLayout,
    jvm_args: Sequence[str] = (),
    app_args: Sequence[str] = (),
) -> List[str]:
    return [
        *jvm_args,
        "-XX:AOTMode=record",
        f"-XX:AOTConfiguration={layout.config_file}",
        "-jar",
        archive.name,
        AUTO_EXIT_FLAG,
        *[arg for arg in app_args if arg != AUTO_EXIT_FLAG],
    ]


def assemble_args(
    archive: ArchiveLocation,
    layout: AotLayout,
    jvm_args: Sequence[str] = (),
) -> List[str]:
    # Classpath mode: the cache is built from loaded classes, the app never starts
    return [
        *jvm_args,
        "-cp",
        archive.name,
        "-XX:AOTMode=create",
        f"-XX:AOTConfiguration={layout.config_file}",
        f"-XX:AOTCache={layout.cache_file}",
        CLASS_PATH_LOGGING,
    ]


def run_args(
    archive: ArchiveLocation,
    layout: AotLayout,
    jvm_args: Sequence[str] = (),
    app_args: Sequence[str] = (),
) -> List[str]:
    return [
        *jvm_args,
        "-XX:AOTMode=on",
        f"-XX:AOTCache={layout.cache_file}",
        "-jar",
        archive.name,
        *app_args,
    ]


def toolchain_env(toolchain: JavaToolchain) -> Dict[str, str]:
    return {"JAVA_HOME": str(toolchain.home)}


def split_command(command: Union[str, Sequence[str], None]) -> Optional[List[str]]:
    if command is None:
        return None
    if isinstance(command, str):
        return shlex.split(command)
    return [str(part) for part in command]


def command_invocation(command: Sequence[str], cwd: Path) -> ProcessInvocation:
    # Kept verbatim: a relative launcher such as `./gradlew` resolves against cwd
    return ProcessInvocation(executable=command[0], cwd=cwd, args=tuple(command[1:]))


def build_package_stage(settings: WorkflowConfig) -> StageSpec:
    command = split_command(settings.package.command)
    if not command:
        return StageSpec(
            name=PACKAGE,
            invocation=None,
            skip_reason="no package command configured",
        )
    return StageSpec(
        name=PACKAGE,
        invocation=command_invocation(command, settings.project_dir),
        timeout_s=settings.package.timeout_s,
    )


def build_aot_stages(
    settings: WorkflowConfig,
    toolchain: JavaToolchain,
    archive: ArchiveLocation,
) -> List[StageSpec]:
    layout = AotLayout.from_settings(settings)
    env = toolchain_env(toolchain)
    # Every phase runs from the archive's directory with the same launcher
    cwd = archive.parent_dir
    record = StageSpec(
        name=RECORD,
        invocation=ProcessInvocation(
            executable=toolchain.executable,
            cwd=cwd,
            args=tuple(
                record_args(archive, layout, settings.record.jvm_args, settings.record.app_args)
            ),
            env=env,
        ),
        depends_on=PACKAGE,
        consumes=(archive.path,),
        produces=layout.config_file,
        invalidates=(layout.config_file, layout.cache_file),
        timeout_s=settings.record.timeout_s,
        reusable=True,
    )
    assemble = StageSpec(
        name=ASSEMBLE,
        invocation=ProcessInvocation(
            executable=toolchain.executable,
            cwd=cwd,
            args=tuple(assemble_args(archive, layout, settings.assemble.jvm_args)),
            env=env,
        ),
        depends_on=RECORD,
        consumes=(archive.path, layout.config_file),
        produces=layout.cache_file,
        invalidates=(layout.cache_file,),
        timeout_s=settings.assemble.timeout_s,
        reusable=True,
    )
    run = StageSpec(
        name=RUN,
        invocation=ProcessInvocation(
            executable=toolchain.executable,
            cwd=cwd,
            args=tuple(run_args(archive, layout, settings.run.jvm_args, settings.run.app_args)),
            env=env,
        ),
        depends_on=ASSEMBLE,
        consumes=(archive.path, layout.cache_file),
        timeout_s=settings.run.timeout_s,
        capture=settings.run.capture_output,
    )
    return [record, assemble, run]
