from __future__ import annotations

import platform
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .artifacts import (
    MANIFEST_VERSION,
    ArchiveLocation,
    RunManifest,
    RunStore,
    collect_environment,
    describe_artifact,
    locate_archive,
    safe_run_id,
    unbuilt_archive,
)
from .cache import FingerprintStore, StageFingerprint
from .config import WorkflowConfig
from .diagnostics import AotFlowError, ArchiveError, PreflightError, StageFailedError, fail
from .external import build_env, run_external, tail
from .logging import get_event_logger, get_logger, log_event, release_logger
from .stages import (
    STAGE_ORDER,
    AotLayout,
    StageSpec,
    StageState,
    build_aot_stages,
    build_package_stage,
    stage_chain,
)
from .toolchain import JavaToolchain, resolve_toolchain
from .version import __version__


Resolver = Callable[[WorkflowConfig], JavaToolchain]
Planner = Callable[["WorkflowContext"], Iterator[StageSpec]]


@dataclass
class StageResult:
    name: str
    state: StageState = StageState.PENDING
    invocation: Optional[Dict[str, Any]] = None
    returncode: Optional[int] = None
    elapsed_s: Optional[float] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "invocation": self.invocation,
            "returncode": self.returncode,
            "elapsed_s": self.elapsed_s,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "reason": self.reason,
        }


@dataclass
class WorkflowContext:
    settings: WorkflowConfig
    run_id: str
    run_dir: Path
    logs_dir: Path
    logger: Any
    events: Any
    fingerprints: FingerprintStore
    toolchain: Optional[JavaToolchain] = None
    archive: Optional[ArchiveLocation] = None
    results: Dict[str, StageResult] = field(default_factory=dict)


@dataclass
class WorkflowOutcome:
    run_id: str
    run_dir: Path
    status: str
    stages: List[StageResult]
    toolchain: Optional[JavaToolchain] = None
    archive: Optional[ArchiveLocation] = None

    def stage(self, name: str) -> StageResult:
        for result in self.stages:
            if result.name == name:
                return result
        raise KeyError(name)


def default_resolver(settings: WorkflowConfig) -> JavaToolchain:
    return resolve_toolchain(
        settings.toolchain.version,
        java_home=settings.toolchain.java_home,
        search_paths=[str(settings.resolve(p)) for p in settings.toolchain.search_paths],
    )


def execute_workflow(
    settings: WorkflowConfig,
    target: str = "run",
    *,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowOutcome:
    """Run the package -> record -> assemble -> run chain up to `target`."""
    chain = _checked_chain(target)
    return run_workflow(
        settings,
        target,
        chain,
        lambda ctx: _aot_stages(ctx, chain),
        run_id=run_id,
        resolver=resolver,
    )


def plan_workflow(
    settings: WorkflowConfig,
    target: str = "run",
    *,
    resolver: Resolver = default_resolver,
) -> List[Dict[str, Any]]:
    chain = _checked_chain(target)
    toolchain = resolver(settings)
    specs: List[StageSpec] = []
    if "package" in chain:
        specs.append(build_package_stage(settings))
    packages = bool(specs) and specs[0].invocation is not None
    try:
        archive = locate_archive(settings.archive, settings.project_dir)
    except ArchiveError as exc:
        # Nothing is built yet; the glob is expanded after the package stage runs
        if not packages or exc.code != "E-ARCHIVE-NOT-FOUND":
            raise
        archive = unbuilt_archive(settings.archive, settings.project_dir)
    specs.extend(s for s in build_aot_stages(settings, toolchain, archive) if s.name in chain)
    return [describe_stage(spec) for spec in specs]


def describe_stage(spec: StageSpec) -> Dict[str, Any]:
    return {
        "name": spec.name,
        "depends_on": spec.depends_on,
        "invocation": spec.invocation.to_dict() if spec.invocation else None,
        "consumes": [str(p) for p in spec.consumes],
        "produces": str(spec.produces) if spec.produces else None,
        "skip_reason": spec.skip_reason,
    }


def run_workflow(
    settings: WorkflowConfig,
    target: str,
    stage_names: List[str],
    planner: Planner,
    *,
    run_id: Optional[str] = None,
    resolver: Resolver = default_resolver,
) -> WorkflowOutcome:
    store = RunStore(settings.aot_dir)
    run_id = run_id or safe_run_id()
    run_dir = store.create_run(run_id)
    logs_dir = run_dir / "logs"
    ctx = WorkflowContext(
        settings=settings,
        run_id=run_id,
        run_dir=run_dir,
        logs_dir=logs_dir,
        logger=get_logger("workflow", logs_dir),
        events=get_event_logger(logs_dir),
        fingerprints=FingerprintStore(settings.aot_dir / ".stages"),
        results={name: StageResult(name=name) for name in stage_names},
    )
    store.write_inputs(run_dir, {"config.resolved.json": settings.model_dump(mode="json")})

    success = False
    error_info: Optional[Dict[str, Any]] = None
    start = time.perf_counter()
    log_event(ctx.events, "workflow.start", run_id=run_id, target=target, stages=stage_names)
    ctx.logger.info("Workflow %s: target=%s stages=%s", run_id, target, ",".join(stage_names))
    try:
        # Resolved once, before any stage; every JVM stage reuses it
        ctx.toolchain = resolver(settings)
        ctx.logger.info(
            "Toolchain: %s (Java %s)", ctx.toolchain.executable, ctx.toolchain.version
        )
        for spec in planner(ctx):
            execute_stage(ctx, spec)
        success = True
    except AotFlowError as exc:
        exc.run_dir = run_dir
        error_info = {"type": type(exc).__name__, "message": str(exc), **exc.diagnostic.to_dict()}
        ctx.logger.error("%s: %s", exc.code, exc)
        raise
    except Exception as exc:
        error_info = {"type": type(exc).__name__, "message": str(exc)}
        ctx.logger.error("Workflow failed: %s", exc)
        raise
    finally:
        status = "success" if success else "failed"
        try:
            log_event(
                ctx.events,
                "workflow.end",
                run_id=run_id,
                status=status,
                elapsed_s=time.perf_counter() - start,
                error=error_info,
            )
            store.write_manifest(
                run_dir, _build_manifest(ctx, target, status, error_info, time.perf_counter() - start)
            )
        except Exception:
            if success:
                raise
        finally:
            release_logger(ctx.logger)

    return WorkflowOutcome(
        run_id=run_id,
        run_dir=run_dir,
        status="success",
        stages=list(ctx.results.values()),
        toolchain=ctx.toolchain,
        archive=ctx.archive,
    )


def execute_stage(ctx: WorkflowContext, spec: StageSpec) -> StageResult:
    settings = ctx.settings
    result = ctx.results.setdefault(spec.name, StageResult(name=spec.name))
    if spec.invocation is None:
        result.state = StageState.SKIPPED
        result.reason = spec.skip_reason
        ctx.logger.info("Stage %s skipped: %s", spec.name, spec.skip_reason)
        log_event(ctx.events, "stage.skip", run_id=ctx.run_id, stage=spec.name, reason=spec.skip_reason)
        return result

    result.invocation = spec.invocation.to_dict()
    fingerprint: Optional[StageFingerprint] = None
    if spec.reusable and spec.produces is not None:
        fingerprint = StageFingerprint.for_stage(spec)
        if settings.staleness == "reuse" and ctx.fingerprints.matches(spec, fingerprint):
            result.state = StageState.SKIPPED
            result.reason = "up-to-date"
            ctx.logger.info("Stage %s up-to-date: reusing %s", spec.name, spec.produces)
            log_event(
                ctx.events,
                "stage.skip",
                run_id=ctx.run_id,
                stage=spec.name,
                reason="up-to-date",
                output=str(spec.produces),
            )
            return result

    _invalidate(ctx, spec)
    if settings.preflight:
        _preflight(ctx, spec, result)
    if spec.produces is not None:
        spec.produces.parent.mkdir(parents=True, exist_ok=True)

    invocation = spec.invocation
    result.state = StageState.RUNNING
    ctx.logger.info("Stage %s: %s (cwd=%s)", spec.name, " ".join(invocation.cmd), invocation.cwd)
    log_event(
        ctx.events,
        "stage.start",
        run_id=ctx.run_id,
        stage=spec.name,
        cmd=invocation.cmd,
        cwd=str(invocation.cwd),
        consumes=[str(p) for p in spec.consumes],
        produces=str(spec.produces) if spec.produces else None,
    )
    try:
        run = run_external(
            invocation.cmd,
            cwd=invocation.cwd,
            logs_dir=ctx.logs_dir,
            env=build_env(settings.env_mode, invocation.env),
            name=spec.name,
            capture=spec.capture,
            timeout_s=spec.timeout_s,
        )
    except OSError as exc:
        result.state = StageState.FAILED
        result.reason = f"could not launch {invocation.executable}: {exc}"
        log_event(ctx.events, "stage.error", run_id=ctx.run_id, stage=spec.name, error=result.reason)
        raise fail(
            "E-STAGE-LAUNCH",
            f"Stage {spec.name} could not launch {invocation.executable}",
            location=spec.name,
            hints=[str(exc)],
            data={"executable": str(invocation.executable), "cwd": str(invocation.cwd)},
            error_cls=StageFailedError,
        ) from exc
    result.returncode = run.returncode
    result.elapsed_s = run.elapsed_s
    result.stdout = str(run.stdout) if run.stdout else None
    result.stderr = str(run.stderr) if run.stderr else None

    if not run.ok:
        result.state = StageState.FAILED
        if run.timed_out:
            code, message = "E-STAGE-TIMEOUT", f"Stage {spec.name} timed out after {spec.timeout_s}s"
        else:
            code, message = "E-STAGE-EXIT", f"Stage {spec.name} exited with status {run.returncode}"
        result.reason = message
        output_tail = tail(run.stderr) or tail(run.stdout)
        log_event(
            ctx.events,
            "stage.error",
            run_id=ctx.run_id,
            stage=spec.name,
            returncode=run.returncode,
            elapsed_s=run.elapsed_s,
            error=message,
        )
        if output_tail:
            ctx.logger.error("Stage %s output:\n%s", spec.name, output_tail)
        raise fail(
            code,
            message,
            location=spec.name,
            hints=[output_tail] if output_tail else [],
            data={"returncode": run.returncode, "stderr": result.stderr},
            error_cls=StageFailedError,
        )

    if spec.produces is not None and not spec.produces.is_file():
        result.state = StageState.FAILED
        result.reason = f"declared output {spec.produces} was not written"
        log_event(ctx.events, "stage.error", run_id=ctx.run_id, stage=spec.name, error=result.reason)
        raise fail(
            "E-STAGE-OUTPUT-MISSING",
            f"Stage {spec.name} exited cleanly but did not write {spec.produces}",
            location=spec.name,
            error_cls=StageFailedError,
        )

    result.state = StageState.SUCCEEDED
    if fingerprint is not None:
        ctx.fingerprints.put(spec, fingerprint)
    ctx.logger.info("Stage %s succeeded in %.2fs", spec.name, run.elapsed_s)
    log_event(
        ctx.events,
        "stage.end",
        run_id=ctx.run_id,
        stage=spec.name,
        returncode=run.returncode,
        elapsed_s=run.elapsed_s,
        produces=str(spec.produces) if spec.produces else None,
    )
    return result


def _aot_stages(ctx: WorkflowContext, chain: List[str]) -> Iterator[StageSpec]:
    if "package" in chain:
        yield build_package_stage(ctx.settings)
    # Located after packaging so a glob sees the fresh archive
    ctx.archive = locate_archive(ctx.settings.archive, ctx.settings.project_dir)
    ctx.logger.info("Archive: %s", ctx.archive.path)
    if ctx.toolchain is None:
        raise RuntimeError("toolchain must be resolved before the AOT stages are planned")
    for spec in build_aot_stages(ctx.settings, ctx.toolchain, ctx.archive):
        if spec.name in chain:
            yield spec


def _checked_chain(target: str) -> List[str]:
    try:
        return stage_chain(target)
    except KeyError:
        raise fail(
            "E-STAGE-UNKNOWN",
            f"Unknown stage '{target}'",
            hints=[f"expected one of: {', '.join(STAGE_ORDER)}"],
        ) from None


def _invalidate(ctx: WorkflowContext, spec: StageSpec) -> None:
    for path in spec.invalidates:
        if path.exists():
            ctx.logger.debug("Removing stale %s", path)
            path.unlink()
    if spec.invalidates and spec.name in STAGE_ORDER:
        # Downstream fingerprints are void once their inputs are rebuilt
        for name in STAGE_ORDER[STAGE_ORDER.index(spec.name) :]:
            ctx.fingerprints.discard(name)


def _preflight(ctx: WorkflowContext, spec: StageSpec, result: StageResult) -> None:
    for path in spec.consumes:
        problem = None
        if not path.is_file():
            problem = "does not exist"
        elif path.stat().st_size == 0:
            problem = "is empty"
        if problem is None:
            continue
        result.state = StageState.FAILED
        result.reason = f"{path} {problem}"
        log_event(
            ctx.events,
            "stage.error",
            run_id=ctx.run_id,
            stage=spec.name,
            error=result.reason,
            preflight=True,
        )
        hints = []
        if spec.depends_on:
            hints.append(f"run the '{spec.depends_on}' stage first")
        raise fail(
            "E-PREFLIGHT-MISSING",
            f"Stage {spec.name} requires {path}, which {problem}",
            location=spec.name,
            hints=hints,
            data={"path": str(path)},
            error_cls=PreflightError,
        )


def _build_manifest(
    ctx: WorkflowContext,
    target: str,
    status: str,
    error_info: Optional[Dict[str, Any]],
    elapsed_s: float,
) -> RunManifest:
    settings = ctx.settings
    layout = AotLayout.from_settings(settings)
    artifacts = []
    if ctx.archive is not None:
        artifacts.append(describe_artifact("archive", ctx.archive.path))
    for kind, path in (("training-config", layout.config_file), ("aot-cache", layout.cache_file)):
        if path.exists():
            artifacts.append(describe_artifact(kind, path))
    environment = collect_environment()
    environment["env_mode"] = settings.env_mode
    return RunManifest(
        manifest_version=MANIFEST_VERSION,
        run_id=ctx.run_id,
        created_at=_now(),
        status=status,
        target=target,
        host={
            "name": "aotflow",
            "version": __version__,
            "platform": platform.platform(),
            "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        },
        stages=[result.to_dict() for result in ctx.results.values()],
        artifacts=artifacts,
        toolchain=ctx.toolchain.to_dict() if ctx.toolchain else None,
        archive=ctx.archive.to_dict() if ctx.archive else None,
        layout=layout.to_dict(),
        environment=environment,
        metrics={"total_elapsed_s": elapsed_s},
        error=error_info,
        extensions={"staleness": settings.staleness, "preflight": settings.preflight},
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def clean_workflow(settings: WorkflowConfig) -> List[Path]:
    """Delete the training config, the cache and the stage fingerprints."""
    layout = AotLayout.from_settings(settings)
    fingerprints = FingerprintStore(settings.aot_dir / ".stages")
    removed: List[Path] = []
    for path in (layout.config_file, layout.cache_file):
        if path.exists():
            path.unlink()
            removed.append(path)
    for name in STAGE_ORDER:
        path = fingerprints.path_for(name)
        if path.exists():
            path.unlink()
            removed.append(path)
    return removed
