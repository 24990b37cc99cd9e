from __future__ import annotations

import os
import subprocess
import time
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence


# Variables a clean environment keeps so the launcher can still start
CLEAN_ENV_KEYS = ("PATH", "HOME", "USER", "LANG", "LC_ALL", "TMPDIR", "SYSTEMROOT", "TZ")


@dataclass(frozen=True)
class ExternalRunResult:
    cmd: List[str]
    cwd: Path
    returncode: int
    stdout: Optional[Path]
    stderr: Optional[Path]
    elapsed_s: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cmd": self.cmd,
            "cwd": str(self.cwd),
            "returncode": self.returncode,
            "stdout": str(self.stdout) if self.stdout else None,
            "stderr": str(self.stderr) if self.stderr else None,
            "elapsed_s": self.elapsed_s,
            "timed_out": self.timed_out,
        }


def build_env(
    env_mode: str = "inherit",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    source = os.environ if base is None else base
    if env_mode == "clean":
        env = {key: source[key] for key in CLEAN_ENV_KEYS if key in source}
    elif env_mode == "inherit":
        env = dict(source)
    else:
        raise ValueError(f"Unknown env_mode: {env_mode}")
    if overrides:
        env.update(overrides)
    return env


def run_external(
    cmd: Sequence[str],
    cwd: Path,
    logs_dir: Optional[Path],
    *,
    env: Optional[Mapping[str, str]] = None,
    name: str = "external",
    capture: bool = True,
    timeout_s: Optional[float] = None,
) -> ExternalRunResult:
    """Run `cmd` in `cwd` and wait for it to exit.

    With `capture` the output goes to `<name>.stdout.log` / `<name>.stderr.log`
    under `logs_dir`; otherwise the child shares this process's streams.
    The exit status is returned, never raised; a launcher that cannot be
    started raises `OSError`.
    """
    run_cmd = [str(part) for part in cmd]
    stdout_path: Optional[Path] = None
    stderr_path: Optional[Path] = None
    if capture:
        if logs_dir is None:
            raise ValueError("logs_dir is required when capturing output")
        logs_dir.mkdir(parents=True, exist_ok=True)
        stdout_path = logs_dir / f"{name}.stdout.log"
        stderr_path = logs_dir / f"{name}.stderr.log"

    start = time.time()
    timed_out = False
    with ExitStack() as stack:
        stdout = stack.enter_context(stdout_path.open("w", encoding="utf-8")) if stdout_path else None
        stderr = stack.enter_context(stderr_path.open("w", encoding="utf-8")) if stderr_path else None
        try:
            proc = subprocess.run(
                run_cmd,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdout=stdout,
                stderr=stderr,
                check=False,
                text=True,
                timeout=timeout_s,
            )
            returncode = proc.returncode
        except subprocess.TimeoutExpired:
            # subprocess.run kills the child before re-raising
            timed_out = True
            returncode = -9
    elapsed = time.time() - start
    return ExternalRunResult(
        cmd=run_cmd,
        cwd=cwd,
        returncode=returncode,
        stdout=stdout_path,
        stderr=stderr_path,
        elapsed_s=elapsed,
        timed_out=timed_out,
    )


def tail(path: Optional[Path], lines: int = 20) -> str:
    if path is None or not path.exists():
        return ""
    content = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return "\n".join(content[-lines:])
