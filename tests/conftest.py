"""Shared fixtures: a fake JDK whose `java` mimics the AOT cache file contract."""

from __future__ import annotations

import json
import os
import stat
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from aotflow.core.config import WorkflowConfig, build_settings

FAKE_JAVA = r'''#!{python}
import json
import os
import sys
from pathlib import Path

HOME = Path(__file__).resolve().parents[1]
args = sys.argv[1:]
with (HOME / "invocations.jsonl").open("a", encoding="utf-8") as handle:
    handle.write(json.dumps({{
        "exe": str(Path(sys.argv[0]).resolve()),
        "argv": args,
        "cwd": os.getcwd(),
        "java_home": os.environ.get("JAVA_HOME"),
    }}) + "\n")

opts = {{}}
jar = None
cp = None
i = 0
while i < len(args):
    arg = args[i]
    if arg == "-jar":
        jar = args[i + 1]
        i += 2
        continue
    if arg == "-cp":
        cp = args[i + 1]
        i += 2
        continue
    if arg.startswith("-XX:") and "=" in arg:
        key, value = arg[4:].split("=", 1)
        opts[key] = value
    if arg.startswith("-Xlog:") and ":file=" in arg:
        Path(arg.split(":file=", 1)[1].split(":", 1)[0]).write_text("[gc] fake\n")
    i += 1

mode = opts.get("AOTMode")
if os.environ.get("FAKE_JAVA_FAIL") == (mode or "plain"):
    print("simulated failure in " + str(mode), file=sys.stderr)
    sys.exit(3)
if jar is not None and not Path(jar).is_file():
    print("Error: Unable to access jarfile " + jar, file=sys.stderr)
    sys.exit(1)
if mode == "record":
    Path(opts["AOTConfiguration"]).write_text(json.dumps({{"classes": ["App", "Controller"]}}))
elif mode == "create":
    if cp is None or not Path(cp).is_file():
        print("Error: class path entry missing", file=sys.stderr)
        sys.exit(1)
    config = Path(opts["AOTConfiguration"])
    if not config.is_file() or config.stat().st_size == 0:
        print("Error: Must be a valid AOT configuration: " + str(config), file=sys.stderr)
        sys.exit(1)
    Path(opts["AOTCache"]).write_bytes(b"JSA" + config.read_bytes())
elif mode == "on":
    if not Path(opts["AOTCache"]).is_file():
        print("Error: AOT cache not found", file=sys.stderr)
        sys.exit(1)
print("started " + str(mode))
'''


def make_fake_jdk(root: Path, version: str = "25.0.1") -> Path:
    home = root / f"jdk-{version}"
    (home / "bin").mkdir(parents=True)
    (home / "release").write_text(f'IMPLEMENTOR="Fake"\nJAVA_VERSION="{version}"\n', encoding="utf-8")
    java = home / "bin" / "java"
    java.write_text(FAKE_JAVA.format(python=sys.executable), encoding="utf-8")
    java.chmod(java.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return home


def make_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{body}\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def invocations(home: Path) -> List[Dict[str, Any]]:
    log = home / "invocations.jsonl"
    if not log.exists():
        return []
    return [json.loads(line) for line in log.read_text(encoding="utf-8").splitlines() if line]


def make_settings(
    project: Path, jdk: Path, extra: Optional[Dict[str, Any]] = None
) -> WorkflowConfig:
    config: Dict[str, Any] = {
        "archive": "build/libs/app.jar",
        "toolchain": {"version": 25, "java_home": str(jdk)},
        "run": {"capture_output": True},
    }
    for key, value in (extra or {}).items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key] = {**config[key], **value}
        else:
            config[key] = value
    settings, diagnostics = build_settings(config, project)
    assert not diagnostics.has_errors(), diagnostics.to_list()
    assert settings is not None
    return settings


@pytest.fixture
def fake_jdk(tmp_path: Path) -> Path:
    return make_fake_jdk(tmp_path / "jdks")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    libs = root / "build" / "libs"
    libs.mkdir(parents=True)
    (libs / "app.jar").write_bytes(b"PK\x03\x04fake-boot-jar")
    return root


@pytest.fixture(autouse=True)
def _no_ambient_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FAKE_JAVA_FAIL", raising=False)
    if os.environ.get("JAVA_TOOL_OPTIONS"):
        monkeypatch.delenv("JAVA_TOOL_OPTIONS")
