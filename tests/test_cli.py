from __future__ import annotations

import json

import pytest
import yaml

from aotflow.cli import main

from conftest import invocations


def _write_config(project, jdk, **extra):
    config = {
        "archive": "build/libs/app.jar",
        "toolchain": {"version": 25, "java_home": str(jdk)},
        "run": {"capture_output": True},
    }
    config.update(extra)
    path = project / "aotflow.yaml"
    path.write_text(yaml.safe_dump({"aotflow": config}), encoding="utf-8")
    return path


def test_validate_ok(project, fake_jdk, capsys):
    path = _write_config(project, fake_jdk)
    main(["validate", "-c", str(path)])
    assert json.loads(capsys.readouterr().out) == {"status": "ok"}


def test_validate_reports_diagnostics(project, fake_jdk, capsys):
    path = _write_config(project, fake_jdk, staleness="never")
    with pytest.raises(SystemExit) as excinfo:
        main(["validate", "-c", str(path)])
    assert excinfo.value.code == 1
    diagnostics = json.loads(capsys.readouterr().out)
    assert diagnostics[0]["code"] == "E-CONFIG-SCHEMA"


def test_dry_run_prints_plan(project, fake_jdk, capsys):
    path = _write_config(project, fake_jdk)
    main(["assemble", "-c", str(path), "--dry-run"])
    plan = json.loads(capsys.readouterr().out)
    assert [entry["name"] for entry in plan] == ["package", "record", "assemble"]
    assert invocations(fake_jdk) == []


def test_run_and_report(project, fake_jdk, capsys):
    path = _write_config(project, fake_jdk)
    main(["run", "-c", str(path)])
    assert len(invocations(fake_jdk)) == 3

    runs = sorted((project / "build" / "aot" / "runs").iterdir())
    assert len(runs) == 1
    capsys.readouterr()
    main(["report", "-r", str(runs[0])])
    manifest = json.loads(capsys.readouterr().out)
    assert manifest["status"] == "success"


def test_failure_exits_non_zero(project, fake_jdk, monkeypatch):
    path = _write_config(project, fake_jdk)
    monkeypatch.setenv("FAKE_JAVA_FAIL", "create")
    with pytest.raises(SystemExit) as excinfo:
        main(["run", "-c", str(path)])
    assert excinfo.value.code == 1
    assert len(invocations(fake_jdk)) == 2


def test_no_preflight_flag(project, fake_jdk, monkeypatch):
    path = _write_config(project, fake_jdk)
    monkeypatch.setenv("FAKE_JAVA_FAIL", "record")
    with pytest.raises(SystemExit):
        main(["run", "-c", str(path), "--no-preflight", "--staleness", "reuse"])
    resolved = sorted((project / "build" / "aot" / "runs").iterdir())[0] / "config.resolved.json"
    data = json.loads(resolved.read_text())
    assert data["preflight"] is False
    assert data["staleness"] == "reuse"


def test_clean(project, fake_jdk):
    path = _write_config(project, fake_jdk)
    main(["assemble", "-c", str(path)])
    assert (project / "build" / "aot" / "aot-cache.jsa").exists()
    main(["clean", "-c", str(path)])
    assert not (project / "build" / "aot" / "aot-cache.jsa").exists()
    assert not (project / "build" / "aot" / "aot-config.json").exists()


def test_unlaunchable_command_exits_non_zero(project, fake_jdk, caplog):
    path = _write_config(project, fake_jdk, package={"command": "./gradlew-missing bootJar"})
    with pytest.raises(SystemExit) as excinfo:
        main(["record", "-c", str(path)])
    assert excinfo.value.code == 1
    assert "E-STAGE-LAUNCH" in caplog.text
    assert invocations(fake_jdk) == []
