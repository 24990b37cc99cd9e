from __future__ import annotations

import json

import pytest

from aotflow.core.artifacts import (
    RunStore,
    describe_artifact,
    hash_bytes,
    locate_archive,
    read_manifest,
)
from aotflow.core.diagnostics import ArchiveError


def test_literal_archive_is_not_checked(tmp_path):
    location = locate_archive("build/libs/missing.jar", tmp_path)
    assert location.path == tmp_path.absolute() / "build" / "libs" / "missing.jar"
    assert location.name == "missing.jar"
    assert location.parent_dir == tmp_path.absolute() / "build" / "libs"


def test_glob_ignores_secondary_jars(tmp_path):
    libs = tmp_path / "build" / "libs"
    libs.mkdir(parents=True)
    for name in ("demo-0.0.1.jar", "demo-0.0.1-plain.jar", "demo-0.0.1-sources.jar", "demo-0.0.1-javadoc.jar"):
        (libs / name).write_bytes(b"PK")
    location = locate_archive("build/libs/*.jar", tmp_path)
    assert location.name == "demo-0.0.1.jar"


def test_glob_requires_exactly_one_archive(tmp_path):
    libs = tmp_path / "build" / "libs"
    libs.mkdir(parents=True)
    with pytest.raises(ArchiveError) as excinfo:
        locate_archive("build/libs/*.jar", tmp_path)
    assert excinfo.value.code == "E-ARCHIVE-NOT-FOUND"

    (libs / "a.jar").write_bytes(b"PK")
    (libs / "b.jar").write_bytes(b"PK")
    with pytest.raises(ArchiveError) as excinfo:
        locate_archive("build/libs/*.jar", tmp_path)
    assert excinfo.value.code == "E-ARCHIVE-AMBIGUOUS"
    assert len(excinfo.value.diagnostic.data["matches"]) == 2


def test_describe_artifact_hashes_content(tmp_path):
    path = tmp_path / "aot-config.json"
    path.write_bytes(b"{}")
    record = describe_artifact("training-config", path)
    assert record.content_hash == hash_bytes(b"{}")
    assert record.size_bytes == 2
    missing = describe_artifact("aot-cache", tmp_path / "nope.jsa").to_dict()
    assert missing == {"kind": "aot-cache", "path": str(tmp_path / "nope.jsa")}


def test_run_store_layout(tmp_path):
    store = RunStore(tmp_path)
    run_dir = store.create_run("run-1")
    assert (run_dir / "logs").is_dir()
    with pytest.raises(FileExistsError):
        store.create_run("run-1")
    store.write_inputs(run_dir, {"config.resolved.json": {"a": 1}})
    assert json.loads((run_dir / "config.resolved.json").read_text()) == {"a": 1}
    with pytest.raises(FileNotFoundError):
        read_manifest(run_dir)
