from __future__ import annotations

import glob
import hashlib
import json
import os
import platform
import secrets
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .diagnostics import ArchiveError, fail

MANIFEST_VERSION = "1.0.0"

# Secondary jars Gradle writes next to the boot jar
SECONDARY_JAR_SUFFIXES = ("-plain.jar", "-sources.jar", "-javadoc.jar")


@dataclass(frozen=True)
class ArchiveLocation:
    path: Path
    name: str
    parent_dir: Path

    def to_dict(self) -> Dict[str, str]:
        return {"path": str(self.path), "name": self.name, "parent_dir": str(self.parent_dir)}


def locate_archive(archive: str, project_dir: Path) -> ArchiveLocation:
    """Resolve the packaged archive to its absolute path, file name and directory.

    A literal path is not checked for existence; a missing archive surfaces
    later, when a stage consumes it. A glob must match exactly one archive.
    """
    pattern = _anchored(archive, project_dir)
    if glob.has_magic(str(pattern)):
        matches = [
            Path(match)
            for match in sorted(glob.glob(str(pattern)))
            if Path(match).is_file() and not match.endswith(SECONDARY_JAR_SUFFIXES)
        ]
        if not matches:
            raise fail(
                "E-ARCHIVE-NOT-FOUND",
                f"No archive matches {pattern}",
                location="archive",
                hints=["Run the package stage first or configure package.command"],
                error_cls=ArchiveError,
            )
        if len(matches) > 1:
            raise fail(
                "E-ARCHIVE-AMBIGUOUS",
                f"{len(matches)} archives match {pattern}",
                location="archive",
                data={"matches": [str(m) for m in matches]},
                error_cls=ArchiveError,
            )
        pattern = matches[0]
    path = pattern.absolute()
    return ArchiveLocation(path=path, name=path.name, parent_dir=path.parent)


def _anchored(archive: str, project_dir: Path) -> Path:
    path = Path(archive).expanduser()
    if not path.is_absolute():
        path = project_dir / path
    return path


def unbuilt_archive(archive: str, project_dir: Path) -> ArchiveLocation:
    """The archive pattern itself, unexpanded, for planning before packaging."""
    path = _anchored(archive, project_dir).absolute()
    return ArchiveLocation(path=path, name=path.name, parent_dir=path.parent)


@dataclass
class ArtifactRecord:
    kind: str
    path: str
    content_hash: Optional[str] = None
    size_bytes: Optional[int] = None
    modified_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "path": self.path}
        if self.content_hash is not None:
            payload["content_hash"] = self.content_hash
        if self.size_bytes is not None:
            payload["size_bytes"] = self.size_bytes
        if self.modified_at is not None:
            payload["modified_at"] = self.modified_at
        return payload


def describe_artifact(kind: str, path: Path) -> ArtifactRecord:
    record = ArtifactRecord(kind=kind, path=str(path))
    if path.is_file():
        stat = path.stat()
        record.size_bytes = stat.st_size
        record.modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat()
        record.content_hash = hash_file(path)
    return record


@dataclass
class RunManifest:
    manifest_version: str
    run_id: str
    created_at: str
    status: str
    target: str
    host: Dict[str, Any]
    stages: List[Dict[str, Any]]
    artifacts: List[ArtifactRecord]
    toolchain: Optional[Dict[str, Any]] = None
    archive: Optional[Dict[str, Any]] = None
    layout: Optional[Dict[str, Any]] = None
    environment: Optional[Dict[str, Any]] = None
    metrics: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    extensions: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "manifest_version": self.manifest_version,
            "run_id": self.run_id,
            "created_at": self.created_at,
            "status": self.status,
            "target": self.target,
            "host": self.host,
            "stages": self.stages,
            "artifacts": [record.to_dict() for record in self.artifacts],
        }
        for key in ("toolchain", "archive", "layout", "environment", "metrics", "error"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.extensions:
            payload["extensions"] = self.extensions
        return payload


class RunStore:
    def __init__(self, root: Path) -> None:
        self.root = root

    def create_run(self, run_id: str) -> Path:
        run_dir = self.root / "runs" / run_id
        run_dir.mkdir(parents=True, exist_ok=False)
        (run_dir / "logs").mkdir()
        return run_dir

    def write_inputs(self, run_dir: Path, inputs: Dict[str, Any]) -> None:
        for name, payload in inputs.items():
            target = run_dir / name
            if isinstance(payload, (dict, list)):
                target.write_text(
                    json.dumps(payload, indent=2, sort_keys=True, default=str), encoding="utf-8"
                )
            else:
                target.write_text(str(payload), encoding="utf-8")

    def write_manifest(self, run_dir: Path, manifest: RunManifest) -> Path:
        manifest_path = run_dir / "manifest.json"
        manifest_path.write_text(
            json.dumps(manifest.to_dict(), indent=2, sort_keys=True, default=str),
            encoding="utf-8",
        )
        return manifest_path


def read_manifest(run_dir: Path) -> Dict[str, Any]:
    manifest_path = run_dir / "manifest.json"
    if not manifest_path.exists():
        raise FileNotFoundError(f"manifest.json not found in {run_dir}")
    return json.loads(manifest_path.read_text(encoding="utf-8"))


def hash_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def safe_run_id(prefix: str = "run") -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    pid = os.getpid()
    nonce = secrets.token_hex(4)
    return f"{prefix}-{ts}-{pid}-{time.time_ns()}-{nonce}"


def collect_environment() -> Dict[str, Any]:
    return {
        "os": {
            "name": platform.system(),
            "release": platform.release(),
            "machine": platform.machine(),
        },
        "platform": platform.platform(),
        "python": {
            "version": sys.version,
            "executable": sys.executable,
        },
        "ambient_java_home": os.environ.get("JAVA_HOME"),
    }
