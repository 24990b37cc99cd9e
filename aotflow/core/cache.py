from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .artifacts import hash_bytes, hash_file
from .stages import StageSpec


@dataclass(frozen=True)
class StageFingerprint:
    stage: str
    executable: str
    cwd: str
    args: Tuple[str, ...]
    consumed: Tuple[Tuple[str, str], ...]

    @classmethod
    def for_stage(cls, spec: StageSpec) -> "StageFingerprint":
        if spec.invocation is None:
            raise ValueError(f"Stage {spec.name} has no invocation")
        consumed = tuple(
            (str(path), hash_file(path) if path.is_file() else "") for path in spec.consumes
        )
        return cls(
            stage=spec.name,
            executable=str(spec.invocation.executable),
            cwd=str(spec.invocation.cwd),
            args=tuple(spec.invocation.args),
            consumed=consumed,
        )

    def to_string(self) -> str:
        payload = json.dumps(
            {
                "stage": self.stage,
                "executable": self.executable,
                "cwd": self.cwd,
                "args": list(self.args),
                "consumed": [list(item) for item in self.consumed],
            },
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
        ).encode("utf-8")
        return hash_bytes(payload)


class FingerprintStore:
    """Records what each reusable stage was last built from, under `<aot_dir>/.stages`."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, stage: str) -> Path:
        return self.root / f"{stage}.json"

    def get(self, stage: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(stage)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def put(self, spec: StageSpec, fingerprint: StageFingerprint) -> Path:
        if spec.produces is None:
            raise ValueError(f"Stage {spec.name} declares no output")
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(spec.name)
        payload = {
            "stage": spec.name,
            "key": fingerprint.to_string(),
            "output": str(spec.produces),
            "output_hash": hash_file(spec.produces),
        }
        path.write_text(json.dumps(payload, sort_keys=True, indent=2), encoding="utf-8")
        return path

    def matches(self, spec: StageSpec, fingerprint: StageFingerprint) -> bool:
        if spec.produces is None or not spec.produces.is_file():
            return False
        recorded = self.get(spec.name)
        if recorded is None:
            return False
        if recorded.get("key") != fingerprint.to_string():
            return False
        if recorded.get("output") != str(spec.produces):
            return False
        return recorded.get("output_hash") == hash_file(spec.produces)

    def discard(self, stage: str) -> None:
        self.path_for(stage).unlink(missing_ok=True)
