from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

import jsonschema
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .diagnostics import Diagnostic, Diagnostics


SCHEMA_PATH = Path(__file__).resolve().parent.parent / "schemas" / "workflow.schema.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "project_dir": None,
    "build_dir": "build",
    "archive": "build/libs/*.jar",
    "aot_dir": None,
    "config_file": "aot-config.json",
    "cache_file": "aot-cache.jsa",
    "toolchain": {"version": 25, "java_home": None, "search_paths": []},
    "package": {"command": None, "timeout_s": None},
    "record": {"jvm_args": [], "app_args": [], "timeout_s": None},
    "assemble": {"jvm_args": [], "timeout_s": None},
    "run": {"jvm_args": [], "app_args": [], "timeout_s": None, "capture_output": False},
    "benchmark": {
        "main_class": None,
        "classpath": ["build/classes/java/main", "build/resources/main"],
        "log_file": "gc-benchmark.log",
        "system_properties": {"spring.main.log-startup-info": "true"},
        "jvm_args": [],
        "app_args": [],
        "prepare": None,
        "timeout_s": None,
    },
    "staleness": "overwrite",
    "preflight": True,
    "env_mode": "inherit",
}

Command = Union[str, List[str], None]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ToolchainSettings(_Section):
    version: int = 25
    java_home: Optional[str] = None
    search_paths: List[str] = Field(default_factory=list)


class PackageSettings(_Section):
    command: Command = None
    timeout_s: Optional[float] = None


class RecordSettings(_Section):
    jvm_args: List[str] = Field(default_factory=list)
    app_args: List[str] = Field(default_factory=list)
    timeout_s: Optional[float] = None


class AssembleSettings(_Section):
    jvm_args: List[str] = Field(default_factory=list)
    timeout_s: Optional[float] = None


class RunSettings(_Section):
    jvm_args: List[str] = Field(default_factory=list)
    app_args: List[str] = Field(default_factory=list)
    timeout_s: Optional[float] = None
    capture_output: bool = False


class BenchmarkSettings(_Section):
    main_class: Optional[str] = None
    classpath: List[str] = Field(default_factory=list)
    log_file: str = "gc-benchmark.log"
    system_properties: Dict[str, Any] = Field(default_factory=dict)
    jvm_args: List[str] = Field(default_factory=list)
    app_args: List[str] = Field(default_factory=list)
    prepare: Command = None
    timeout_s: Optional[float] = None


class WorkflowConfig(_Section):
    """Resolved workflow settings; every path is absolute after `build_settings`."""

    project_dir: Path
    build_dir: Path
    archive: str
    aot_dir: Path
    config_file: str = "aot-config.json"
    cache_file: str = "aot-cache.jsa"
    toolchain: ToolchainSettings = Field(default_factory=ToolchainSettings)
    package: PackageSettings = Field(default_factory=PackageSettings)
    record: RecordSettings = Field(default_factory=RecordSettings)
    assemble: AssembleSettings = Field(default_factory=AssembleSettings)
    run: RunSettings = Field(default_factory=RunSettings)
    benchmark: BenchmarkSettings = Field(default_factory=BenchmarkSettings)
    staleness: Literal["overwrite", "reuse"] = "overwrite"
    preflight: bool = True
    env_mode: Literal["inherit", "clean"] = "inherit"

    def resolve(self, value: Union[str, Path]) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.project_dir / path
        return path.absolute()

    @property
    def config_path(self) -> Path:
        return self.aot_dir / self.config_file

    @property
    def cache_path(self) -> Path:
        return self.aot_dir / self.cache_file


def load_config(path: Path) -> Dict[str, Any]:
    data = _load_data(path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Workflow config must be a mapping")
    if "aotflow" in data and isinstance(data["aotflow"], dict):
        data = data["aotflow"]
    return data


def normalize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(DEFAULT_CONFIG))
    return _deep_merge(merged, config)


def validate_config(config: Dict[str, Any], schema_path: Path = SCHEMA_PATH) -> Diagnostics:
    diagnostics = Diagnostics()
    with schema_path.open("r", encoding="utf-8") as handle:
        schema = json.load(handle)
    validator = jsonschema.Draft202012Validator(schema)
    for error in sorted(validator.iter_errors(config), key=str):
        diagnostics.add(
            Diagnostic(
                code="E-CONFIG-SCHEMA",
                message=error.message,
                location="/".join(str(x) for x in error.path) or "config",
            )
        )
    return diagnostics


def build_settings(
    config: Dict[str, Any], base_dir: Path
) -> Tuple[Optional[WorkflowConfig], Diagnostics]:
    """Merge defaults, validate, and resolve relative paths against the project dir.

    `base_dir` is the directory relative `project_dir` values are taken from,
    normally the config file's parent.
    """
    diagnostics = Diagnostics()
    merged = normalize_config(config)
    diagnostics.extend(validate_config(merged))
    if diagnostics.has_errors():
        return None, diagnostics

    project_dir = Path(merged.get("project_dir") or base_dir).expanduser()
    if not project_dir.is_absolute():
        project_dir = base_dir / project_dir
    project_dir = project_dir.absolute()

    build_dir = _absolute(merged["build_dir"], project_dir)
    aot_dir = merged.get("aot_dir")
    merged["project_dir"] = project_dir
    merged["build_dir"] = build_dir
    merged["aot_dir"] = _absolute(aot_dir, project_dir) if aot_dir else build_dir / "aot"

    try:
        settings = WorkflowConfig.model_validate(merged)
    except ValidationError as exc:
        diagnostics.add(
            Diagnostic(
                code="E-CONFIG-MODEL",
                message=str(exc),
                location="config",
            )
        )
        return None, diagnostics
    return settings, diagnostics


def load_settings(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> WorkflowConfig:
    data: Dict[str, Any] = {}
    base_dir = Path.cwd()
    if path is not None:
        data = load_config(path)
        base_dir = path.resolve().parent
    if overrides:
        data = _deep_merge(data, overrides)
    settings, diagnostics = build_settings(data, base_dir)
    diagnostics.raise_for_errors()
    if settings is None:
        raise ValueError("configuration produced no settings")
    return settings


def _absolute(value: Union[str, Path], base: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return path.absolute()


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _load_data(path: Path) -> Any:
    if path.suffix in {".yaml", ".yml"}:
        import yaml  # type: ignore

        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    if path.suffix == ".toml":
        try:
            import tomllib
        except ImportError:  # pragma: no cover - python <3.11
            import tomli as tomllib  # type: ignore

        with path.open("rb") as handle:
            return tomllib.load(handle)
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)
