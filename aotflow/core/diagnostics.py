from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional


@dataclass
class Diagnostic:
    code: str
    message: str
    severity: str = "ERROR"
    location: Optional[str] = None
    hints: List[str] = field(default_factory=list)
    data: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "location": self.location,
            "hints": self.hints,
            "data": self.data,
        }


class AotFlowError(Exception):
    def __init__(self, diagnostic: Diagnostic):
        super().__init__(diagnostic.message)
        self.diagnostic = diagnostic
        # Set by the workflow runner once a run directory exists
        self.run_dir: Optional[Path] = None

    @property
    def code(self) -> str:
        return self.diagnostic.code


class ToolchainError(AotFlowError):
    pass


class ArchiveError(AotFlowError):
    pass


class PreflightError(AotFlowError):
    pass


class StageFailedError(AotFlowError):
    pass


def fail(
    code: str,
    message: str,
    *,
    location: Optional[str] = None,
    hints: Optional[List[str]] = None,
    data: Optional[dict] = None,
    error_cls: type = AotFlowError,
) -> AotFlowError:
    return error_cls(
        Diagnostic(code=code, message=message, location=location, hints=hints or [], data=data)
    )


class Diagnostics:
    def __init__(self) -> None:
        self.items: List[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        self.items.append(diagnostic)

    def extend(self, diagnostics: Iterable[Diagnostic] | "Diagnostics") -> None:
        if isinstance(diagnostics, Diagnostics):
            self.items.extend(diagnostics.items)
        else:
            self.items.extend(diagnostics)

    def has_errors(self) -> bool:
        return any(d.severity == "ERROR" for d in self.items)

    def raise_for_errors(self) -> None:
        if self.has_errors():
            # First error wins; the full list stays available on the instance
            first = next(d for d in self.items if d.severity == "ERROR")
            raise AotFlowError(first)

    def to_list(self) -> List[dict]:
        return [d.to_dict() for d in self.items]
