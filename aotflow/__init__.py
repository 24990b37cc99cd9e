"""aotflow package."""

from .api import WorkflowResult, assemble, benchmark, plan, record, run
from .core.version import __version__

__all__ = ["WorkflowResult", "assemble", "benchmark", "plan", "record", "run", "__version__"]
