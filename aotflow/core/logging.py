from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(message)s"


def get_logger(name: str, logs_dir: Path) -> logging.Logger:
    logger = logging.getLogger(f"aotflow.{name}")
    logger.setLevel(logging.DEBUG)
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = (logs_dir / "aotflow.log").resolve()
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            if Path(handler.baseFilename) == log_path:
                return logger
            # A new run gets a new file
            logger.removeHandler(handler)
            handler.close()
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    return logger


def release_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def configure_console(verbose: bool = False) -> None:
    root = logging.getLogger("aotflow")
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        if getattr(handler, "_aotflow_console", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handler._aotflow_console = True  # type: ignore[attr-defined]
    root.addHandler(handler)


class EventLogger:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, event: dict) -> None:
        payload = dict(event)
        payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        line = json.dumps(payload, sort_keys=True, ensure_ascii=True, default=str)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


def get_event_logger(logs_dir: Path) -> EventLogger:
    return EventLogger(logs_dir / "events.jsonl")


def log_event(event_logger: Optional[EventLogger], event: str, **data) -> None:
    if event_logger is None:
        return
    payload = {"event": event}
    payload.update(data)
    event_logger.record(payload)
