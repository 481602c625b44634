"""Logging helpers for the convergence agent."""

from __future__ import annotations

import logging
from pathlib import Path


class RunTranscriptHandler(logging.Handler):
    """Collects formatted INFO+ lines emitted during one run for the report."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self.lines: list[str] = []
        self.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.lines.append(self.format(record))
        except Exception:
            self.handleError(record)


def configure_logging(level: int = logging.INFO, log_paths: list[str] | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = []
    handlers.append(logging.StreamHandler())

    for log_path in log_paths or []:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
