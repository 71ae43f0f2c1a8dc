from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Optional, Union

APP_LOGGERS = ("core", "storage", "services", "controller", "api", "app")


class _ConsoleNoiseFilter(logging.Filter):
    """Our loggers at any level; third-party (urllib3, werkzeug) only from WARNING."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.split(".", 1)[0] in APP_LOGGERS:
            return True
        return record.levelno >= logging.WARNING


def setup_logging(
    *,
    console_level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    file_level: int = logging.DEBUG,
) -> None:
    """Install console (and optional file) handlers. Call once, at startup."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path), encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
