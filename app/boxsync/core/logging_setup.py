from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"

LogFunc = Callable[[str, str, str, "str | None"], None]


def setup_logging(level: str, logfile: str | None = None):
    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)

    # Clear existing handlers so repeated CLI invocations in one process don't duplicate lines.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(LOG_FORMAT)

    if logfile:
        Path(logfile).parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile, encoding="utf-8")
        fh.setLevel(log_level)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(fmt)
    root.addHandler(ch)

    # urllib3 logs every connection at DEBUG; keep it at WARNING unless asked.
    if log_level > logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)

    root.info("logging initialized")


def make_log_func(prefix: str = "boxsync") -> LogFunc:
    def log_func(level: str, module: str, message: str, detail: str | None = None):
        name = "WARNING" if level.upper() == "WARN" else level.upper()
        logging.getLogger(f"{prefix}.{module}").log(
            getattr(logging, name, logging.INFO),
            f"{message} {detail or ''}".strip(),
        )

    return log_func
