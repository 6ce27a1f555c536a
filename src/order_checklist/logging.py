import logging
import os
import sys
from typing import Optional


ROOT_LOGGER = "order_checklist"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level_from_env(value: Optional[str]) -> int:
    name = (value or "INFO").strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if getattr(root, "_order_checklist_configured", False):
        return root

    level = _level_from_env(os.environ.get("LOG_LEVEL"))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    root.setLevel(level)

    handlers: list = [logging.StreamHandler()]
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            print(f"LOG_FILE {log_file!r} could not be opened ({e}); logging to the console only", file=sys.stderr)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.propagate = False
    setattr(root, "_order_checklist_configured", True)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``order_checklist.<name>``, configuring the package logger once.

    - LOG_LEVEL (default INFO) and LOG_FILE (optional, appended) are read on
      first use.
    - Output stays under the ``order_checklist`` namespace, so uvicorn's and
      the SDKs' loggers are left alone.
    """
    _configure_root()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
