"""Logging setup for the caseguard command line.

Library code only creates module loggers; handlers are attached here, once,
by ``caseguard.cli.main``. Embedding applications that configure logging
themselves are left untouched.
"""

import logging
import os
import sys

LOG_FILENAME = "verification.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO, log_dir: str = "logs") -> None:
    """Send verification logs to stderr and to ``<log_dir>/verification.log``.

    Does nothing if the root logger already has handlers.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)

    # stdout carries --json output
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    # Read-only case checkouts still get console logs
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, LOG_FILENAME), mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError:
        pass

    root.setLevel(level)
