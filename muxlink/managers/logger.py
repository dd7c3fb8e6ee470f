"""Centralized logging setup for MuxLink.

All modules should obtain loggers via::

    from muxlink.managers.logger import get_logger
    log = get_logger(__name__)

Log file: ~/.muxlink/logs/app.log
  - Rotates at 5 MiB, keeps 3 backups
  - Level: DEBUG
Console:
  - Level: INFO
"""

from __future__ import annotations

import logging
import logging.handlers

_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return a named logger under the 'muxlink' hierarchy."""
    _configure_once()
    if not name.startswith("muxlink"):
        name = f"muxlink.{name}"
    return logging.getLogger(name)


def set_console_level(level: int) -> None:
    """Adjust the console handler, e.g. for ``--verbose`` on the CLI."""
    _configure_once()
    for handler in logging.getLogger("muxlink").handlers:
        if not isinstance(handler, logging.handlers.RotatingFileHandler):
            handler.setLevel(level)


def _configure_once() -> None:
    global _configured
    if _configured:
        return
    _configured = True

    # Late import to avoid circular imports at module load time
    from muxlink.constants import DATA_DIR  # noqa: PLC0415

    root = logging.getLogger("muxlink")
    if root.handlers:
        return

    root.setLevel(logging.DEBUG)

    _fmt = logging.Formatter(
        "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # ── Rotating file handler ─────────────────────────────────────────
    try:
        logs = DATA_DIR / "logs"
        logs.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            logs / "app.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
    except OSError:
        pass  # read-only home; console only
    else:
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(_fmt)
        root.addHandler(fh)

    # ── Console handler ───────────────────────────────────────────────
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter("%(levelname)-8s  %(name)s  %(message)s"))
    root.addHandler(ch)
