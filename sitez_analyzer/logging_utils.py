from __future__ import annotations

import logging
import os

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_configured = False


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"sitez.{name}")


def setup_logging(level: str | None = None) -> None:
    """Attach one stream handler to the ``sitez`` logger tree (idempotent)."""
    global _configured
    lvl_name = (level or os.getenv("SITEZ_LOG_LEVEL", "INFO")).upper()
    lvl = getattr(logging, lvl_name, logging.INFO)
    root = logging.getLogger("sitez")
    root.setLevel(lvl)
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True
