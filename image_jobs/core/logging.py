from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""

    root = logging.getLogger()
    root.setLevel(level.upper())
    if not any(getattr(handler, "_image_jobs", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._image_jobs = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    # RQ installs its own handlers; keep its chatter at our level.
    logging.getLogger("rq.worker").setLevel(level.upper())
