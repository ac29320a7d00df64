import logging
import os
from typing import List, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """Console logging, plus a log file when one is given.

    Per-package outcomes (downloaded / failed) go through here so the operator
    keeps a record of what the offline repository is missing.
    """
    root = logging.getLogger()
    root.setLevel(level)

    if getattr(root, "_offline_repo_configured", False):
        return

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for h in handlers:
        h.setFormatter(fmt)
        root.addHandler(h)

    # urllib3 logs every connection at DEBUG; keep it out of --verbose runs.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    setattr(root, "_offline_repo_configured", True)
