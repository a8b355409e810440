import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "")
LOG_FILE_NAME = "fulfillment.log"


def setup_logging(log_dir: Optional[str] = None, level: Optional[str] = None) -> Optional[Path]:
    """Console logging always; rotating file logging under LOG_DIR when set"""
    level = getattr(logging, (level or LOG_LEVEL), logging.INFO)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "_fulfillment", False) for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        console._fulfillment = True
        root.addHandler(console)

    log_dir = log_dir if log_dir is not None else LOG_DIR
    if not log_dir:
        return None

    target = Path(log_dir).expanduser()
    target.mkdir(parents=True, exist_ok=True)
    log_path = target / LOG_FILE_NAME

    # avoid duplicate handlers on reload
    if any(getattr(h, "baseFilename", "").endswith(LOG_FILE_NAME) for h in root.handlers):
        return log_path

    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(level)
    root.addHandler(handler)

    # also wire uvicorn loggers
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        if handler not in lg.handlers:
            lg.addHandler(handler)

    return log_path
