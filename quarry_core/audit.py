import json
import logging
from typing import Any, Dict, List, Optional

from .config import RuntimeConfig


def build_logger(config: RuntimeConfig) -> logging.Logger:
    logger = logging.getLogger("quarry.audit")
    if not config.audit_enabled or logger.handlers:
        return logger
    config.ensure_paths()
    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(config.audit_log_path, encoding="utf-8")
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger


def log_turn(
    logger: logging.Logger,
    signals: List[Dict[str, Any]],
    script: str,
    actions: List[Dict[str, Any]],
    error: Optional[str] = None,
) -> None:
    payload = {
        "signals": signals,
        "script": script,
        "actions": actions,
        "error": error,
    }
    logger.info(json.dumps(payload, default=str))
