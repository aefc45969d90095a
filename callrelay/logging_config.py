"""
Centralized logging configuration for the call relay.

Separates logs into multiple files by direction/component:

    logs/
    ├── server.log          # HTTP API requests, WebSocket accept/close
    ├── relay.log           # Protocol handler (lifecycle messages)
    ├── session.log         # Session store (create, delete)
    ├── sweeper.log         # Keep-alive pushes, evictions
    ├── client.log          # Client controller, relay socket
    ├── notifications.log   # Transcript emails
    ├── storage.log         # Call log / lead repository
    ├── config.log          # Settings loading
    └── errors.log          # ALL errors from ALL components (ERROR+)

Usage:
    from callrelay.logging_config import setup_logging
    setup_logging("server")   # activates: server, relay, session, sweeper,
                              #            notifications, storage, config
    setup_logging("client")   # activates: client, config
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

LOGS_DIR = Path(__file__).parent.parent / "logs"

# Each category logs to ``<category>.log``; a process only opens the
# files for the categories it actually emits.
PROCESS_CATEGORIES = {
    "server": ("server", "relay", "session", "sweeper", "notifications", "storage", "config"),
    "client": ("client", "config"),
}

_FORMAT = logging.Formatter(
    "%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_initialized = False


def _file_handler(path: Path, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_FORMAT)
    return handler


def setup_logging(component: str = "server", level: str = "INFO", logs_dir: Optional[Path] = None) -> None:
    """Route structlog through stdlib into per-category files.

    Console gets everything at ``level``; ``errors.log`` collects ERROR+
    from every category via propagation. Only the first call configures.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    target_dir = Path(logs_dir) if logs_dir else LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.setFormatter(_FORMAT)
    root.addHandler(console)
    root.addHandler(_file_handler(target_dir / "errors.log", logging.ERROR))

    categories = PROCESS_CATEGORIES.get(component, (component,))
    for category in categories:
        cat_logger = logging.getLogger(category)
        cat_logger.setLevel(log_level)
        cat_logger.addHandler(_file_handler(target_dir / f"{category}.log", log_level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.get_logger(component).info(
        "logging_initialized",
        component=component,
        categories=list(categories),
        level=level,
    )
