"""
Logging setup for Agentdeck.

Library modules log through logging.getLogger(__name__); entry points call
one of the setup_* helpers to attach handlers to the "agentdeck" logger.
"""

import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from .settings import get_agentdeck_dir

ROOT_LOGGER = "agentdeck"
DEFAULT_LOG_DIR = get_agentdeck_dir()
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a logger in the agentdeck namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True,
    rich_console: bool = True,
) -> logging.Logger:
    """Configure the agentdeck logger.

    Existing handlers are removed first so repeated calls don't stack.

    Args:
        level: Logging level
        log_file: Optional file to append to (parent dirs are created)
        console: Attach a console handler
        rich_console: Use rich's handler for the console

    Returns:
        The configured "agentdeck" logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.setLevel(level)
    logger.propagate = False

    if console:
        if rich_console:
            handler: logging.Handler = RichHandler(
                show_path=False, rich_tracebacks=True, markup=False
            )
            handler.setFormatter(logging.Formatter("%(message)s"))
        else:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


def setup_server_logging(
    log_file: Optional[Path] = None, debug: bool = False
) -> logging.Logger:
    """Logging for the long-running server: console plus a log file."""
    if log_file is None:
        log_file = DEFAULT_LOG_DIR / "agentdeck.log"
    setup_logging(
        level=logging.DEBUG if debug else logging.INFO,
        log_file=log_file,
        console=True,
    )
    return get_logger("server")


def setup_cli_logging() -> logging.Logger:
    """Quiet logging for one-shot CLI commands."""
    setup_logging(level=logging.WARNING, console=True)
    return get_logger("cli")
