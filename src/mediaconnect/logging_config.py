"""
Logging configuration for MediaConnect.

Console output goes to stdout; a DEBUG-level log file is kept in the
configuration directory.
"""

import logging
import sys
from pathlib import Path

from mediaconnect.config import get_config_dir

LOG_FILENAME = "mediaconnect.log"


def get_log_file(config_dir: Path | None = None) -> Path:
    """Get platform-specific log file path."""
    config_dir = config_dir or get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir / LOG_FILENAME


def setup_logging(
    verbose: bool = False,
    component: str = "mediaconnect",
    wipe_on_startup: bool = True,
    config_dir: Path | None = None,
) -> logging.Logger:
    """
    Set up logging with file and console handlers.

    Args:
        verbose: Enable verbose debug logging
        component: Component name for log messages
        wipe_on_startup: Whether to wipe the log file on startup
        config_dir: Directory for the log file (platform default when None)

    Returns:
        Logger instance for the component
    """
    level = logging.DEBUG if verbose else logging.INFO

    verbose_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - "
        f"[%(filename)s:%(lineno)d] - %(message)s"
    )
    console_formatter = logging.Formatter(
        f"%(asctime)s - [{component}] %(name)s - %(levelname)s - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    has_file_handler = any(
        isinstance(h, logging.FileHandler) for h in root_logger.handlers
    )

    if not has_file_handler:
        root_logger.handlers.clear()

    has_console_handler = any(
        isinstance(h, logging.StreamHandler) and h.stream == sys.stdout
        for h in root_logger.handlers
    )
    if not has_console_handler:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    if not has_file_handler:
        try:
            log_file = get_log_file(config_dir)

            if wipe_on_startup and log_file.exists():
                log_file.unlink()

            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)  # Always log DEBUG to file
            file_handler.setFormatter(verbose_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Could not set up file logging: {e}", file=sys.stderr)

    if verbose:
        logging.getLogger("aiohttp").setLevel(logging.DEBUG)
        logging.getLogger("aiohttp.client").setLevel(logging.DEBUG)

        logger = logging.getLogger(component)
        logger.info("=" * 60)
        logger.info("VERBOSE MODE ENABLED - Detailed connection diagnostics active")
        logger.info("=" * 60)

    return logging.getLogger(component)
