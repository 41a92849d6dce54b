# logging_utils.py
import logging
import sys
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_FILENAME = "worldsync-client.log"
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = 20


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except (ValueError, TypeError):
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(
    log_dir: Path | str | None,
    console_level: str = "INFO",
    console_json: bool = False,
    rotation: str | None = None,
    retention: str | int | None = None,
) -> Path | None:
    """
    Initialize console logging and an optional rotated JSON file sink.

    Library modules log through ``logging.getLogger(__name__)``; this routes
    them into loguru.

    Args:
        log_dir: Where `worldsync-client.log` goes; None keeps logs on stderr only.
        console_level: Minimum level printed to stderr.
        console_json: Serialize stderr records as JSON lines instead of colored text.
        rotation: loguru rotation rule, size based by default.
        retention: loguru retention rule, the newest 20 files by default.

    Returns:
        Path of the log file, or None when file logging is disabled.
    """
    logger.remove()

    console_kwargs: dict[str, Any] = {
        "level": console_level.upper(),
        "serialize": console_json,
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if not console_json:
        console_kwargs["format"] = (
            "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"
        )

    logger.add(sys.stderr, **console_kwargs)

    log_file: Path | None = None
    if log_dir is not None:
        log_dir_path = Path(log_dir)
        try:
            log_dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"Failed to create log directory {log_dir_path}: {exc}")
        else:
            log_file = log_dir_path / DEFAULT_LOG_FILENAME
            logger.add(
                log_file,
                level="DEBUG",
                serialize=True,
                rotation=rotation if rotation is not None else DEFAULT_LOG_ROTATION,
                retention=retention if retention is not None else DEFAULT_LOG_RETENTION,
                enqueue=True,
                backtrace=False,
                diagnose=False,
            )
            logger.info(f"File logging enabled at {log_file}")

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.NOTSET, force=True)
    logging.captureWarnings(True)
    return log_file
