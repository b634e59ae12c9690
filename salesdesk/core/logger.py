"""Logger configuration for SalesDesk.

Modules log through ``from loguru import logger`` and pass plan context as
keyword arguments (``logger.info("Executing action plan", plan_id=..., ...)``).
Those land in ``record["extra"]`` and are appended to every line as
``key=value`` pairs, plan and step identifiers first.
"""

import sys
from pathlib import Path

from loguru import logger

# Context keys shown first, in this order; any other extra keys follow sorted.
CONTEXT_KEYS = ("plan_id", "user_id", "step_index", "action_type", "table", "status")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def format_context(extra: dict) -> str:
    """Render log context as ``key=value`` pairs."""
    keys = [key for key in CONTEXT_KEYS if key in extra]
    keys += sorted(key for key in extra if key not in CONTEXT_KEYS)
    return " ".join(f"{key}={extra[key]}" for key in keys)


def _formatter(base: str):
    def _format(record) -> str:
        # Context goes through record["extra"] so braces in values are not re-parsed.
        record["extra"]["_context"] = format_context(
            {key: value for key, value in record["extra"].items() if key != "_context"}
        )
        context = " | {extra[_context]}" if record["extra"]["_context"] else ""
        return base + context + "\n{exception}"

    return _format


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru logger with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()

    logger.add(sys.stderr, format=_formatter(CONSOLE_FORMAT), level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # No variable dumps in the file: plan values and tokens must not reach disk.
        logger.add(
            log_path,
            format=_formatter(FILE_FORMAT),
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level}")
