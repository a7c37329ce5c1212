from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger

LOG_FORMAT = " | ".join(
    (
        "<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>",
        "<lvl>{level:<8}</>",
        "<c>{name}:{function}:{line}</>",
        "<lvl>{message}</>",
    )
)


def configure_logging(level: str = "INFO", log_dir: str | Path | None = None) -> None:
    # Drop the default handler so nothing is printed twice.
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level)

    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        logger.add(
            f"{log_dir}/{{time:YYYY-MM-DD}}.log",
            format=LOG_FORMAT,
            level=level,
            rotation="1 day",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )
