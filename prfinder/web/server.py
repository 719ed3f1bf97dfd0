"""
Web server bootstrap and logging setup for prfinder.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()
load_dotenv(Path.cwd() / ".env")

import uvicorn
from loguru import logger

from ..config import PrfinderConfig, ensure_data_dir
from .api import create_app


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward Loguru sinks."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_file: Path | None = None, console_level: str = "INFO") -> None:
    """Configure loguru sinks and route stdlib logging (prfinder, uvicorn) into them."""
    logger.remove()

    logger.add(sys.stderr, level=console_level, colorize=True, format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(log_file), level="DEBUG", rotation="10 MB", retention="1 week", format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi"):
        logging_logger = logging.getLogger(logger_name)
        logging_logger.handlers = [InterceptHandler()]
        logging_logger.propagate = False


def create_server_app() -> object:
    """uvicorn factory. A failed migration aborts startup."""
    config = PrfinderConfig.load()
    ensure_data_dir(config.data_dir)
    setup_logging(config.log_path)
    logger.info("Starting prfinder API server (data dir: {})", config.data_dir)
    return create_app(config)


def run_server(host: str | None = None, port: int | None = None) -> None:
    config = PrfinderConfig.load()
    uvicorn.run(
        "prfinder.web.server:create_server_app",
        host=host or config.server.host,
        port=port or config.server.port,
        log_level="info",
        factory=True,
    )
