"""
Centralized logging configuration for the file analyst agent.
Initializes loguru and intercepts standard library logging.

Code that works on behalf of one run binds its correlation id with
``logger.contextualize(request_id=...)`` or ``logger.bind(request_id=...)``;
the format below prints it ahead of the message.
"""

import logging
import sys
from loguru import logger

BASE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
)


class InterceptHandler(logging.Handler):
    """
    Default handler from documents for intercepting standard library logging messages.
    See: https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def format_record(record) -> str:
    """Loguru format with the run's request id, when one is bound."""
    prefix = "[{extra[request_id]}] " if record["extra"].get("request_id") else ""
    return BASE_FORMAT + "<level>" + prefix + "{message}</level>\n{exception}"


def setup_logging(level: str = "INFO"):
    """
    Configures loguru to handle all logs and output them to stdout.

    Args:
        level: Minimum level for the stdout sink.
    """
    logger.remove()

    logger.add(
        sys.stdout,
        format=format_record,
        level=level,
        colorize=True,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # HTTP and LLM client libraries log through the stdlib
    for name in ["httpx", "httpcore", "openai", "langchain", "langgraph"]:
        _logger = logging.getLogger(name)
        _logger.handlers = [InterceptHandler()]
        _logger.propagate = False

    logger.info(f"Logging initialized with Loguru (level={level}).")
