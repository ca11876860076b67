import logging
import os

from rich.logging import RichHandler

SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class CenteredFormatter(logging.Formatter):
    longest_name_length = 18

    def __init__(self, fmt=None, datefmt=None, style="%", initial_width=18):
        super().__init__(fmt, datefmt, style)
        CenteredFormatter.longest_name_length = initial_width

    def format(self, record):
        CenteredFormatter.longest_name_length = max(
            CenteredFormatter.longest_name_length, len(record.name)
        )
        width = CenteredFormatter.longest_name_length
        # format a copy so other handlers still see the original name
        record = logging.makeLogRecord(record.__dict__)
        record.name = record.name.center(width)
        return super().format(record)


def _log_level() -> int:
    return logging.DEBUG if os.getenv("DEBUG") else logging.INFO


def _rich_handler(level: int) -> RichHandler:
    handler = RichHandler(
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        log_time_format="[%X]",
    )
    handler.setFormatter(CenteredFormatter("[%(name)s]  %(message)s"))
    handler.setLevel(level)
    return handler


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a logger configured with RichHandler for rich output.
    """
    if name is None:
        name = "storefront"
    logger = logging.getLogger(name)
    level = _log_level()
    logger.setLevel(level)

    if not logger.handlers:
        logger.addHandler(_rich_handler(level))
        logger.propagate = False
        logger.debug(f"Logger for '{name}' initialized with RichHandler.")

    return logger


def route_server_logs() -> None:
    """Send uvicorn's own loggers through the same rich handler."""
    level = _log_level()
    for name in SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers = [_rich_handler(level)]
        server_logger.setLevel(level)
        server_logger.propagate = False
