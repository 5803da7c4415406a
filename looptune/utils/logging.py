"""Logging utilities for looptune.

Provides a multiline-aligned formatter and logging configuration helper.
Generated kernel sources and result tables are logged as multiline
messages, so continuation lines are kept verbatim.
"""

import logging

__all__ = ["setup_logging", "MultilineFormatter"]

_NOISY_LOGGERS = ("matplotlib", "PIL")


class MultilineFormatter(logging.Formatter):
    """Formatter that pads the first line of a message and keeps the rest verbatim.

    Attributes:
        msg_width: Width the first line is padded to before metadata.
        show_metadata: Whether to append timestamp/level/name metadata.
    """

    def __init__(self, msg_width: int, show_metadata: bool) -> None:
        """Initialize the formatter.

        Args:
            msg_width: Width the first line is padded to before metadata.
            show_metadata: Whether to append timestamp/level/name metadata.
        """
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")
        self.msg_width = msg_width
        self.show_metadata = show_metadata

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record, appending any exception traceback.

        Args:
            record: The log record to format.

        Returns:
            Formatted log message string.
        """
        head, _, tail = record.getMessage().partition("\n")
        if self.show_metadata:
            metadata = f"{self.formatTime(record)} - {record.levelname} - {record.name}"
            head = f"{head:<{self.msg_width}}{metadata}"
        result = f"{head}\n{tail}" if tail else head
        if record.exc_info:
            result = f"{result}\n{self.formatException(record.exc_info)}"
        return result


def setup_logging(
    log_file: str | None, level: int = logging.DEBUG, msg_width: int = 300, show_metadata: bool = False
) -> logging.Handler:
    """Attach a multiline-aligned handler to the root logger.

    Args:
        log_file: Path to the log file, or None to log to stderr.
        level: Logging level (default: DEBUG).
        msg_width: Width the first line is padded to before metadata.
        show_metadata: Whether to append timestamp/level/name metadata to log lines.

    Returns:
        The installed handler, so callers can remove it again.
    """
    handler: logging.Handler = logging.StreamHandler() if log_file is None else logging.FileHandler(log_file, mode="w")
    handler.setFormatter(MultilineFormatter(msg_width=msg_width, show_metadata=show_metadata))
    logging.root.addHandler(handler)
    logging.root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
