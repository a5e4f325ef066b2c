"""
Logging utilities for BackpackFlow.

Provides structured logging with node-specific context.
"""

import logging
import sys
from datetime import datetime
from typing import Optional
from functools import lru_cache

from ..core.config import settings


class NodeLogFormatter(logging.Formatter):
    """Custom formatter for node-aware logging."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m"
    }

    COMPONENT_COLORS = {
        "Flow": "\033[94m",           # Light Blue
        "Chat": "\033[96m",           # Light Cyan
        "StreamingChat": "\033[96m",  # Light Cyan
        "Decide": "\033[93m",         # Light Yellow
        "Search": "\033[95m",         # Light Magenta
        "Answer": "\033[92m",         # Light Green
        "MCP": "\033[91m",            # Light Red
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        component = getattr(record, "node", "System")

        if self.use_colors:
            level_color = self.COLORS.get(record.levelname, "")
            component_color = self.COMPONENT_COLORS.get(component, "\033[37m")
            reset = self.COLORS["RESET"]

            return (
                f"{timestamp} | "
                f"{level_color}{record.levelname:8s}{reset} | "
                f"{component_color}[{component:12s}]{reset} | "
                f"{record.getMessage()}"
            )
        else:
            return (
                f"{timestamp} | {record.levelname:8s} | "
                f"[{component:12s}] | {record.getMessage()}"
            )


class NodeLoggerAdapter(logging.LoggerAdapter):
    """Adapter that tags its records with one node name."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**(kwargs.get("extra") or {}), **self.extra}
        return msg, kwargs


class NodeLogger(logging.Logger):
    """Logger whose untagged records come from "System"."""

    def with_node(self, node_name: str) -> NodeLoggerAdapter:
        """Adapter tagging its records with ``node_name``; the logger itself is unchanged."""
        return NodeLoggerAdapter(self, {"node": node_name})

    def _log(self, level, msg, args, exc_info=None, extra=None, **kwargs):
        extra = dict(extra or {})
        extra.setdefault("node", "System")
        super()._log(level, msg, args, exc_info, extra, **kwargs)


def setup_logger(
    name: str = "backpackflow",
    level: Optional[str] = None,
    use_colors: bool = True
) -> NodeLogger:
    """
    Set up and configure the application logger.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_colors: Whether to use colored output

    Returns:
        Configured NodeLogger instance
    """
    logging.setLoggerClass(NodeLogger)

    logger = logging.getLogger(name)

    logger.handlers.clear()

    log_level = level or settings.log_level
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # stderr keeps log lines out of the chat transcript on stdout
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(NodeLogFormatter(use_colors=use_colors))
    logger.addHandler(console_handler)

    logger.propagate = False

    return logger


@lru_cache()
def get_logger(name: str = "backpackflow") -> NodeLogger:
    """
    Get or create a cached logger instance.

    Args:
        name: Logger name

    Returns:
        NodeLogger instance
    """
    return setup_logger(name)
