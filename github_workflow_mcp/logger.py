"""
Logging configuration for the workflow server.
Console output is compact and colourised on a TTY; workflow steps are easy
to follow because each module gets its own tag.
"""
import logging
import sys
from datetime import datetime
from typing import Optional


class Colors:
    """ANSI color codes for terminal formatting."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    WHITE = "\033[37m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_YELLOW = "\033[93m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_CYAN = "\033[96m"


# Short tags per component, keyed by the last segment of the logger name
COMPONENT_TAGS = {
    "workflows": "flow",
    "git_workspace": "git",
    "github_client": "gh",
    "dispatcher": "rpc",
    "api": "http",
    "rate_limiter": "gate",
    "server": "mcp",
    "default": "--",
}


class WorkflowFormatter(logging.Formatter):
    """Formatter producing `time | level | tag module | message` lines."""

    LEVEL_FORMATS = {
        logging.DEBUG: (Colors.DIM, "DEBUG"),
        logging.INFO: (Colors.BRIGHT_CYAN, "INFO "),
        logging.WARNING: (Colors.BRIGHT_YELLOW, "WARN "),
        logging.ERROR: (Colors.BRIGHT_RED, "ERROR"),
        logging.CRITICAL: (Colors.BOLD + Colors.BRIGHT_RED, "CRIT "),
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        color, level_text = self.LEVEL_FORMATS.get(
            record.levelno,
            (Colors.WHITE, record.levelname[:5])
        )
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        module = record.name.split(".")[-1] if record.name else "root"
        tag = COMPONENT_TAGS.get(module, COMPONENT_TAGS["default"])

        if self.use_colors:
            level_str = f"{color}{level_text}{Colors.RESET}"
            time_str = f"{Colors.DIM}{timestamp}{Colors.RESET}"
            module_str = f"{Colors.BRIGHT_BLUE}{module:16}{Colors.RESET}"
            formatted = f"{time_str} | {level_str} | {tag:4} {module_str} | {record.getMessage()}"
        else:
            formatted = f"{timestamp} | {level_text} | {tag:4} {module:16} | {record.getMessage()}"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    use_colors: bool = True,
    stream=None,
) -> None:
    """
    Configure root logging for the server.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        use_colors: Whether to use ANSI colors in console output
        stream: Console stream; stdio mode passes stderr so stdout stays
            reserved for protocol frames
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(WorkflowFormatter(use_colors=use_colors))
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(WorkflowFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
