import logging
import re
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

from typeflow.utils.run_context import get_execution_id

console = Console(
    theme=Theme(
        {
            "info": "dim cyan",
            "warning": "magenta",
            "error": "bold red",
            "node": "bold blue",
            "engine": "bold green",
            "sandbox": "bold yellow",
        }
    )
)

HIGHLIGHTED_WORDS = ["workflow", "node", "engine", "sandbox"]

UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.I)
LONG_FLOAT_PATTERN = re.compile(r"\d+\.\d{4,}")
MODULE_PREFIXES = (("typeflow.workflows.engine.", "engine."), ("typeflow.", ""))


class CompactFilter(logging.Filter):
    """
    Keeps engine logs dense: module paths lose their package prefix, UUIDs
    become `abcd..`, long floats get 3 decimals, and records logged inside
    a run are prefixed with the first 8 characters of its execution id.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not isinstance(record.msg, str):
            return True

        msg = record.msg
        for prefix, short in MODULE_PREFIXES:
            msg = msg.replace(prefix, short)
        msg = UUID_PATTERN.sub(lambda m: f"{m.group(0)[:4]}..", msg)
        msg = LONG_FLOAT_PATTERN.sub(lambda m: f"{float(m.group(0)):.3f}", msg)

        # after shortening, the execution id itself stays readable
        execution_id = get_execution_id()
        if execution_id:
            msg = f"[{execution_id[:8]}] {msg}"

        record.msg = msg
        return True


def _rich_handler(**options) -> RichHandler:
    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=False,
        show_path=False,
        show_time=True,
        **options,
    )
    handler.addFilter(CompactFilter())
    return handler


def _has_rich_handler(logger: logging.Logger) -> bool:
    return any(isinstance(h, RichHandler) for h in logger.handlers)


def setup_global_logger(log_level: str = "INFO") -> logging.Logger:
    """Install the Rich handler on the `typeflow` logger (once) and set its level."""
    logger = logging.getLogger("typeflow")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if not _has_rich_handler(logger):
        handler = _rich_handler(omit_repeated_times=True, keywords=HIGHLIGHTED_WORDS)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
    return logger


def setup_celery_logger(logger: Optional[logging.Logger] = None, loglevel=None, **kwargs) -> logging.Logger:
    """Celery `after_setup_logger` hook."""
    logger = logger or logging.getLogger("celery")
    if not _has_rich_handler(logger):
        logger.addHandler(_rich_handler())
    return logger


logger = logging.getLogger("typeflow")
