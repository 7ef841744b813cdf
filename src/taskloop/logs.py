# logs.py
# Logging setup. Modules log through logging.getLogger(__name__); this wires
# the root handler once, rendered by rich.

import logging

from rich.logging import RichHandler

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger. Safe to call more than once."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
