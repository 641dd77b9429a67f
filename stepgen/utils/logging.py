"""
Logging configuration.

Library modules only create ``logging.getLogger(__name__)`` loggers; the
application decides where records go. ``setup_logging`` is what the CLI
uses: records are rendered by rich on stderr, and optionally appended to a
file in plain text.

Example:
    ```python
    from stepgen.utils import setup_logging

    setup_logging(level="DEBUG", log_file="stepgen.log")
    ```
"""

import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: Union[str, int] = "WARNING", log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Configure the ``stepgen`` logger.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Level name or number
        log_file: Optional file that receives every record at ``level``

    Returns:
        logging.Logger: The configured ``stepgen`` logger

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric

    logger = logging.getLogger("stepgen")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    rich_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(rich_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(file_handler)

    logger.setLevel(level)
    logger.propagate = False
    return logger
