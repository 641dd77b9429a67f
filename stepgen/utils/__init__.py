"""
Utility functions and helpers.

Components:
    - logging: Logging configuration with rich

Example:
    ```python
    from stepgen.utils import setup_logging

    setup_logging(level="INFO", log_file="stepgen.log")
    ```
"""

from stepgen.utils.logging import setup_logging

__all__ = ["setup_logging"]
