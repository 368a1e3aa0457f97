"""Top-level package for mcp-deptrim.

Exports the centralized logging configuration.
"""

from .logging_config import configure_logging  # re-export for convenience

__all__ = ["configure_logging"]
