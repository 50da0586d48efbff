"""Logging setup shared by the CLI, the worker and the pipelines.

Entry points call `setup_logging()` once; modules only do
`logger = logging.getLogger(__name__)`.
"""

from .config import LoggingConfig, setup_logging

__all__ = ["LoggingConfig", "setup_logging"]
