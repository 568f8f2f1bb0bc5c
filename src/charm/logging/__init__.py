"""Run logging for charm."""

from charm.logging.run_logger import RunLogger

__all__ = ["RunLogger"]
