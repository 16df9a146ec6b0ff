"""
Core utilities shared by the evaluator and the alert worker.
"""

from .database import PostgresConnection
from .logger import level_from_name, setup_logging

__all__ = ["PostgresConnection", "level_from_name", "setup_logging"]
