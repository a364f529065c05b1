"""
Logging handlers for the daemon.
"""

from .loki import LokiHandler

__all__ = ["LokiHandler"]
