"""
Logging package for the daemon.
Configures the console handler and the optional Grafana Loki handler.
"""

from .setup import setup_logging, MainFormatter

__all__ = ["setup_logging", "MainFormatter"]
