"""
mageworker - supervises Magento 2 queue consumers.

Discovers the consumers configured in a Magento installation, runs each of
them as a child process, restarts them when they exit and shuts them down
gracefully on SIGINT/SIGTERM.
"""

__version__ = "0.1.0"
