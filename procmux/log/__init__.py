"""
Logging module for procmux.
This module provides the logging setup and the optional Loki shipping handler.
"""

from .setup import setup_logging, MainFormatter, SubprocessLogFilter
from .handler import LokiHandler

__all__ = ["setup_logging", "MainFormatter", "SubprocessLogFilter", "LokiHandler"]
