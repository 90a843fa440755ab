"""Logging setup and upstream exchange recording."""

from .recorder import UpstreamExchangeRecorder
from .setup import logger, setup_logging

__all__ = ["UpstreamExchangeRecorder", "logger", "setup_logging"]
