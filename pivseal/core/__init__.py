"""
Core module - Envelope protocol, device selection, configuration and logging.
"""

from pivseal.core.config import PivSealConfig
from pivseal.core.logging import SecureLogFilter, get_secure_logger

__all__ = ["PivSealConfig", "get_secure_logger", "SecureLogFilter"]
