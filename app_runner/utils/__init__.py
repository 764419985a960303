"""
Utility modules for the app runner.

This package contains:
    - logger: Structured logging with structlog
    - security: Credential masking for device cloud access keys
"""

from app_runner.utils.logger import LogContext, get_logger, setup_logging
from app_runner.utils.security import SecureString, mask_sensitive, sanitize_for_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "SecureString",
    "mask_sensitive",
    "sanitize_for_logging",
]
