"""
Utilities package initialization.
"""
from .logger import (
    configure_logging_from_env,
    get_logger,
    log_business_event,
    log_performance,
    setup_logging,
)

__all__ = [
    "configure_logging_from_env",
    "get_logger",
    "log_business_event",
    "log_performance",
    "setup_logging",
]
