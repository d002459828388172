"""
Core utilities and configuration for Lakitu AI.

This package provides core functionality including logging configuration,
monitoring hooks and identifier generation.
"""

from lakitu_ai.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
