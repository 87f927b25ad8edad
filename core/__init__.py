"""
Core utilities and configuration for the Magento export pipeline.

This package provides foundational components used by both stages:

Modules:
    config: Settings loaded from the environment and ``.env``
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import Settings
    from core.exceptions import AuthenticationError, NetworkError
    from core.logging import setup_logging

Example:
    settings = Settings()
    setup_logging(settings)
"""

__all__ = [
    "Settings",
    "setup_logging",
    # Exceptions
    "ExportException",
    "FetchError",
    "APIRequestError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "DataShapeError",
    "StoreError",
    "UnitNotFoundError",
    "CacheNotFoundError",
    "CheckpointError",
    "OutputError",
    "NoUnitsFoundError",
    "ConfigurationError",
    "RetryableError",
    "NonRetryableError",
]
