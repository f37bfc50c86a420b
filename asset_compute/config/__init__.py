"""
Application configuration using Pydantic settings.

Configuration comes from environment variables, including the serverless
runtime's `__OW_*` variables. Supports mock modes for local development.
"""

from .settings import DEFAULT_TIMEOUT_MS, Settings, get_settings

__all__ = ["DEFAULT_TIMEOUT_MS", "Settings", "get_settings"]
