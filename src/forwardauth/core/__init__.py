"""Core."""

from .config import (
    ForwardAuthConfig,
    clear_config,
    get_config,
    load_config_from_file,
)
from .logging import setup_logging

__all__ = [
    "ForwardAuthConfig",
    "clear_config",
    "get_config",
    "load_config_from_file",
    "setup_logging",
]
