"""Core utilities for Workbench"""

from workbench.core.config import settings
from workbench.core.logging import configure_logging

__all__ = ["settings", "configure_logging"]
