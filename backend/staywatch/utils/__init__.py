"""Utility modules for StayWatch."""

from staywatch.utils.clock import utcnow
from staywatch.utils.version import get_version

__all__ = ["utcnow", "get_version"]
