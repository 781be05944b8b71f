"""Booking-site adapters, one per provider."""

from staywatch.providers.base import ProviderAdapter
from staywatch.providers.registry import ADAPTERS, get_adapter, list_adapters

__all__ = ["ProviderAdapter", "ADAPTERS", "get_adapter", "list_adapters"]
