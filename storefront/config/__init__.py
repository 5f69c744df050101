"""Configuration package for the storefront API."""
from .settings import OtelMode, Settings, get_settings

__all__ = ["OtelMode", "Settings", "get_settings"]
