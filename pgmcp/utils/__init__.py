"""Utility helpers."""

from .masking import mask_database_url

__all__ = ["mask_database_url"]
