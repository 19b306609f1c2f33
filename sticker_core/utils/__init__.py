"""Utility helpers for sticker_core."""

from .reasons import get_reason
from .timestamps import utc_now_iso

__all__ = [
    "get_reason",
    "utc_now_iso",
]
