"""Toolkit displays for HFT-NodeKit."""

from .status_display import StatusDisplay

__all__ = [
    'StatusDisplay',
]
