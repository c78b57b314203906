"""
Shared helpers for the Package Tracker.

Components here are not tied to scanning or to the package lifecycle and can
be reused by reporting tools that read the same record store.
"""

from .metadata_utils import (
    get_current_timestamp,
    format_scan_date,
    format_scan_time,
)

__all__ = [
    'get_current_timestamp',
    'format_scan_date',
    'format_scan_time',
]

__version__ = '1.0.0'
