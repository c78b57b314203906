"""
Metadata Utilities

Shared timestamp helpers used by the record store, the lifecycle and the
session list. All persisted timestamps are ISO 8601 strings with timezone.
"""

from datetime import datetime


def get_current_timestamp() -> str:
    """Get current timestamp in ISO 8601 format with timezone

    Returns:
        str: Timestamp like "2025-11-20T14:15:00+02:00"
    """
    return datetime.now().astimezone().isoformat()


def format_scan_date(moment: datetime) -> str:
    """Day/month/year date shown next to a scanned code, e.g. "05/11/2025"."""
    return moment.strftime('%d/%m/%Y')


def format_scan_time(moment: datetime) -> str:
    """24-hour time shown next to a scanned code, e.g. "14:30:45"."""
    return moment.strftime('%H:%M:%S')
