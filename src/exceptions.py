"""
Custom exceptions for the Package Tracker.

Exceptions here mark conditions that must never be silently ignored:
lifecycle invariant violations, record store failures and programming errors
in the scan pipeline. Ordinary scan results (duplicate scans, unassigned codes,
cancelled confirmations) are not exceptions; the pipeline reports them as
status values on a ScanOutcome.

Exception hierarchy:
    PackageTrackerError (base)
    ├── ValidationError (bad operator input)
    ├── StoreError (record store failures)
    │   ├── RecordNotFoundError (no row for a code)
    │   └── DuplicateRecordError (insert of an existing code)
    ├── IllegalTransitionError (lifecycle precondition violated)
    ├── ConfirmationPendingError (second confirmation while one is open)
    ├── ScannerStateError (channel operation in the wrong arbiter state)
    └── ExportStaleError (scan log submitted before a fresh export)
"""

from typing import Optional


class PackageTrackerError(Exception):
    """
    Base exception for all Package Tracker errors.

    Allows catching every application error with a single except clause
    while keeping application errors apart from built-in errors.
    """
    pass


class ValidationError(PackageTrackerError):
    """
    Raised when operator input fails validation.

    Examples:
    - Starting a scanner without selecting an operator (encargado)
    - Reporting a package without a report reason
    - Committing an empty list
    """
    pass


class StoreError(PackageTrackerError):
    """
    Raised when the record store cannot complete an operation.

    Wraps the underlying driver error (sqlite3.Error) so callers do not depend
    on the storage backend. A StoreError during lookup becomes a LOOKUP_FAILED
    outcome; no state transition is attempted after it.
    """
    pass


class RecordNotFoundError(StoreError):
    """
    Raised when no record exists for a code.

    This is the distinguishable "no row" error of the record store. A package
    without a row is logically UNASSIGNED.

    Attributes:
        code (str): The canonical code that was looked up
    """

    def __init__(self, code: str):
        super().__init__(f"No record for code {code}")
        self.code = code


class DuplicateRecordError(StoreError):
    """Raised when inserting a record whose code already exists."""

    def __init__(self, message: str, codes: Optional[list] = None):
        super().__init__(message)
        self.codes = codes or []


class IllegalTransitionError(PackageTrackerError):
    """
    Raised when a lifecycle transition is attempted against a violated
    precondition.

    The record is never mutated when this is raised. The exception names the
    offending code, its current status and the attempted target status so the
    operator can decide the next action.

    Attributes:
        code (str): Canonical package code
        current (PackageStatus): Status the package is in
        attempted (PackageStatus): Status the transition tried to reach
    """

    def __init__(self, code: str, current, attempted):
        self.code = code
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Illegal transition for {code}: "
            f"{_status_name(current)} -> {_status_name(attempted)}"
        )

    def get_display_message(self) -> str:
        """
        Get a user-friendly message for display to the operator.

        Example output:
            "Package 41234567890 is DELIVERED and cannot be moved to QUALIFIED."
        """
        return (
            f"Package {self.code} is {_status_name(self.current)} "
            f"and cannot be moved to {_status_name(self.attempted)}."
        )


class ConfirmationPendingError(PackageTrackerError):
    """
    Raised when a confirmation is requested while another is still pending.

    The pipeline serializes through the confirmation gate, so this indicates a
    programming error rather than an operator mistake.
    """
    pass


class ScannerStateError(PackageTrackerError):
    """Raised when a channel operation is not valid in the arbiter's current state."""
    pass


class ExportStaleError(PackageTrackerError):
    """
    Raised when the scan log is submitted although the session list changed
    after its last export.
    """
    pass


def _status_name(status) -> str:
    return getattr(status, 'value', str(status))
