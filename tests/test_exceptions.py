"""
Unit tests for src/exceptions.py - Custom exception hierarchy.

Tests cover:
- Exception inheritance chain
- Constructor arguments and attributes
- get_display_message() formatting for illegal transitions
"""

import pytest
from exceptions import (
    ConfirmationPendingError,
    DuplicateRecordError,
    ExportStaleError,
    IllegalTransitionError,
    PackageTrackerError,
    RecordNotFoundError,
    ScannerStateError,
    StoreError,
    ValidationError,
)
from models import PackageStatus


# ============================================================================
# Inheritance chain
# ============================================================================

class TestInheritance:
    """Verify the documented exception hierarchy."""

    def test_base_is_exception(self):
        assert issubclass(PackageTrackerError, Exception)

    def test_not_found_is_store_error(self):
        assert issubclass(RecordNotFoundError, StoreError)

    def test_duplicate_is_store_error(self):
        assert issubclass(DuplicateRecordError, StoreError)

    def test_illegal_transition_is_not_store_error(self):
        assert not issubclass(IllegalTransitionError, StoreError)

    def test_catch_all_with_base_class(self):
        """All custom exceptions can be caught with PackageTrackerError."""
        for exc in [
            ValidationError("x"),
            StoreError("x"),
            RecordNotFoundError("A"),
            DuplicateRecordError("x"),
            IllegalTransitionError("A", PackageStatus.ASSIGNED, PackageStatus.DELIVERED),
            ConfirmationPendingError("x"),
            ScannerStateError("x"),
            ExportStaleError("x"),
        ]:
            with pytest.raises(PackageTrackerError):
                raise exc


# ============================================================================
# Attributes and messages
# ============================================================================

class TestRecordNotFoundError:
    def test_code_attribute(self):
        err = RecordNotFoundError("41234567890")
        assert err.code == "41234567890"
        assert "41234567890" in str(err)


class TestDuplicateRecordError:
    def test_codes_default_empty(self):
        assert DuplicateRecordError("dup").codes == []

    def test_codes(self):
        assert DuplicateRecordError("dup", ["A"]).codes == ["A"]


class TestIllegalTransitionError:
    def test_attributes(self):
        err = IllegalTransitionError("A", PackageStatus.DELIVERED, PackageStatus.QUALIFIED)
        assert err.code == "A"
        assert err.current == PackageStatus.DELIVERED
        assert err.attempted == PackageStatus.QUALIFIED

    def test_str(self):
        err = IllegalTransitionError("A", PackageStatus.ASSIGNED, PackageStatus.DELIVERED)
        assert str(err) == "Illegal transition for A: ASSIGNED -> DELIVERED"

    def test_display_message(self):
        err = IllegalTransitionError("41234567890", PackageStatus.DELIVERED, PackageStatus.QUALIFIED)
        assert err.get_display_message() == (
            "Package 41234567890 is DELIVERED and cannot be moved to QUALIFIED."
        )

    def test_plain_string_statuses(self):
        err = IllegalTransitionError("A", "REPORTED", "DELIVERED")
        assert "REPORTED" in err.get_display_message()
