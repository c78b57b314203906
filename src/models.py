"""
Domain data structures shared by the scan pipeline and the record store.
"""

from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any, Dict, Optional


class PackageStatus(str, Enum):
    """
    States a package record can occupy.

    UNASSIGNED is never stored: a code without a row is logically
    UNASSIGNED.
    """
    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"
    QUALIFIED = "QUALIFIED"
    REPORTED = "REPORTED"
    DELIVERED = "DELIVERED"


class ScanChannel(str, Enum):
    """Physical input channel a scan came from."""
    CAMERA = "CAMERA"
    PHYSICAL = "PHYSICAL"


class ScanFormat(str, Enum):
    """Symbology hint reported by the decoder."""
    QR = "QR"
    BARCODE = "BARCODE"
    UNKNOWN = "UNKNOWN"


class WorkflowMode(str, Enum):
    """
    Operator workflows served by the scan pipeline.

    - ASSIGN: scan codes, then scan a packer's name to assign them
    - QUALIFY: rate one package at a time (qualify or report)
    - QUALIFY_BATCH: accumulate codes, then qualify them all at once
    - DELIVER: accumulate qualified packages, then mark them delivered
    """
    ASSIGN = "ASSIGN"
    QUALIFY = "QUALIFY"
    QUALIFY_BATCH = "QUALIFY_BATCH"
    DELIVER = "DELIVER"


class ScanStatus:
    """
    Status values reported for a scan, from admission to final outcome.

    SILENT statuses are absorbed without operator feedback; everything else
    is shown to the operator.
    """
    # Admission (scan arbiter)
    ACCEPTED = "ACCEPTED"
    DROPPED_DUPLICATE = "DROPPED_DUPLICATE"
    SESSION_DUPLICATE = "SESSION_DUPLICATE"
    BLOCKED_BY_CONFIRMATION = "BLOCKED_BY_CONFIRMATION"
    NOT_LISTENING = "NOT_LISTENING"
    EMPTY_SCAN = "EMPTY_SCAN"

    # Confirmation gate
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    SCAN_CANCELLED = "SCAN_CANCELLED"

    # Lookup and lifecycle
    FOUND = "FOUND"
    UNASSIGNED = "UNASSIGNED"
    BLOCKED = "BLOCKED"
    LOOKUP_FAILED = "LOOKUP_FAILED"
    LABEL_NOT_FOUND = "LABEL_NOT_FOUND"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"

    # Session list
    ADDED = "ADDED"
    NAME_ASSOCIATED = "NAME_ASSOCIATED"
    NO_PENDING_CODES = "NO_PENDING_CODES"

    # Commits and transitions on the current candidate
    UPDATED = "UPDATED"
    STORE_FAILED = "STORE_FAILED"

    SILENT = frozenset({DROPPED_DUPLICATE, BLOCKED_BY_CONFIRMATION, NOT_LISTENING, EMPTY_SCAN})


@dataclass
class LabelDetails:
    """Descriptive metadata printed on a package label."""
    sku: Optional[str] = None
    product: Optional[str] = None
    quantity: Optional[int] = None
    organization: Optional[str] = None
    sale_reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PackageRecord:
    """
    A package row in the record store, keyed by its canonical code.

    ``report_details`` is only set while status is REPORTED.
    """
    code: str
    status: PackageStatus
    assigned_to: Optional[str] = None      # Packer name
    operator: Optional[str] = None         # Encargado who made the assignment
    product: Optional[str] = None
    sku: Optional[str] = None
    quantity: Optional[int] = None
    organization: Optional[str] = None
    sale_reference: Optional[str] = None
    report_details: Optional[str] = None
    assigned_at: Optional[str] = None      # ISO timestamps with timezone
    qualified_at: Optional[str] = None
    delivered_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary with the status as plain string."""
        data = asdict(self)
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PackageRecord':
        """Create from a dictionary (e.g. a database row), ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values['status'] = PackageStatus(values['status'])
        return cls(**values)


@dataclass(frozen=True)
class ScanEvent:
    """
    One logical "code observed" event produced by the scan arbiter.

    Not persisted; consumed synchronously by the pipeline.
    """
    raw_text: str
    channel: ScanChannel
    format: ScanFormat = ScanFormat.UNKNOWN
    observed_at: float = 0.0  # Arbiter clock reading (seconds)
