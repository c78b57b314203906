"""
Package lifecycle state machine.

    UNASSIGNED -> ASSIGNED -> {QUALIFIED, REPORTED} -> DELIVERED

A reported package has to be qualified again before it can be delivered, a
qualified package can still be reported, and DELIVERED is terminal.

Every transition checks its precondition against the stored status first and
raises IllegalTransitionError without touching the record when it fails.
Batch transitions check every code, leave the failing ones untouched and
write the eligible ones with a single bulk statement.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from exceptions import IllegalTransitionError, RecordNotFoundError, ValidationError
from logger import get_logger
from models import LabelDetails, PackageRecord, PackageStatus
from shared.metadata_utils import get_current_timestamp

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    PackageStatus.UNASSIGNED: frozenset({PackageStatus.ASSIGNED}),
    PackageStatus.ASSIGNED: frozenset({PackageStatus.QUALIFIED, PackageStatus.REPORTED}),
    PackageStatus.QUALIFIED: frozenset({PackageStatus.REPORTED, PackageStatus.DELIVERED}),
    PackageStatus.REPORTED: frozenset({PackageStatus.QUALIFIED}),
    PackageStatus.DELIVERED: frozenset(),
}


def can_transition(current: PackageStatus, target: PackageStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Assignment:
    """One code to assign, with the packer it goes to."""
    code: str
    packer: str
    label: Optional[LabelDetails] = None


@dataclass
class BatchResult:
    """
    Outcome of a batch transition.

    Attributes:
        updated: Codes that were written, in input order
        failed: Codes whose precondition failed, with the error naming their
                current status; these records were not touched
    """
    updated: List[str] = field(default_factory=list)
    failed: Dict[str, IllegalTransitionError] = field(default_factory=dict)

    @property
    def all_updated(self) -> bool:
        return not self.failed


class PackageLifecycle:
    """
    Applies lifecycle transitions through the record store.

    Args:
        store: Record store (get/update/bulk_update/insert)
        clock: Returns the ISO timestamp stamped on transitions
    """

    def __init__(self, store, clock: Callable[[], str] = get_current_timestamp):
        self.store = store
        self.clock = clock

    def current_status(self, code: str) -> PackageStatus:
        """Stored status of a code; codes without a record are UNASSIGNED."""
        try:
            return self.store.get(code).status
        except RecordNotFoundError:
            return PackageStatus.UNASSIGNED

    def _require(self, code: str, target: PackageStatus) -> PackageStatus:
        current = self.current_status(code)
        if not can_transition(current, target):
            logger.warning(f"Rejected transition of {code}: {current.value} -> {target.value}")
            raise IllegalTransitionError(code, current, target)
        return current

    def _new_record(self, assignment: Assignment, operator: Optional[str], now: str) -> PackageRecord:
        label = assignment.label or LabelDetails()
        return PackageRecord(
            code=assignment.code,
            status=PackageStatus.ASSIGNED,
            assigned_to=assignment.packer,
            operator=operator,
            product=label.product,
            sku=label.sku,
            quantity=label.quantity,
            organization=label.organization,
            sale_reference=label.sale_reference,
            assigned_at=now,
        )

    def _qualify_fields(self) -> dict:
        return {
            'status': PackageStatus.QUALIFIED,
            'report_details': None,
            'qualified_at': self.clock(),
        }

    def _deliver_fields(self) -> dict:
        return {'status': PackageStatus.DELIVERED, 'delivered_at': self.clock()}

    # ------------------------------------------------------------------
    # Single transitions
    # ------------------------------------------------------------------

    def assign(self, code: str, packer: str, operator: Optional[str] = None,
               label: Optional[LabelDetails] = None) -> PackageRecord:
        """Create the record of an unassigned code with status ASSIGNED."""
        if not packer:
            raise ValidationError("A packer name is required to assign a package")
        self._require(code, PackageStatus.ASSIGNED)

        record = self._new_record(Assignment(code, packer, label), operator, self.clock())
        self.store.insert([record])
        logger.info(f"Assigned {code} to {packer}")
        return record

    def qualify(self, code: str) -> None:
        """ASSIGNED or REPORTED -> QUALIFIED; clears the report details."""
        self._require(code, PackageStatus.QUALIFIED)
        self.store.update(code, self._qualify_fields())
        logger.info(f"Qualified {code}")

    def report(self, code: str, reason: str) -> None:
        """ASSIGNED or QUALIFIED -> REPORTED with the reason text."""
        if not reason or not reason.strip():
            raise ValidationError("A report reason is required")
        self._require(code, PackageStatus.REPORTED)
        self.store.update(code, {'status': PackageStatus.REPORTED, 'report_details': reason.strip()})
        logger.info(f"Reported {code}: {reason.strip()}")

    def deliver(self, code: str) -> None:
        """QUALIFIED -> DELIVERED."""
        self._require(code, PackageStatus.DELIVERED)
        self.store.update(code, self._deliver_fields())
        logger.info(f"Delivered {code}")

    # ------------------------------------------------------------------
    # Batch transitions
    # ------------------------------------------------------------------

    def _partition(self, codes: Iterable[str], target: PackageStatus) -> BatchResult:
        result = BatchResult()
        for code in dict.fromkeys(codes):
            try:
                self._require(code, target)
            except IllegalTransitionError as e:
                result.failed[code] = e
            else:
                result.updated.append(code)
        return result

    def _apply_bulk(self, result: BatchResult, fields: dict, action: str) -> BatchResult:
        if result.updated:
            # All or nothing; a StoreError leaves every code untouched
            self.store.bulk_update(result.updated, fields)
        logger.info(f"{action}: {len(result.updated)} updated, {len(result.failed)} failed")
        return result

    def qualify_many(self, codes: Iterable[str]) -> BatchResult:
        """Qualify every eligible code with one bulk update."""
        result = self._partition(codes, PackageStatus.QUALIFIED)
        return self._apply_bulk(result, self._qualify_fields(), "Batch qualify")

    def deliver_many(self, codes: Iterable[str]) -> BatchResult:
        """Deliver every eligible code with one bulk update."""
        result = self._partition(codes, PackageStatus.DELIVERED)
        return self._apply_bulk(result, self._deliver_fields(), "Batch deliver")

    def assign_many(self, assignments: List[Assignment], operator: Optional[str] = None) -> BatchResult:
        """
        Create records for every unassigned code in one insert.

        Codes that already have a record are reported as failed.
        """
        by_code = {a.code: a for a in assignments}
        missing_packer = [code for code, a in by_code.items() if not a.packer]
        if missing_packer:
            raise ValidationError(f"No packer associated with: {', '.join(missing_packer)}")

        result = self._partition(by_code, PackageStatus.ASSIGNED)
        if result.updated:
            now = self.clock()
            self.store.insert([self._new_record(by_code[code], operator, now) for code in result.updated])
        logger.info(f"Batch assign: {len(result.updated)} assigned, {len(result.failed)} failed")
        return result
