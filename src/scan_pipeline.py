# Standard library imports
from dataclasses import dataclass
from typing import Optional

# Third-party imports
import pandas as pd  # Session export table

# Qt framework for signals/slots pattern
from PySide6.QtCore import QObject, Signal

# Local imports
from confirmation_gate import ConfirmationGate
from exceptions import (
    ConfirmationPendingError,
    ExportStaleError,
    IllegalTransitionError,
    StoreError,
    ValidationError,
)
from input_classifier import classify_code, is_mel_code
from lifecycle import Assignment, BatchResult, PackageLifecycle
from logger import get_logger
from models import (
    LabelDetails,
    PackageRecord,
    PackageStatus,
    ScanChannel,
    ScanEvent,
    ScanFormat,
    ScanStatus,
    WorkflowMode,
)
from package_lookup import LookupResult, lookup_package
from scan_arbiter import ScanArbiter
from session_list import SessionList, SessionListItem, frame_to_scan_log_rows
from settings import TrackerSettings

# Initialize module-level logger
logger = get_logger(__name__)

# Outcomes that count as a successfully processed scan for the
# immediate-repeat check
PROCESSED_STATUSES = frozenset({ScanStatus.ADDED, ScanStatus.FOUND, ScanStatus.NAME_ASSOCIATED})


@dataclass
class ScanOutcome:
    """
    Result of one scan (or of an operator action on the current candidate).

    Attributes:
        status: A ScanStatus value
        code: Canonical code, when one was derived
        message: Text for the operator; empty for silent outcomes
        record: Stored record involved, when there is one
    """
    status: str
    code: Optional[str] = None
    message: str = ""
    record: Optional[PackageRecord] = None

    @property
    def is_silent(self) -> bool:
        return self.status in ScanStatus.SILENT


class ScanPipeline(QObject):
    """
    Runs every admitted scan through classification, confirmation, lookup and
    the workflow rules of the active mode.

    The pipeline processes one event to completion before the next; the only
    suspension point is the confirmation gate. While a confirmation is
    pending, handle_event() returns CONFIRMATION_REQUIRED and the final
    outcome is produced by the gate's confirm()/cancel().

    Workflows:
        ASSIGN: codes collect in the session list, scanning a packer's name
                associates the pending codes with that packer, and
                commit_assignments() creates the records
        QUALIFY: each scanned package becomes the current candidate, rated
                 with qualify_current() or report_current()
        QUALIFY_BATCH: assigned or reported packages collect in the list and
                       commit_batch() qualifies them together
        DELIVER: qualified packages collect in the list and commit_batch()
                 delivers them together

    Attributes:
        scan_completed (Signal): Emitted with the final ScanOutcome of a scan
        mode_changed (Signal): Emitted with the new WorkflowMode value
        session_list (SessionList): Codes scanned in this session
        candidate (PackageRecord | None): Package being rated in QUALIFY mode
    """
    scan_completed = Signal(object)
    mode_changed = Signal(str)

    def __init__(
        self,
        settings: TrackerSettings,
        arbiter: ScanArbiter,
        gate: ConfirmationGate,
        store,
        lifecycle: PackageLifecycle,
        mode: WorkflowMode = WorkflowMode.ASSIGN,
        parent: QObject = None,
    ):
        super().__init__(parent)
        self.settings = settings
        self.arbiter = arbiter
        self.gate = gate
        self.store = store
        self.lifecycle = lifecycle

        self.mode = mode
        self.session_list = SessionList(mode.value.lower())
        self.candidate: Optional[PackageRecord] = None
        self._last_export: Optional[pd.DataFrame] = None

        self.arbiter.register_session_list(self.session_list)
        self.arbiter.min_interval = settings.min_interval_for(mode)

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    def set_mode(self, mode: WorkflowMode) -> None:
        """
        Switch workflow. Discards the session lists and scan markers.

        Raises:
            ConfirmationPendingError: If the operator still has to answer a
                                      confirmation
        """
        if self.gate.is_pending:
            raise ConfirmationPendingError("Resolve the pending confirmation before switching mode")

        self.clear_session()
        self.mode = mode
        self.session_list.name = mode.value.lower()
        self.arbiter.min_interval = self.settings.min_interval_for(mode)
        logger.info(f"Workflow mode set to {mode.value}")
        self.mode_changed.emit(mode.value)

    def clear_session(self) -> None:
        """Discard the scanned codes, the current candidate and the scan markers."""
        self.session_list.clear()
        self.candidate = None
        self._last_export = None
        self.arbiter.reset_session()

    # ------------------------------------------------------------------
    # Scan processing
    # ------------------------------------------------------------------

    def handle_event(self, event: ScanEvent) -> ScanOutcome:
        """
        Process one scan event from the arbiter.

        Args:
            event: Raw scan event

        Returns:
            The final ScanOutcome, or CONFIRMATION_REQUIRED when the code waits
            for the operator.
        """
        code, status = self.arbiter.admit(event)
        return self._route(event, code, status)

    def submit_manual(self, text: str, operator: Optional[str] = None) -> ScanOutcome:
        """
        Process a code typed by the operator.

        Works without an active scanner. The code is normalized like
        keyboard-wedge input and skips the rate limit, but the session
        duplicate check, the confirmation of non-MEL codes and the workflow
        rules apply as for a scan.

        Args:
            text: Code as typed
            operator: Encargado to record; defaults to the one already set

        Raises:
            ValidationError: If no operator is set or the code is empty
        """
        if operator is not None:
            self.arbiter.set_operator(operator)
        if not self.arbiter.operator:
            raise ValidationError("Select the operator (encargado) before adding codes")

        event = ScanEvent(text or "", ScanChannel.PHYSICAL, ScanFormat.UNKNOWN, self.arbiter.clock())
        code, status = self.arbiter.admit_manual(event)
        if status == ScanStatus.EMPTY_SCAN:
            raise ValidationError("Enter a code to add")
        return self._route(event, code, status)

    def _route(self, event: ScanEvent, code: Optional[str], status: str) -> ScanOutcome:
        if self.mode == WorkflowMode.QUALIFY and status in (ScanStatus.ACCEPTED, ScanStatus.SESSION_DUPLICATE):
            # The new code replaces whatever package was on screen
            self.candidate = None

        if status != ScanStatus.ACCEPTED:
            message = f"{code} is already in this session" if status == ScanStatus.SESSION_DUPLICATE else ""
            return self._finish(ScanOutcome(status, code, message))

        classification = classify_code(
            code,
            event.channel,
            event.format,
            self.settings,
            allow_names=self.mode == WorkflowMode.ASSIGN,
        )

        if classification.is_name:
            return self._finish(self._associate_packer(code))

        if classification.requires_confirmation:
            self.arbiter.pause_source()
            self.gate.request(
                classification.title,
                classification.message,
                code,
                lambda decision: self._on_confirmation(decision, code),
            )
            return ScanOutcome(ScanStatus.CONFIRMATION_REQUIRED, code, classification.message)

        return self._finish(self._process_code(code))

    def _on_confirmation(self, decision: bool, code: str) -> ScanOutcome:
        self.arbiter.resume_source()
        if not decision:
            return self._finish(ScanOutcome(ScanStatus.SCAN_CANCELLED, code, f"Scan of {code} cancelled"))
        return self._finish(self._process_code(code))

    def _finish(self, outcome: ScanOutcome) -> ScanOutcome:
        if outcome.status in PROCESSED_STATUSES:
            self.arbiter.mark_processed(outcome.code)
        if not outcome.is_silent:
            logger.info(f"Scan {outcome.code}: {outcome.status}")
        self.scan_completed.emit(outcome)
        return outcome

    def _process_code(self, code: str) -> ScanOutcome:
        result = lookup_package(self.store, code)
        if result.status == ScanStatus.LOOKUP_FAILED:
            return ScanOutcome(ScanStatus.LOOKUP_FAILED, code, f"Could not check {code}: {result.message}")

        handlers = {
            WorkflowMode.ASSIGN: self._process_assign,
            WorkflowMode.QUALIFY: self._process_qualify,
            WorkflowMode.QUALIFY_BATCH: self._process_qualify_batch,
            WorkflowMode.DELIVER: self._process_deliver,
        }
        return handlers[self.mode](result)

    def _illegal(self, result: LookupResult, attempted: PackageStatus) -> ScanOutcome:
        error = IllegalTransitionError(result.code, result.record.status, attempted)
        return ScanOutcome(ScanStatus.ILLEGAL_TRANSITION, result.code, error.get_display_message(), result.record)

    def _add_to_list(self, code: str, record: Optional[PackageRecord],
                     label: Optional[LabelDetails] = None) -> ScanOutcome:
        if record is not None:
            label = _label_from_record(record)
        item = SessionListItem(
            code=code,
            label=label or LabelDetails(),
            is_mel=is_mel_code(code, self.settings),
            status=record.status.value if record is not None else PackageStatus.UNASSIGNED.value,
        )
        self.session_list.add(item)
        return ScanOutcome(ScanStatus.ADDED, code, f"{code} added", record)

    def _process_assign(self, result: LookupResult) -> ScanOutcome:
        if result.status == ScanStatus.BLOCKED:
            return ScanOutcome(ScanStatus.BLOCKED, result.code, result.message, result.record)
        if result.status == ScanStatus.FOUND:
            return self._illegal(result, PackageStatus.ASSIGNED)

        try:
            label = self.store.get_label(result.code)
        except StoreError as e:
            return ScanOutcome(ScanStatus.LOOKUP_FAILED, result.code, f"Could not read label of {result.code}: {e}")
        if label is None:
            return ScanOutcome(
                ScanStatus.LABEL_NOT_FOUND, result.code, f"Code {result.code} is not in the printed-label catalogue"
            )
        return self._add_to_list(result.code, None, label)

    def _associate_packer(self, name: str) -> ScanOutcome:
        packer = name.strip()
        codes = self.session_list.assign_packer(packer)
        if not codes:
            return ScanOutcome(ScanStatus.NO_PENDING_CODES, packer, f"No pending codes to assign to {packer}")
        return ScanOutcome(ScanStatus.NAME_ASSOCIATED, packer, f"{len(codes)} codes assigned to {packer}")

    def _process_qualify(self, result: LookupResult) -> ScanOutcome:
        if result.status == ScanStatus.UNASSIGNED:
            return ScanOutcome(ScanStatus.UNASSIGNED, result.code, result.message)

        record = result.record
        if record.status == PackageStatus.DELIVERED:
            return self._illegal(result, PackageStatus.QUALIFIED)

        # A reported package is shown for re-qualification
        self.candidate = record
        message = result.message or f"Package {record.code} is {record.status.value}"
        return ScanOutcome(ScanStatus.FOUND, record.code, message, record)

    def _process_qualify_batch(self, result: LookupResult) -> ScanOutcome:
        if result.status == ScanStatus.UNASSIGNED:
            return ScanOutcome(ScanStatus.UNASSIGNED, result.code, result.message)
        if result.record.status not in (PackageStatus.ASSIGNED, PackageStatus.REPORTED):
            return self._illegal(result, PackageStatus.QUALIFIED)
        return self._add_to_list(result.code, result.record)

    def _process_deliver(self, result: LookupResult) -> ScanOutcome:
        if result.status == ScanStatus.UNASSIGNED:
            return ScanOutcome(ScanStatus.UNASSIGNED, result.code, result.message)
        if result.status == ScanStatus.BLOCKED:
            return ScanOutcome(ScanStatus.BLOCKED, result.code, result.message, result.record)
        if result.record.status != PackageStatus.QUALIFIED:
            return self._illegal(result, PackageStatus.DELIVERED)
        return self._add_to_list(result.code, result.record)

    # ------------------------------------------------------------------
    # Current candidate (QUALIFY)
    # ------------------------------------------------------------------

    def qualify_current(self) -> ScanOutcome:
        """Qualify the package currently shown in QUALIFY mode."""
        return self._rate_current(PackageStatus.QUALIFIED)

    def report_current(self, reason: str) -> ScanOutcome:
        """Report the package currently shown in QUALIFY mode."""
        if not reason or not reason.strip():
            raise ValidationError("Select a report reason")
        return self._rate_current(PackageStatus.REPORTED, reason)

    def _rate_current(self, target: PackageStatus, reason: Optional[str] = None) -> ScanOutcome:
        if self.candidate is None:
            raise ValidationError("Scan a package first")

        code = self.candidate.code
        try:
            if target == PackageStatus.QUALIFIED:
                self.lifecycle.qualify(code)
            else:
                self.lifecycle.report(code, reason)
        except IllegalTransitionError as e:
            return ScanOutcome(ScanStatus.ILLEGAL_TRANSITION, code, e.get_display_message(), self.candidate)
        except StoreError as e:
            logger.error(f"Rating {code} failed: {e}")
            return ScanOutcome(ScanStatus.STORE_FAILED, code, f"Could not update {code}: {e}", self.candidate)

        item = SessionListItem(
            code=code,
            label=_label_from_record(self.candidate),
            is_mel=is_mel_code(code, self.settings),
            status=target.value,
        )
        self.session_list.remove(code)
        self.session_list.add(item)
        self.candidate = None
        return ScanOutcome(ScanStatus.UPDATED, code, f"Package {code} is now {target.value}")

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def commit_assignments(self) -> BatchResult:
        """
        Create the records of every code associated with a packer.

        Codes still waiting for a packer stay in the list. Codes that were
        written leave the list; failed codes stay and are reported.

        Raises:
            ValidationError: If no code has a packer yet
            StoreError: If the write fails; the list is left unchanged
        """
        if self.mode != WorkflowMode.ASSIGN:
            raise ValidationError(f"Assignments cannot be committed in {self.mode.value} mode")

        assignments = [
            Assignment(item.code, item.packer, item.label)
            for item in self.session_list
            if item.packer is not None
        ]
        if not assignments:
            raise ValidationError("No codes are associated with a packer yet")

        result = self.lifecycle.assign_many(assignments, operator=self.arbiter.operator)
        self._after_commit(result)
        return result

    def commit_batch(self) -> BatchResult:
        """
        Qualify (QUALIFY_BATCH) or deliver (DELIVER) every listed code.

        Raises:
            ValidationError: In other modes, or when the list is empty
            StoreError: If the bulk write fails; the list is left unchanged
        """
        codes = self.session_list.codes()
        if not codes:
            raise ValidationError("There are no scanned packages to commit")

        if self.mode == WorkflowMode.QUALIFY_BATCH:
            result = self.lifecycle.qualify_many(codes)
        elif self.mode == WorkflowMode.DELIVER:
            result = self.lifecycle.deliver_many(codes)
        else:
            raise ValidationError(f"There is no batch commit in {self.mode.value} mode")

        self._after_commit(result)
        return result

    def _after_commit(self, result: BatchResult) -> None:
        self.session_list.remove_many(result.updated)
        for code, error in result.failed.items():
            logger.warning(f"Not committed: {error.get_display_message()}")

    def export_session(self) -> pd.DataFrame:
        """Export the session list; required before submit_scan_log()."""
        self._last_export = self.session_list.export_frame(self.arbiter.operator, self.settings.area)
        return self._last_export

    def submit_scan_log(self) -> int:
        """
        Write the last export to the scan log.

        Returns:
            Number of rows written

        Raises:
            ExportStaleError: If nothing was exported or the list changed since
            ValidationError: If the export is empty
        """
        if self._last_export is None or self.session_list.export_stale:
            raise ExportStaleError("Export the session before submitting the scan log")
        if self._last_export.empty:
            raise ValidationError("There are no scans to submit")

        written = self.store.insert_scan_log(frame_to_scan_log_rows(self._last_export))
        logger.info(f"Scan log submitted by {self.arbiter.operator}: {written} rows")
        return written


def _label_from_record(record: PackageRecord) -> LabelDetails:
    return LabelDetails(
        sku=record.sku,
        product=record.product,
        quantity=record.quantity,
        organization=record.organization,
        sale_reference=record.sale_reference,
    )
