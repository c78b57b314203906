"""
Tests for src/scan_pipeline.py - end-to-end scan processing per workflow.

Tests cover:
- Admission outcomes surfaced by the pipeline
- Confirmation of low-confidence codes (confirm, cancel, blocking)
- ASSIGN: pending codes, label catalogue check, packer association, commit
- QUALIFY: current candidate, qualify and report
- Manual code entry
- QUALIFY_BATCH and DELIVER: list building and bulk commit
- Mode switching, export and scan log submission
"""

from unittest.mock import patch

import pytest

from conftest import MEL_A, MEL_B, MEL_C
from exceptions import ConfirmationPendingError, ExportStaleError, StoreError, ValidationError
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
from workstation import create_workstation


@pytest.fixture
def catalogue(store, label):
    store.add_labels({code: label for code in (MEL_A, MEL_B, MEL_C)})


@pytest.fixture
def running(pipeline, arbiter, catalogue):
    arbiter.start("Luis Perez")
    return pipeline


def scan(pipeline, clock, text, fmt=ScanFormat.BARCODE, channel=ScanChannel.CAMERA, gap=5.0):
    return pipeline.handle_event(ScanEvent(text, channel, fmt, clock.advance(gap)))


def seed(store, code, status, **fields):
    store.insert([PackageRecord(code, status, assigned_to="Ana Lopez", **fields)])


class TestAdmission:

    def test_event_before_start_ignored(self, pipeline, clock, store):
        outcome = scan(pipeline, clock, MEL_A)
        assert outcome.status == ScanStatus.NOT_LISTENING
        assert outcome.is_silent
        assert len(pipeline.session_list) == 0

    def test_burst_within_window_processed_once(self, running, clock):
        first = scan(running, clock, MEL_A)
        second = scan(running, clock, MEL_A, gap=0.1)

        assert first.status == ScanStatus.ADDED
        assert second.status == ScanStatus.DROPPED_DUPLICATE
        assert second.is_silent
        assert running.session_list.codes() == [MEL_A]

    def test_stationary_code_dropped_after_window(self, running, clock):
        scan(running, clock, MEL_A)
        assert scan(running, clock, MEL_A).status == ScanStatus.DROPPED_DUPLICATE

    def test_session_duplicate_on_rescan(self, running, clock):
        scan(running, clock, MEL_A)
        scan(running, clock, MEL_B)

        outcome = scan(running, clock, MEL_A)

        assert outcome.status == ScanStatus.SESSION_DUPLICATE
        assert not outcome.is_silent
        assert MEL_A in outcome.message

    def test_scan_completed_signal(self, running, clock, qtbot):
        with qtbot.waitSignal(running.scan_completed) as blocker:
            scan(running, clock, MEL_A)
        assert blocker.args[0].status == ScanStatus.ADDED

    def test_lookup_failure_mutates_nothing(self, running, clock, store):
        with patch.object(store, 'get', side_effect=StoreError("connection refused")):
            outcome = scan(running, clock, MEL_A)

        assert outcome.status == ScanStatus.LOOKUP_FAILED
        assert "connection refused" in outcome.message
        assert len(running.session_list) == 0

        # Rescanning retries the lookup
        assert scan(running, clock, MEL_A).status == ScanStatus.ADDED


class TestConfirmation:

    def test_low_confidence_waits_for_operator(self, running, clock, gate, decoder):
        outcome = scan(running, clock, MEL_A, fmt=ScanFormat.QR)

        assert outcome.status == ScanStatus.CONFIRMATION_REQUIRED
        assert gate.is_pending
        assert gate.pending.code == MEL_A
        assert decoder.calls[-1] == 'pause'
        assert len(running.session_list) == 0

    def test_cancel_produces_scan_cancelled(self, running, clock, gate, decoder, store):
        scan(running, clock, "12345", fmt=ScanFormat.QR)

        with patch.object(store, 'insert') as insert, patch.object(store, 'update') as update:
            outcome = gate.cancel()

        assert outcome.status == ScanStatus.SCAN_CANCELLED
        assert outcome.code == "12345"
        insert.assert_not_called()
        update.assert_not_called()
        assert len(running.session_list) == 0
        assert decoder.calls[-1] == 'resume'

    def test_confirm_continues_processing(self, running, clock, gate, qtbot):
        scan(running, clock, MEL_A, fmt=ScanFormat.QR)

        with qtbot.waitSignal(running.scan_completed) as blocker:
            outcome = gate.confirm()

        assert outcome.status == ScanStatus.ADDED
        assert blocker.args[0] == outcome
        assert running.session_list.codes() == [MEL_A]

    def test_scans_blocked_while_pending(self, running, clock, gate):
        scan(running, clock, MEL_A, fmt=ScanFormat.QR)

        outcome = scan(running, clock, MEL_B)

        assert outcome.status == ScanStatus.BLOCKED_BY_CONFIRMATION
        assert gate.pending.code == MEL_A

    def test_stop_keeps_pending_confirmation(self, running, clock, gate, arbiter):
        scan(running, clock, MEL_A, fmt=ScanFormat.QR)
        arbiter.stop()

        assert gate.is_pending
        assert gate.confirm().status == ScanStatus.ADDED

    def test_physical_mel_code_needs_no_confirmation(self, settings, gate, store, lifecycle, clock, catalogue, qapp):
        from scan_arbiter import ScanArbiter
        from scan_pipeline import ScanPipeline

        arbiter = ScanArbiter(settings, gate, clock=clock)
        pipeline = ScanPipeline(settings, arbiter, gate, store, lifecycle)
        arbiter.select_channel(ScanChannel.PHYSICAL)
        arbiter.start("Luis Perez")

        outcome = scan(pipeline, clock, "ID" + MEL_A + "TLM", fmt=ScanFormat.UNKNOWN, channel=ScanChannel.PHYSICAL)

        assert outcome.status == ScanStatus.ADDED
        assert outcome.code == MEL_A


class TestAssignWorkflow:

    def test_unassigned_code_added_with_label(self, running, clock, store, label):
        store.add_labels({MEL_A: label})

        outcome = scan(running, clock, MEL_A)

        assert outcome.status == ScanStatus.ADDED
        item = running.session_list.get(MEL_A)
        assert item.label.product == "Ceramic Mug"
        assert item.is_mel
        assert item.packer is None

    def test_code_missing_from_catalogue_rejected(self, running, clock):
        outcome = scan(running, clock, "41234567899")

        assert outcome.status == ScanStatus.LABEL_NOT_FOUND
        assert not outcome.is_silent
        assert "41234567899" in outcome.message
        assert len(running.session_list) == 0

    def test_catalogue_miss_is_not_marked_processed(self, running, clock, store, arbiter):
        scan(running, clock, "41234567899")
        assert arbiter.last_processed_code is None

        store.add_labels({"41234567899": LabelDetails(sku="SKU-009")})
        assert scan(running, clock, "41234567899").status == ScanStatus.ADDED

    def test_name_associates_pending_codes(self, running, clock):
        scan(running, clock, MEL_A)
        scan(running, clock, MEL_B)

        outcome = scan(running, clock, "Ana Lopez", fmt=ScanFormat.QR)

        assert outcome.status == ScanStatus.NAME_ASSOCIATED
        assert outcome.code == "Ana Lopez"
        assert {item.packer for item in running.session_list} == {"Ana Lopez"}

    def test_name_without_pending_codes(self, running, clock):
        outcome = scan(running, clock, "Ana Lopez", fmt=ScanFormat.QR)
        assert outcome.status == ScanStatus.NO_PENDING_CODES

    def test_existing_record_is_illegal(self, running, clock, store):
        seed(store, MEL_A, PackageStatus.QUALIFIED)

        outcome = scan(running, clock, MEL_A)

        assert outcome.status == ScanStatus.ILLEGAL_TRANSITION
        assert "QUALIFIED" in outcome.message
        assert len(running.session_list) == 0

    def test_reported_record_is_blocked(self, running, clock, store):
        seed(store, MEL_A, PackageStatus.REPORTED, report_details="Broken seal")
        outcome = scan(running, clock, MEL_A)
        assert outcome.status == ScanStatus.BLOCKED
        assert outcome.record.report_details == "Broken seal"

    def test_commit_assignments(self, running, clock, store):
        scan(running, clock, MEL_A)
        scan(running, clock, MEL_B)
        scan(running, clock, "Ana Lopez", fmt=ScanFormat.QR)
        scan(running, clock, MEL_C)

        result = running.commit_assignments()

        assert sorted(result.updated) == [MEL_A, MEL_B]
        stored = store.get(MEL_A)
        assert stored.status == PackageStatus.ASSIGNED
        assert stored.assigned_to == "Ana Lopez"
        assert stored.operator == "Luis Perez"
        # Codes without a packer stay pending
        assert running.session_list.codes() == [MEL_C]

    def test_commit_without_packer(self, running, clock):
        scan(running, clock, MEL_A)
        with pytest.raises(ValidationError):
            running.commit_assignments()

    def test_commit_keeps_failed_codes(self, running, clock, store):
        scan(running, clock, MEL_A)
        scan(running, clock, MEL_B)
        scan(running, clock, "Ana Lopez", fmt=ScanFormat.QR)
        seed(store, MEL_B, PackageStatus.ASSIGNED)

        result = running.commit_assignments()

        assert result.updated == [MEL_A]
        assert MEL_B in result.failed
        assert running.session_list.codes() == [MEL_B]


class TestQualifyWorkflow:

    @pytest.fixture
    def qualifying(self, running):
        running.set_mode(WorkflowMode.QUALIFY)
        return running

    def test_found_becomes_candidate(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)

        outcome = scan(qualifying, clock, MEL_A)

        assert outcome.status == ScanStatus.FOUND
        assert qualifying.candidate.code == MEL_A

    def test_qualify_current(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)

        outcome = qualifying.qualify_current()

        assert outcome.status == ScanStatus.UPDATED
        assert store.get(MEL_A).status == PackageStatus.QUALIFIED
        assert qualifying.candidate is None
        assert qualifying.session_list.get(MEL_A).status == PackageStatus.QUALIFIED.value

    def test_rated_code_is_session_duplicate(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        seed(store, MEL_B, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)
        qualifying.qualify_current()
        scan(qualifying, clock, MEL_B)

        assert scan(qualifying, clock, MEL_A).status == ScanStatus.SESSION_DUPLICATE

    def test_failed_scan_replaces_candidate(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)

        assert scan(qualifying, clock, MEL_B).status == ScanStatus.UNASSIGNED
        assert qualifying.candidate is None

        with pytest.raises(ValidationError):
            qualifying.qualify_current()
        assert store.get(MEL_A).status == PackageStatus.ASSIGNED

    def test_cancelled_scan_replaces_candidate(self, qualifying, clock, store, gate):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)

        scan(qualifying, clock, "12345", fmt=ScanFormat.QR)
        gate.cancel()

        assert qualifying.candidate is None
        with pytest.raises(ValidationError):
            qualifying.report_current("Broken seal")
        assert store.get(MEL_A).status == PackageStatus.ASSIGNED

    def test_lookup_failure_replaces_candidate(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)

        with patch.object(store, 'get', side_effect=StoreError("connection refused")):
            assert scan(qualifying, clock, MEL_B).status == ScanStatus.LOOKUP_FAILED

        assert qualifying.candidate is None

    def test_session_duplicate_replaces_candidate(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        seed(store, MEL_B, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)
        qualifying.qualify_current()
        scan(qualifying, clock, MEL_B)

        assert scan(qualifying, clock, MEL_A).status == ScanStatus.SESSION_DUPLICATE
        assert qualifying.candidate is None
        assert store.get(MEL_B).status == PackageStatus.ASSIGNED

    def test_report_current(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.QUALIFIED)
        scan(qualifying, clock, MEL_A)

        outcome = qualifying.report_current("Broken seal")

        assert outcome.status == ScanStatus.UPDATED
        stored = store.get(MEL_A)
        assert stored.status == PackageStatus.REPORTED
        assert stored.report_details == "Broken seal"

    def test_report_requires_reason(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        scan(qualifying, clock, MEL_A)
        with pytest.raises(ValidationError):
            qualifying.report_current("")

    def test_reported_package_can_be_requalified(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.REPORTED, report_details="Broken seal")

        assert scan(qualifying, clock, MEL_A).status == ScanStatus.FOUND
        qualifying.qualify_current()

        stored = store.get(MEL_A)
        assert stored.status == PackageStatus.QUALIFIED
        assert stored.report_details is None

    def test_reported_package_cannot_be_reported_again(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.REPORTED, report_details="Broken seal")
        scan(qualifying, clock, MEL_A)

        outcome = qualifying.report_current("Wrong product")

        assert outcome.status == ScanStatus.ILLEGAL_TRANSITION
        assert store.get(MEL_A).report_details == "Broken seal"

    def test_qualified_candidate_cannot_be_qualified_again(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.QUALIFIED, qualified_at="2025-11-05T10:00:00+00:00")
        scan(qualifying, clock, MEL_A)

        outcome = qualifying.qualify_current()

        assert outcome.status == ScanStatus.ILLEGAL_TRANSITION
        assert store.get(MEL_A).qualified_at == "2025-11-05T10:00:00+00:00"

    def test_delivered_is_illegal(self, qualifying, clock, store):
        seed(store, MEL_A, PackageStatus.DELIVERED)
        outcome = scan(qualifying, clock, MEL_A)
        assert outcome.status == ScanStatus.ILLEGAL_TRANSITION
        assert qualifying.candidate is None

    def test_unassigned(self, qualifying, clock):
        assert scan(qualifying, clock, MEL_A).status == ScanStatus.UNASSIGNED

    def test_names_are_not_accepted(self, qualifying, clock, gate):
        outcome = scan(qualifying, clock, "Ana Lopez", fmt=ScanFormat.QR)
        assert outcome.status == ScanStatus.CONFIRMATION_REQUIRED
        gate.cancel()

    def test_no_candidate(self, qualifying):
        with pytest.raises(ValidationError):
            qualifying.qualify_current()

    def test_uses_qualify_rate_limit(self, qualifying, arbiter):
        assert arbiter.min_interval == 2.0


class TestBatchWorkflows:

    def test_qualify_batch(self, running, clock, store):
        running.set_mode(WorkflowMode.QUALIFY_BATCH)
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        seed(store, MEL_B, PackageStatus.REPORTED, report_details="Broken seal")
        seed(store, MEL_C, PackageStatus.DELIVERED)

        assert scan(running, clock, MEL_A).status == ScanStatus.ADDED
        assert scan(running, clock, MEL_B).status == ScanStatus.ADDED
        assert scan(running, clock, MEL_C).status == ScanStatus.ILLEGAL_TRANSITION

        result = running.commit_batch()

        assert sorted(result.updated) == [MEL_A, MEL_B]
        assert store.get(MEL_B).report_details is None
        assert len(running.session_list) == 0

    def test_batch_reports_code_that_changed_meanwhile(self, running, clock, store, lifecycle):
        running.set_mode(WorkflowMode.QUALIFY_BATCH)
        seed(store, MEL_A, PackageStatus.ASSIGNED)
        seed(store, MEL_B, PackageStatus.ASSIGNED)
        scan(running, clock, MEL_A)
        scan(running, clock, MEL_B)
        lifecycle.qualify(MEL_B)
        lifecycle.deliver(MEL_B)

        result = running.commit_batch()

        assert result.updated == [MEL_A]
        assert result.failed[MEL_B].current == PackageStatus.DELIVERED
        assert store.get(MEL_B).status == PackageStatus.DELIVERED
        assert running.session_list.codes() == [MEL_B]

    def test_deliver(self, running, clock, store):
        running.set_mode(WorkflowMode.DELIVER)
        seed(store, MEL_A, PackageStatus.QUALIFIED)
        seed(store, MEL_B, PackageStatus.REPORTED)
        seed(store, MEL_C, PackageStatus.ASSIGNED)

        assert scan(running, clock, MEL_A).status == ScanStatus.ADDED
        assert scan(running, clock, MEL_B).status == ScanStatus.BLOCKED
        assert scan(running, clock, MEL_C).status == ScanStatus.ILLEGAL_TRANSITION

        result = running.commit_batch()

        assert result.updated == [MEL_A]
        assert store.get(MEL_A).status == PackageStatus.DELIVERED

    def test_commit_empty_batch(self, running):
        running.set_mode(WorkflowMode.DELIVER)
        with pytest.raises(ValidationError):
            running.commit_batch()

    def test_batch_store_error_keeps_list(self, running, clock, store):
        running.set_mode(WorkflowMode.DELIVER)
        seed(store, MEL_A, PackageStatus.QUALIFIED)
        scan(running, clock, MEL_A)

        with patch.object(store, 'bulk_update', side_effect=StoreError("timeout")):
            with pytest.raises(StoreError):
                running.commit_batch()

        assert running.session_list.codes() == [MEL_A]
        assert store.get(MEL_A).status == PackageStatus.QUALIFIED


class TestManualEntry:

    def test_manual_code_added_without_scanner(self, pipeline, arbiter, catalogue):
        outcome = pipeline.submit_manual(f"  {MEL_A} ", operator="Luis Perez")

        assert outcome.status == ScanStatus.ADDED
        assert outcome.code == MEL_A
        assert pipeline.session_list.codes() == [MEL_A]
        assert not arbiter.is_listening
        assert arbiter.operator == "Luis Perez"

    def test_requires_operator(self, pipeline, catalogue):
        with pytest.raises(ValidationError):
            pipeline.submit_manual(MEL_A)

    def test_empty_code_rejected(self, running):
        with pytest.raises(ValidationError):
            running.submit_manual("   ")

    def test_not_rate_limited(self, running, clock):
        scan(running, clock, MEL_A)
        assert running.submit_manual(MEL_B).status == ScanStatus.ADDED

    def test_session_duplicate(self, running, clock):
        scan(running, clock, MEL_A)
        outcome = running.submit_manual(MEL_A)
        assert outcome.status == ScanStatus.SESSION_DUPLICATE
        assert MEL_A in outcome.message

    def test_non_mel_code_needs_confirmation(self, running, store, gate):
        store.add_labels({"ABC123": LabelDetails(sku="SKU-777")})

        outcome = running.submit_manual("ABC123")

        assert outcome.status == ScanStatus.CONFIRMATION_REQUIRED
        assert gate.pending.code == "ABC123"
        assert gate.confirm().status == ScanStatus.ADDED
        assert running.session_list.codes() == ["ABC123"]

    def test_cancelled_manual_code_not_added(self, running, gate):
        running.submit_manual("ABC123")
        assert gate.cancel().status == ScanStatus.SCAN_CANCELLED
        assert len(running.session_list) == 0

    def test_blocked_while_confirmation_pending(self, running, gate):
        running.submit_manual("ABC123")
        assert running.submit_manual(MEL_A).status == ScanStatus.BLOCKED_BY_CONFIRMATION
        gate.cancel()

    def test_code_missing_from_catalogue(self, running):
        assert running.submit_manual("41234567899").status == ScanStatus.LABEL_NOT_FOUND

    def test_follows_workflow_rules(self, running, store):
        running.set_mode(WorkflowMode.DELIVER)
        seed(store, MEL_A, PackageStatus.QUALIFIED)
        seed(store, MEL_B, PackageStatus.ASSIGNED)

        assert running.submit_manual(MEL_A).status == ScanStatus.ADDED
        assert running.submit_manual(MEL_B).status == ScanStatus.ILLEGAL_TRANSITION


class TestSessionControl:

    def test_set_mode_clears_session(self, running, clock, arbiter, qtbot):
        scan(running, clock, MEL_A)

        with qtbot.waitSignal(running.mode_changed) as blocker:
            running.set_mode(WorkflowMode.DELIVER)

        assert blocker.args == ["DELIVER"]
        assert len(running.session_list) == 0
        assert arbiter.last_processed_code is None
        assert arbiter.min_interval == 1.5

    def test_set_mode_while_pending(self, running, clock):
        scan(running, clock, MEL_A, fmt=ScanFormat.QR)
        with pytest.raises(ConfirmationPendingError):
            running.set_mode(WorkflowMode.DELIVER)

    def test_clear_session_allows_rescan(self, running, clock):
        scan(running, clock, MEL_A)
        running.clear_session()
        assert scan(running, clock, MEL_A).status == ScanStatus.ADDED

    def test_submit_requires_export(self, running, clock):
        scan(running, clock, MEL_A)
        with pytest.raises(ExportStaleError):
            running.submit_scan_log()

    def test_submit_after_change_is_stale(self, running, clock):
        scan(running, clock, MEL_A)
        running.export_session()
        scan(running, clock, MEL_B)
        with pytest.raises(ExportStaleError):
            running.submit_scan_log()

    def test_export_and_submit(self, running, clock, store):
        scan(running, clock, MEL_A)
        scan(running, clock, MEL_B)

        df = running.export_session()
        written = running.submit_scan_log()

        assert list(df['CODE']) == [MEL_B, MEL_A]
        assert set(df['OPERATOR']) == {"Luis Perez"}
        assert written == 2
        assert store.count_scan_log() == 2

    def test_submit_empty_export(self, running):
        running.export_session()
        with pytest.raises(ValidationError):
            running.submit_scan_log()


class TestWorkstation:

    def test_physical_scan_reaches_pipeline(self, settings, qtbot):
        station = create_workstation(settings=settings)
        station.store.add_operator("Luis Perez", "barra")
        station.store.add_labels({MEL_A: LabelDetails(sku="SKU-001")})
        station.arbiter.select_channel(ScanChannel.PHYSICAL)
        station.arbiter.start(station.operators()[0])

        with qtbot.waitSignal(station.pipeline.scan_completed) as blocker:
            for ch in "ID" + MEL_A + "TLM":
                station.arbiter.key_pressed(ch)
            station.arbiter.key_pressed("Enter")

        outcome = blocker.args[0]
        assert outcome.status == ScanStatus.ADDED
        assert outcome.code == MEL_A

    def test_loads_config_file(self, tmp_path, qapp):
        config = tmp_path / "config.ini"
        config.write_text(
            "[Storage]\n"
            f"DatabasePath = {tmp_path / 'station.db'}\n"
            "[Scanner]\n"
            "DeliverIntervalMs = 1000\n",
            encoding='utf-8',
        )

        station = create_workstation(config, mode=WorkflowMode.DELIVER)

        assert (tmp_path / "station.db").exists()
        assert station.arbiter.min_interval == 1.0
