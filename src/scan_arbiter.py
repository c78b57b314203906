"""
Scan Arbiter - single entry point for both scanner channels.

Merges the continuous camera decode stream and the keystroke stream of a
keyboard-wedge scanner into one stream of ScanEvents, and decides which
events may reach the pipeline.

Key responsibilities:
- Exactly one active channel (camera XOR physical)
- Channel lifecycle Idle -> Listening -> Idle, gated on an operator
- Rebuilding discrete scans from keystrokes (Enter or 150 ms of silence)
- Rate limiting bursts from the decoder
- Suppressing a code that is still in front of the camera
- Rejecting codes already in the current session lists
"""

import time
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from PySide6.QtCore import QObject, QTimer, Signal

from code_normalizer import normalize_code
from confirmation_gate import ConfirmationGate
from decoder import BaseDecoder
from exceptions import ScannerStateError, ValidationError
from keystroke_buffer import KeystrokeBuffer, BUFFERING
from logger import get_logger, set_channel_context, set_operator_context, set_session_context
from models import ScanChannel, ScanEvent, ScanFormat, ScanStatus, WorkflowMode
from settings import TrackerSettings

logger = get_logger(__name__)

# Channel states
IDLE = "IDLE"
LISTENING = "LISTENING"
STOPPING = "STOPPING"


class ScanArbiter(QObject):
    """
    Merges camera and physical scanner input into one logical event stream.

    Attributes:
        event_ready (Signal): Emitted with a ScanEvent for every scan the
                              active channel produced
        state_changed (Signal): Emitted with the new channel state
        operator (str | None): Encargado of the running scan session
        session_id (str | None): Identifier of the running scan session
        min_interval (float): Rate-limit window in seconds
        last_event_time (float | None): Clock reading of the last event that
                                        passed the rate limit
        last_processed_code (str | None): Last code the pipeline processed
                                          successfully
    """
    event_ready = Signal(object)
    state_changed = Signal(str)

    def __init__(
        self,
        settings: TrackerSettings,
        gate: ConfirmationGate,
        decoder: Optional[BaseDecoder] = None,
        clock: Callable[[], float] = time.monotonic,
        parent: QObject = None,
    ):
        super().__init__(parent)
        self.settings = settings
        self.gate = gate
        self.decoder = decoder
        self.clock = clock

        self.channel = ScanChannel.CAMERA
        self.state = IDLE
        self.operator: Optional[str] = None
        self.session_id: Optional[str] = None
        self.min_interval = settings.min_interval_for(WorkflowMode.ASSIGN)

        self.last_event_time: Optional[float] = None
        self.last_processed_code: Optional[str] = None
        self._session_lists: List = []

        self._buffer = KeystrokeBuffer(settings.keystroke_flush_seconds)
        self._flush_timer = QTimer(self)
        self._flush_timer.setSingleShot(True)
        self._flush_timer.setInterval(settings.keystroke_flush_ms)
        self._flush_timer.timeout.connect(self._on_flush_timeout)

    # ------------------------------------------------------------------
    # Channel lifecycle
    # ------------------------------------------------------------------

    @property
    def is_listening(self) -> bool:
        return self.state == LISTENING

    @property
    def flush_pending(self) -> bool:
        """True while a keystroke flush timer is armed."""
        return self._flush_timer.isActive()

    def register_session_list(self, session_list) -> None:
        """Add a list whose codes count as session duplicates."""
        self._session_lists.append(session_list)

    def select_channel(self, channel: ScanChannel) -> None:
        """
        Select the active channel. Selecting one deactivates the other.

        Raises:
            ScannerStateError: If the arbiter is listening; stop it first
        """
        if self.state != IDLE:
            raise ScannerStateError("Stop scanning before switching the input channel")
        self.channel = channel
        logger.info(f"Input channel set to {channel.value}")

    def set_operator(self, operator: str) -> None:
        """
        Set the encargado responsible for the scans.

        Raises:
            ValidationError: If the name is empty
        """
        if not operator or not operator.strip():
            raise ValidationError("Select the operator (encargado) before scanning")
        self.operator = operator.strip()
        set_operator_context(self.operator)

    def start(self, operator: str) -> None:
        """
        Start listening on the selected channel.

        Args:
            operator: Name of the encargado running the session

        Raises:
            ValidationError: If no operator was selected
            ScannerStateError: If already listening, or the camera channel is
                               selected without a decoder
        """
        if not operator or not operator.strip():
            raise ValidationError("Select the operator (encargado) before scanning")
        if self.state != IDLE:
            raise ScannerStateError("Scanner is already running")
        if self.channel == ScanChannel.CAMERA and self.decoder is None:
            raise ScannerStateError("No camera decoder available")

        self.set_operator(operator)
        self.reset_session()
        self.session_id = datetime.now().strftime('%Y-%m-%d_%H-%M-%S')

        set_session_context(self.session_id)
        set_channel_context(self.channel.value)

        if self.channel == ScanChannel.CAMERA:
            self.decoder.start(self.on_decoded)

        self._set_state(LISTENING)
        logger.info(f"Scanning started by {self.operator} on {self.channel.value}")

    def stop(self) -> None:
        """
        Stop listening.

        Drops any partial keystroke scan and cancels its flush timer. For the
        camera, returns only after the decode loop has stopped. A pending
        confirmation is left for the operator to resolve.
        """
        if self.state == IDLE:
            return

        self._set_state(STOPPING)
        self._flush_timer.stop()
        self._buffer.reset()

        if self.channel == ScanChannel.CAMERA and self.decoder is not None:
            self.decoder.stop()

        self._set_state(IDLE)
        set_channel_context(None)
        logger.info("Scanning stopped")

    def reset_session(self) -> None:
        """Forget the rate-limit and repeat markers of the current session."""
        self.last_event_time = None
        self.last_processed_code = None

    def pause_source(self) -> None:
        """Pause camera emission while a confirmation is on screen."""
        if self.channel == ScanChannel.CAMERA and self.decoder is not None and self.is_listening:
            self.decoder.pause()

    def resume_source(self) -> None:
        if self.channel == ScanChannel.CAMERA and self.decoder is not None and self.is_listening:
            self.decoder.resume()

    # ------------------------------------------------------------------
    # Raw input
    # ------------------------------------------------------------------

    def on_decoded(self, text: str, fmt: ScanFormat) -> None:
        """Decoder callback, called at frame rate while the camera is active."""
        if not self.is_listening or self.channel != ScanChannel.CAMERA:
            return
        self.event_ready.emit(ScanEvent(text, ScanChannel.CAMERA, fmt, self.clock()))

    def key_pressed(self, key: str) -> None:
        """Keydown handler of the hidden scanner input."""
        if not self.is_listening or self.channel != ScanChannel.PHYSICAL:
            return

        text = self._buffer.feed(key, self.clock())
        if text is not None:
            # Enter arrived before the inactivity timer
            self._flush_timer.stop()
            self._emit_physical(text)
        elif self._buffer.state == BUFFERING:
            self._flush_timer.start()

    def _on_flush_timeout(self) -> None:
        text = self._buffer.expire()
        if text is not None and self.is_listening:
            self._emit_physical(text)

    def _emit_physical(self, text: str) -> None:
        self.event_ready.emit(ScanEvent(text, ScanChannel.PHYSICAL, ScanFormat.UNKNOWN, self.clock()))

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admit(self, event: ScanEvent) -> Tuple[Optional[str], str]:
        """
        Decide whether an event may enter the pipeline.

        Checks, in order:
        1. Scanner listening and no confirmation on screen (silent drop)
        2. Rate limit against the last event that passed it (silent drop)
        3. Normalization; empty codes are dropped silently
        4. Same code as the last successfully processed one (silent drop)
        5. Code already in a session list (SESSION_DUPLICATE, shown)

        Args:
            event: Raw scan event

        Returns:
            Tuple of (canonical code or None, ScanStatus value)
        """
        if not self.is_listening:
            return None, ScanStatus.NOT_LISTENING

        if self.gate.is_pending:
            logger.debug(f"Scan dropped while confirmation is pending: {event.raw_text!r}")
            return None, ScanStatus.BLOCKED_BY_CONFIRMATION

        if self.last_event_time is not None and event.observed_at - self.last_event_time < self.min_interval:
            logger.debug(f"Scan dropped by rate limit: {event.raw_text!r}")
            return None, ScanStatus.DROPPED_DUPLICATE
        self.last_event_time = event.observed_at

        code = normalize_code(event.raw_text, event.channel)
        if not code:
            return None, ScanStatus.EMPTY_SCAN

        if code == self.last_processed_code:
            logger.debug(f"Repeated scan of {code} dropped")
            return code, ScanStatus.DROPPED_DUPLICATE

        return self._check_session(code)

    def admit_manual(self, event: ScanEvent) -> Tuple[Optional[str], str]:
        """
        Decide whether a code typed by the operator may enter the pipeline.

        Manual entry needs no listening channel and is not rate limited or
        subject to the repeat check. A pending confirmation still blocks it,
        and codes already in the session are still rejected.
        """
        if self.gate.is_pending:
            return None, ScanStatus.BLOCKED_BY_CONFIRMATION

        code = normalize_code(event.raw_text, event.channel)
        if not code:
            return None, ScanStatus.EMPTY_SCAN
        return self._check_session(code)

    def _check_session(self, code: str) -> Tuple[str, str]:
        if any(session_list.contains(code) for session_list in self._session_lists):
            logger.info(f"Duplicate scan of {code} in current session")
            return code, ScanStatus.SESSION_DUPLICATE
        return code, ScanStatus.ACCEPTED

    def mark_processed(self, code: str) -> None:
        """Remember the last code the pipeline processed successfully."""
        self.last_processed_code = code

    def _set_state(self, state: str) -> None:
        self.state = state
        self.state_changed.emit(state)
