"""
Single-slot confirmation gate between the scan pipeline and the operator.

When a scanned code needs confirmation the pipeline parks its continuation
here and the presentation layer shows the request. Exactly one of
confirm()/cancel() resumes the pipeline. At most one request is outstanding.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from PySide6.QtCore import QObject, Signal

from exceptions import ConfirmationPendingError
from logger import get_logger

logger = get_logger(__name__)

DecisionCallback = Callable[[bool], Any]


@dataclass(frozen=True)
class PendingConfirmation:
    """The request currently shown to the operator."""
    title: str
    message: str
    code: str


class ConfirmationGate(QObject):
    """
    Request/response channel with a single slot.

    Attributes:
        confirmation_requested (Signal): Emitted with (title, message, code)
                                         when a request is parked
        confirmation_resolved (Signal): Emitted with (code, decision) when
                                        the operator answers
    """
    confirmation_requested = Signal(str, str, str)
    confirmation_resolved = Signal(str, bool)

    def __init__(self, parent: QObject = None):
        super().__init__(parent)
        self._pending: Optional[PendingConfirmation] = None
        self._on_decision: Optional[DecisionCallback] = None

    @property
    def pending(self) -> Optional[PendingConfirmation]:
        return self._pending

    @property
    def is_pending(self) -> bool:
        return self._pending is not None

    def request(self, title: str, message: str, code: str, on_decision: DecisionCallback) -> None:
        """
        Park a confirmation request.

        Args:
            title: Dialog title
            message: Dialog text
            code: Code awaiting the decision
            on_decision: Continuation called with True (confirm) or False
                         (cancel); its return value is handed back by
                         confirm()/cancel()

        Raises:
            ConfirmationPendingError: If a request is already outstanding
        """
        if self._pending is not None:
            logger.error(f"Confirmation for {code} requested while {self._pending.code} is pending")
            raise ConfirmationPendingError(
                f"Confirmation for {self._pending.code} is still pending"
            )

        self._pending = PendingConfirmation(title, message, code)
        self._on_decision = on_decision
        logger.info(f"Awaiting operator confirmation for {code}")
        self.confirmation_requested.emit(title, message, code)

    def confirm(self) -> Any:
        """Resolve the pending request positively."""
        return self._resolve(True)

    def cancel(self) -> Any:
        """Resolve the pending request negatively."""
        return self._resolve(False)

    def _resolve(self, decision: bool) -> Any:
        if self._pending is None:
            logger.warning("Confirmation resolved with no pending request")
            return None

        code = self._pending.code
        on_decision = self._on_decision

        # Free the slot before resuming so the continuation may park a new request
        self._pending = None
        self._on_decision = None

        logger.info(f"Operator {'confirmed' if decision else 'cancelled'} {code}")
        self.confirmation_resolved.emit(code, decision)
        return on_decision(decision)
