"""
Reconstruction of discrete scans from a keyboard-wedge scanner.

A physical scanner types the code as fast keystrokes. Some models terminate
with Enter, others do not, so a scan ends either on Enter or after a short
period without keystrokes.

State machine:
    IDLE --printable key--> BUFFERING(text, deadline)
    BUFFERING --printable key--> BUFFERING(text + key, now + flush_interval)
    BUFFERING --Enter / expiry--> IDLE (emits text)
    IDLE --Enter--> IDLE (nothing to emit)
"""

from typing import Optional

IDLE = "IDLE"
BUFFERING = "BUFFERING"

ENTER_KEYS = ("Enter", "Return", "\r", "\n")


class KeystrokeBuffer:
    """
    Explicit buffering state machine for one physical scanner.

    The owner drives it with keystrokes and timer expiries; the buffer never
    starts timers itself.

    Attributes:
        flush_interval (float): Seconds of inactivity after which the buffer
                                flushes
        text (str): Characters collected so far
        deadline (float | None): Clock reading at which the buffer expires,
                                 None while IDLE
    """

    def __init__(self, flush_interval: float = 0.15):
        self.flush_interval = flush_interval
        self.text = ""
        self.deadline: Optional[float] = None

    @property
    def state(self) -> str:
        return BUFFERING if self.text else IDLE

    def feed(self, key: str, now: float) -> Optional[str]:
        """
        Advance the state machine with one keystroke.

        Args:
            key: Key name ("Enter", "Shift", ...) or a single character
            now: Current clock reading in seconds

        Returns:
            The completed scan text when the key was Enter and the buffer held
            characters, otherwise None.
        """
        if key in ENTER_KEYS:
            return self._flush()

        # Modifier and navigation keys arrive as multi-character names
        if len(key) != 1:
            return None

        self.text += key
        self.deadline = now + self.flush_interval
        return None

    def expire(self) -> Optional[str]:
        """Flush on timer expiry. Returns the buffered text, if any."""
        return self._flush()

    def poll(self, now: float) -> Optional[str]:
        """Flush only if the deadline has passed (for callers without timers)."""
        if self.deadline is not None and now >= self.deadline:
            return self._flush()
        return None

    def reset(self):
        """Drop any partial scan and return to IDLE."""
        self.text = ""
        self.deadline = None

    def _flush(self) -> Optional[str]:
        if not self.text:
            self.deadline = None
            return None
        text = self.text
        self.reset()
        return text
