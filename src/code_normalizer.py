"""
Code normalization for scanned package labels.

Turns the raw text produced by the camera decoder or the keyboard-wedge
scanner into the canonical package code used as the record store key.
"""

import json
import re
from typing import Any

from logger import get_logger
from models import ScanChannel

logger = get_logger(__name__)

# Vendor wrapper emitted by some physical scanners around an 11-digit code,
# e.g. "ID41234567890TLM"
PHYSICAL_WRAPPER_PATTERN = re.compile(r'^ID(\d{11})TLM$', re.IGNORECASE)

NON_ALPHANUMERIC = re.compile(r'[^0-9A-Za-z]')
DIGITS_ONLY = re.compile(r'[0-9]+')

# All-digit composite symbols longer than this carry the real code in the tail
OVERLONG_DIGITS_THRESHOLD = 30
OVERLONG_TAIL_LENGTH = 12


def unwrap_envelope(text: str) -> str:
    """
    Replace a JSON envelope by the identifier it carries.

    QR labels printed by the assignment station encode an object such as
    ``{"id": "41234567890", "sku": "..."}`` rather than a bare code.

    Args:
        text: Raw decoded text

    Returns:
        The value of the ``id`` field as string, or ``text`` unchanged when it
        is not a JSON object with an ``id``.
    """
    try:
        payload: Any = json.loads(text)
    except (ValueError, TypeError):
        return text

    if isinstance(payload, dict) and payload.get('id'):
        return str(payload['id'])
    return text


def normalize_code(raw_text: str, channel: ScanChannel) -> str:
    """
    Normalize raw scan text into a canonical package code.

    The normalization algorithm:
    1. Unwrap JSON envelopes carrying an ``id`` field
    2. Physical channel only: drop every non-alphanumeric character, then
       reduce ``ID<11 digits>TLM`` (any case) to the 11 digits
    3. All-digit strings longer than 30 characters keep their last 12
    4. Trim surrounding whitespace

    Examples:
        '{"id": "41234567890"}'        -> "41234567890"
        "ID41234567890TLM" (physical)  -> "41234567890"
        "4123-4567 890" (physical)     -> "41234567890"
        35 digits                      -> last 12 digits

    There is no failure mode: in the worst case the trimmed input is returned
    and the lookup reports the code as not found.

    Args:
        raw_text: Decoded text or flushed keystroke buffer
        channel: Channel the text came from

    Returns:
        str: Canonical code
    """
    code = unwrap_envelope(raw_text or '')

    if channel == ScanChannel.PHYSICAL:
        code = NON_ALPHANUMERIC.sub('', code)
        match = PHYSICAL_WRAPPER_PATTERN.match(code)
        if match:
            code = match.group(1)

    if DIGITS_ONLY.fullmatch(code) and len(code) > OVERLONG_DIGITS_THRESHOLD:
        code = code[-OVERLONG_TAIL_LENGTH:]

    code = code.strip()

    if code != raw_text:
        logger.debug(f"Normalized {raw_text!r} -> {code!r} ({channel.value})")
    return code
