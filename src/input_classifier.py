"""
Input classification for canonical codes.

Decides whether a scanned string is an operator name, a package code that can
be accepted straight away, or a package code the operator has to confirm.

Camera-decoded 2D symbols and keyboard-wedge input have very different
reliability, so a malformed or accidental read must never mutate state
without the operator seeing it first.
"""

import re
from dataclasses import dataclass
from typing import Optional

from logger import get_logger
from models import ScanChannel, ScanFormat
from settings import TrackerSettings

logger = get_logger(__name__)

# Classification kinds
KIND_NAME = "NAME"
KIND_PACKAGE = "PACKAGE"

# Confidence tiers
TIER_HIGH = "HIGH"
TIER_NON_CONVENTIONAL = "NON_CONVENTIONAL"
TIER_OUTSIDE_EXPECTED_LENGTH = "OUTSIDE_EXPECTED_LENGTH"

_NUMERIC = re.compile(r'[+-]?(\d+\.?\d*|\.\d+)')


@dataclass(frozen=True)
class Classification:
    """Result of classifying one canonical code."""
    kind: str
    tier: Optional[str] = None
    title: str = ""
    message: str = ""

    @property
    def is_name(self) -> bool:
        return self.kind == KIND_NAME

    @property
    def requires_confirmation(self) -> bool:
        return self.kind == KIND_PACKAGE and self.tier != TIER_HIGH


def is_numeric(text: str) -> bool:
    """True for plain decimal numbers such as "123", "-4.5" or ".5"."""
    return bool(_NUMERIC.fullmatch(text.strip()))


def is_name_token(code: str) -> bool:
    """
    Check whether a scan is an operator name rather than a package code.

    Packers wear a QR badge with their full name; scanning it in the
    assignment workflow assigns the pending codes to that packer.

    A name token is not purely numeric, has at least one interior space and is
    longer than 5 characters.
    """
    trimmed = code.strip()
    return (not is_numeric(trimmed)) and ' ' in trimmed and len(trimmed) > 5


def is_mel_code(code: str, settings: TrackerSettings) -> bool:
    """True when the code follows the MEL convention (prefix digit + fixed length)."""
    return code.startswith(settings.mel_prefix) and len(code) == settings.mel_length


def classify_code(
    code: str,
    channel: ScanChannel,
    fmt: ScanFormat,
    settings: TrackerSettings,
    allow_names: bool = True,
) -> Classification:
    """
    Classify a canonical code and assign its confidence tier.

    Rules:
    - Name token (only when ``allow_names``): kind NAME, no confirmation
    - MEL code read as a linear barcode or from the physical scanner:
      HIGH confidence, auto-accepted
    - Anything else needs confirmation; the message depends on whether the
      length is plausible for a package code (NON_CONVENTIONAL) or not
      (OUTSIDE_EXPECTED_LENGTH). Gating is identical for both tiers.

    Args:
        code: Canonical code
        channel: Channel the code was read from
        fmt: Format hint from the decoder
        settings: MEL convention and plausible length range
        allow_names: Whether this workflow accepts operator-name scans

    Returns:
        Classification
    """
    if allow_names and is_name_token(code):
        return Classification(kind=KIND_NAME)

    reliable_source = fmt == ScanFormat.BARCODE or channel == ScanChannel.PHYSICAL

    if is_mel_code(code, settings) and reliable_source:
        return Classification(kind=KIND_PACKAGE, tier=TIER_HIGH)

    if settings.plausible_min_length <= len(code) <= settings.plausible_max_length:
        if is_mel_code(code, settings):
            # MEL shape but read from a 2D symbol or an unknown format
            message = f"Code {code} was not read from a barcode. Add it anyway?"
        else:
            message = f"Code {code} is not a MEL code. Add it anyway?"
        result = Classification(
            kind=KIND_PACKAGE,
            tier=TIER_NON_CONVENTIONAL,
            title="Warning",
            message=message,
        )
    else:
        result = Classification(
            kind=KIND_PACKAGE,
            tier=TIER_OUTSIDE_EXPECTED_LENGTH,
            title="Confirm code",
            message=f"The following code was detected: {code}. Add it to the log?",
        )

    logger.debug(f"Code {code} classified as {result.tier} ({channel.value}/{fmt.value})")
    return result
