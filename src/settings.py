"""
Workstation settings loaded from config.ini.

Configuration options:
    [Scanner]
    AssignIntervalMs = 500      # Minimum gap between accepted scans per workflow
    QualifyIntervalMs = 2000
    DeliverIntervalMs = 1500
    KeystrokeFlushMs = 150      # Physical scanner inactivity before a flush
    MelPrefix = 4               # MEL code convention: leading digit ...
    MelLength = 11              # ... and exact length
    PlausibleMinLength = 10     # Lengths treated as "non-conventional but plausible"
    PlausibleMaxLength = 14

    [Storage]
    DatabasePath = ~/.package_tracker/packages.db

    [Session]
    Area = QUALITY REVIEW       # Area written to exports and the scan log
    OperatorRole = barra        # Role of the operators offered at scanner start

A missing file or missing keys fall back to the defaults above.
"""

import configparser
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from logger import get_logger
from models import WorkflowMode

logger = get_logger(__name__)

DEFAULT_DB_PATH = Path(os.path.expanduser("~")) / ".package_tracker" / "packages.db"


@dataclass
class TrackerSettings:
    """Resolved settings for one scanning workstation."""
    assign_interval_ms: int = 500
    qualify_interval_ms: int = 2000
    deliver_interval_ms: int = 1500
    keystroke_flush_ms: int = 150
    mel_prefix: str = "4"
    mel_length: int = 11
    plausible_min_length: int = 10
    plausible_max_length: int = 14
    database_path: Path = DEFAULT_DB_PATH
    area: str = "QUALITY REVIEW"
    operator_role: str = "barra"

    def min_interval_for(self, mode: WorkflowMode) -> float:
        """
        Rate-limit window for a workflow, in seconds.

        Qualification uses the longest window because the camera stays on
        one label while the operator rates it.
        """
        interval_ms = {
            WorkflowMode.ASSIGN: self.assign_interval_ms,
            WorkflowMode.QUALIFY: self.qualify_interval_ms,
            WorkflowMode.QUALIFY_BATCH: self.qualify_interval_ms,
            WorkflowMode.DELIVER: self.deliver_interval_ms,
        }[mode]
        return interval_ms / 1000.0

    @property
    def keystroke_flush_seconds(self) -> float:
        return self.keystroke_flush_ms / 1000.0


def load_settings(config_path: Union[str, Path] = "config.ini") -> TrackerSettings:
    """
    Load workstation settings from config.ini.

    Args:
        config_path: Path to the INI file

    Returns:
        TrackerSettings with defaults for anything not configured
    """
    config = configparser.ConfigParser()
    path = Path(config_path)

    if path.exists():
        config.read(path, encoding='utf-8')
        logger.info(f"Loaded settings from {path}")
    else:
        logger.info(f"No config file at {path}, using default settings")

    defaults = TrackerSettings()
    settings = TrackerSettings(
        assign_interval_ms=config.getint('Scanner', 'AssignIntervalMs', fallback=defaults.assign_interval_ms),
        qualify_interval_ms=config.getint('Scanner', 'QualifyIntervalMs', fallback=defaults.qualify_interval_ms),
        deliver_interval_ms=config.getint('Scanner', 'DeliverIntervalMs', fallback=defaults.deliver_interval_ms),
        keystroke_flush_ms=config.getint('Scanner', 'KeystrokeFlushMs', fallback=defaults.keystroke_flush_ms),
        mel_prefix=config.get('Scanner', 'MelPrefix', fallback=defaults.mel_prefix),
        mel_length=config.getint('Scanner', 'MelLength', fallback=defaults.mel_length),
        plausible_min_length=config.getint('Scanner', 'PlausibleMinLength', fallback=defaults.plausible_min_length),
        plausible_max_length=config.getint('Scanner', 'PlausibleMaxLength', fallback=defaults.plausible_max_length),
        database_path=Path(os.path.expanduser(
            config.get('Storage', 'DatabasePath', fallback=str(defaults.database_path))
        )),
        area=config.get('Session', 'Area', fallback=defaults.area),
        operator_role=config.get('Session', 'OperatorRole', fallback=defaults.operator_role),
    )

    logger.debug(f"Scanner settings: {settings}")
    return settings
