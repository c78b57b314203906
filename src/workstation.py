"""
Assembly of one scanning workstation.

Builds the settings, record store, lifecycle, confirmation gate, scan arbiter
and scan pipeline, and connects the arbiter's events to the pipeline.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from confirmation_gate import ConfirmationGate
from decoder import BaseDecoder
from lifecycle import PackageLifecycle
from logger import get_logger
from models import WorkflowMode
from record_store import PackageStore
from scan_arbiter import ScanArbiter
from scan_pipeline import ScanPipeline
from settings import TrackerSettings, load_settings

logger = get_logger(__name__)


@dataclass
class Workstation:
    """Components of a running workstation, wired together."""
    settings: TrackerSettings
    store: PackageStore
    lifecycle: PackageLifecycle
    gate: ConfirmationGate
    arbiter: ScanArbiter
    pipeline: ScanPipeline

    def operators(self):
        """Operators offered when starting the scanner."""
        return self.store.list_operators(self.settings.operator_role)


def create_workstation(
    config_path: Union[str, Path] = "config.ini",
    decoder: Optional[BaseDecoder] = None,
    mode: WorkflowMode = WorkflowMode.ASSIGN,
    settings: Optional[TrackerSettings] = None,
) -> Workstation:
    """
    Build a workstation from config.ini.

    Args:
        config_path: INI file with the [Scanner], [Storage] and [Session] sections
        decoder: Camera decoder adapter; without one only the physical scanner
                 channel can be started
        mode: Initial workflow
        settings: Pre-built settings, overriding config_path

    Returns:
        Workstation
    """
    settings = settings or load_settings(config_path)
    store = PackageStore(settings.database_path)
    lifecycle = PackageLifecycle(store)
    gate = ConfirmationGate()
    arbiter = ScanArbiter(settings, gate, decoder=decoder)
    pipeline = ScanPipeline(settings, arbiter, gate, store, lifecycle, mode=mode)

    arbiter.event_ready.connect(pipeline.handle_event)

    logger.info(f"Workstation ready ({mode.value}, store at {settings.database_path})")
    return Workstation(settings, store, lifecycle, gate, arbiter, pipeline)
