"""
Pytest configuration file for Package Tracker tests.

This file sets up the Python path to ensure all tests can import
from both the 'src' and 'shared' directories, and provides the shared
fixtures for the scan pipeline: settings backed by a temporary database,
a controllable clock and a fake camera decoder.
"""

import os
import sys
from pathlib import Path

import pytest

# Run Qt headless unless a platform is chosen explicitly
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# Get the repository root directory (parent of tests directory)
repo_root = Path(__file__).parent.parent

# Add repository root to sys.path (for 'shared' module)
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

# Add src directory to sys.path (for src modules)
src_dir = repo_root / 'src'
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from confirmation_gate import ConfirmationGate  # noqa: E402
from decoder import BaseDecoder  # noqa: E402
from lifecycle import PackageLifecycle  # noqa: E402
from models import LabelDetails, WorkflowMode  # noqa: E402
from record_store import PackageStore  # noqa: E402
from scan_arbiter import ScanArbiter  # noqa: E402
from scan_pipeline import ScanPipeline  # noqa: E402
from settings import TrackerSettings  # noqa: E402

# Codes following the MEL convention (prefix 4, length 11)
MEL_A = "41234567890"
MEL_B = "41234567891"
MEL_C = "41234567892"


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeTimestamps:
    """ISO timestamp source returning a new value on every call."""

    def __init__(self):
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return f"2025-11-05T14:30:{self.calls:02d}+00:00"


class FakeDecoder(BaseDecoder):
    """Camera decoder stand-in recording the arbiter's calls."""

    def __init__(self):
        self.on_decoded = None
        self.calls = []
        self._scanning = False

    def start(self, on_decoded):
        self.on_decoded = on_decoded
        self._scanning = True
        self.calls.append('start')

    def pause(self):
        self.calls.append('pause')

    def resume(self):
        self.calls.append('resume')

    def stop(self):
        self._scanning = False
        self.calls.append('stop')

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    def emit(self, text, fmt):
        self.on_decoded(text, fmt)


@pytest.fixture
def settings(tmp_path):
    return TrackerSettings(database_path=tmp_path / "packages.db")


@pytest.fixture
def store(settings):
    return PackageStore(settings.database_path)


@pytest.fixture
def timestamps():
    return FakeTimestamps()


@pytest.fixture
def lifecycle(store, timestamps):
    return PackageLifecycle(store, clock=timestamps)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def decoder():
    return FakeDecoder()


@pytest.fixture
def gate(qapp):
    return ConfirmationGate()


@pytest.fixture
def arbiter(qapp, settings, gate, decoder, clock):
    return ScanArbiter(settings, gate, decoder=decoder, clock=clock)


@pytest.fixture
def pipeline(settings, arbiter, gate, store, lifecycle):
    return ScanPipeline(settings, arbiter, gate, store, lifecycle, mode=WorkflowMode.ASSIGN)


@pytest.fixture
def label():
    return LabelDetails(
        sku="SKU-001",
        product="Ceramic Mug",
        quantity=2,
        organization="Central Store",
        sale_reference="V-1001",
    )
