"""
In-memory list of the codes scanned during one session.

Most recent scan first. Any mutation marks the list as changed since the
last export, which keeps the scan log from being written from a stale
export.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from logger import get_logger
from models import LabelDetails
from shared.metadata_utils import format_scan_date, format_scan_time

logger = get_logger(__name__)

EXPORT_COLUMNS = [
    'CODE', 'DATE', 'TIME', 'OPERATOR', 'AREA',
    'SKU', 'QUANTITY', 'PRODUCT', 'ORGANIZATION', 'SALE',
]


@dataclass
class SessionListItem:
    """One scanned code with the details shown next to it."""
    code: str
    label: LabelDetails = field(default_factory=LabelDetails)
    added_at: datetime = field(default_factory=datetime.now)
    packer: Optional[str] = None
    is_mel: bool = False
    status: Optional[str] = None  # Stored status when the code was scanned


class SessionList:
    """
    Ordered collection of SessionListItems keyed by code.

    Attributes:
        name (str): Label used in logs ("pending", "deliveries", ...)
        export_stale (bool): True when the list changed after the last
                             export_frame() call
    """

    def __init__(self, name: str = "session"):
        self.name = name
        self._items: List[SessionListItem] = []
        self.export_stale = False

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    @property
    def items(self) -> List[SessionListItem]:
        return list(self._items)

    @property
    def mel_count(self) -> int:
        return sum(1 for item in self._items if item.is_mel)

    @property
    def other_count(self) -> int:
        return len(self._items) - self.mel_count

    def contains(self, code: str) -> bool:
        return any(item.code == code for item in self._items)

    def codes(self) -> List[str]:
        return [item.code for item in self._items]

    def get(self, code: str) -> Optional[SessionListItem]:
        for item in self._items:
            if item.code == code:
                return item
        return None

    def add(self, item: SessionListItem) -> None:
        """
        Put an item at the top of the list.

        Raises:
            ValueError: If the code is already in the list
        """
        if self.contains(item.code):
            raise ValueError(f"{item.code} is already in the {self.name} list")
        self._items.insert(0, item)
        self.export_stale = True
        logger.debug(f"{self.name}: added {item.code} ({len(self._items)} items)")

    def remove(self, code: str) -> bool:
        """Remove a code. Returns False if it was not in the list."""
        before = len(self._items)
        self._items = [item for item in self._items if item.code != code]
        removed = len(self._items) != before
        if removed:
            self.export_stale = True
            logger.debug(f"{self.name}: removed {code}")
        return removed

    def remove_many(self, codes) -> int:
        targets = set(codes)
        before = len(self._items)
        self._items = [item for item in self._items if item.code not in targets]
        removed = before - len(self._items)
        if removed:
            self.export_stale = True
        return removed

    def clear(self) -> None:
        if self._items:
            logger.info(f"{self.name}: cleared {len(self._items)} items")
        self._items = []
        self.export_stale = False

    def assign_packer(self, packer: str) -> List[str]:
        """
        Associate every item that has no packer yet with ``packer``.

        Returns:
            Codes that were associated
        """
        associated = []
        for item in self._items:
            if item.packer is None:
                item.packer = packer
                associated.append(item.code)
        if associated:
            self.export_stale = True
            logger.info(f"{self.name}: {len(associated)} codes associated with {packer}")
        return associated

    def export_frame(self, operator: Optional[str], area: str) -> pd.DataFrame:
        """
        Build the export table of the session and mark the list as exported.

        Args:
            operator: Encargado running the session
            area: Area name from the workstation settings

        Returns:
            DataFrame with EXPORT_COLUMNS, most recent scan first
        """
        rows = [
            {
                'CODE': item.code,
                'DATE': format_scan_date(item.added_at),
                'TIME': format_scan_time(item.added_at),
                'OPERATOR': operator or '',
                'AREA': area,
                'SKU': item.label.sku,
                'QUANTITY': item.label.quantity,
                'PRODUCT': item.label.product,
                'ORGANIZATION': item.label.organization,
                'SALE': item.label.sale_reference,
            }
            for item in self._items
        ]
        df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
        self.export_stale = False
        logger.info(f"{self.name}: exported {len(df)} rows")
        return df


def frame_to_scan_log_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Map an export frame to record store scan log rows."""
    renamed = df.rename(columns={
        'CODE': 'code',
        'DATE': 'scan_date',
        'TIME': 'scan_time',
        'OPERATOR': 'operator',
        'AREA': 'area',
        'SKU': 'sku',
        'QUANTITY': 'quantity',
        'PRODUCT': 'product',
        'ORGANIZATION': 'organization',
        'SALE': 'sale_reference',
    })
    # NaN from missing label data becomes NULL
    return [
        {key: (None if pd.isna(value) else value) for key, value in record.items()}
        for record in renamed.to_dict('records')
    ]
