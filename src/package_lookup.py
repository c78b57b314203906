"""
Lookup and validation of a canonical code against the record store.
"""

from dataclasses import dataclass
from typing import Optional

from exceptions import RecordNotFoundError, StoreError
from logger import get_logger
from models import PackageRecord, PackageStatus, ScanStatus

logger = get_logger(__name__)


@dataclass
class LookupResult:
    """
    Classified result of a lookup.

    status is one of ScanStatus.FOUND, UNASSIGNED, BLOCKED or LOOKUP_FAILED.
    BLOCKED carries the record so the caller can show who reported it.
    """
    status: str
    code: str
    record: Optional[PackageRecord] = None
    message: str = ""


def lookup_package(store, code: str) -> LookupResult:
    """
    Fetch the record for a code and classify the result.

    Never raises for store failures: they become LOOKUP_FAILED and no
    transition is attempted afterwards.
    """
    try:
        record = store.get(code)
    except RecordNotFoundError:
        return LookupResult(ScanStatus.UNASSIGNED, code, message=f"Package {code} has not been assigned")
    except StoreError as e:
        logger.error(f"Lookup failed for {code}: {e}")
        return LookupResult(ScanStatus.LOOKUP_FAILED, code, message=str(e))

    if record.status == PackageStatus.REPORTED:
        return LookupResult(
            ScanStatus.BLOCKED,
            code,
            record,
            f"Package {code} was previously reported: {record.report_details or 'no details'}",
        )

    return LookupResult(ScanStatus.FOUND, code, record)
