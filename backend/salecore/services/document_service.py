# Overview: Receipt number allocation.

from __future__ import annotations

from datetime import datetime

from ..models import ReceiptSequence
from salecore.time_utils import utcnow
from .concurrency import run_with_retry


def format_receipt_number(prefix: str, year: int, sequence: int, pad: int = 6) -> str:
    return f"{prefix}-{year}-{sequence:0{pad}d}"


def next_receipt_number(repo, *, prefix: str = "INV", now: datetime | None = None) -> str:
    """
    Allocate the next receipt number for the current year.

    The per-year counter is advanced by compare-and-swap, so concurrent
    callers never receive the same number. The first caller of a year
    creates the counter row; losing that insert race falls back to the CAS
    path.
    """
    year = (now or utcnow()).year

    def _op() -> str:
        if repo.get(ReceiptSequence, year) is None:
            if repo.insert_if_absent(ReceiptSequence(year=year, next_number=2)):
                return format_receipt_number(prefix, year, 1)

        result = repo.adjust(ReceiptSequence, year, "next_number", 1)
        # adjust returns (previous, new); previous is the number being handed out
        return format_receipt_number(prefix, year, result[0])

    return run_with_retry(_op, session=repo.session)
