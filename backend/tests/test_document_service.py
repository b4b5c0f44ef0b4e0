# Overview: Pytest coverage for receipt number allocation.

from datetime import datetime

from salecore.models import ReceiptSequence
from salecore.services.document_service import format_receipt_number, next_receipt_number


def test_format_pads_sequence():
    assert format_receipt_number("INV", 2026, 42) == "INV-2026-000042"


def test_sequence_starts_at_one_and_increments(repo):
    now = datetime(2026, 10, 18, 9, 30)
    numbers = [next_receipt_number(repo, now=now) for _ in range(3)]

    assert numbers == ["INV-2026-000001", "INV-2026-000002", "INV-2026-000003"]
    assert repo.read_value(ReceiptSequence, 2026, "next_number") == 4


def test_each_year_has_its_own_counter(repo):
    next_receipt_number(repo, now=datetime(2026, 12, 31, 23, 59))
    assert next_receipt_number(repo, now=datetime(2027, 1, 1, 0, 1)) == "INV-2027-000001"
    assert next_receipt_number(repo, now=datetime(2026, 12, 31, 23, 59)) == "INV-2026-000002"


def test_custom_prefix(repo):
    assert next_receipt_number(repo, prefix="POS", now=datetime(2026, 1, 1)) == "POS-2026-000001"
