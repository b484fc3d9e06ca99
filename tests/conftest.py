"""Shared fixtures for Splitbook tests."""

from datetime import date

import pytest

from splitbook.models import Group, Money, build_item, build_receipt
from splitbook.services.storage import InMemoryAuditStorage, InMemoryReceiptStorage


def usd(minor_units: int) -> Money:
    return Money(minor_units=minor_units, currency="USD")


@pytest.fixture
def group():
    return Group.create(name="Flatmates", owner_id="alice", member_ids=["bob", "carol"])


@pytest.fixture
def receipt(group):
    return build_receipt(
        title="Corner Cafe",
        total_amount=usd(1600),
        receipt_date=date(2024, 3, 1),
        group_id=group.id,
        uploaded_by="alice",
        items=[
            build_item(name="Latte", unit_price=usd(450), quantity=2),
            build_item(name="Bagel", unit_price=usd(301)),
        ],
    )


@pytest.fixture
def storage():
    return InMemoryReceiptStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()
