"""Pytest fixtures for Lootman tests."""

from datetime import datetime, timezone as dt_timezone

import pytest

from lootman.models import (
    Business,
    Customer,
    Enrollment,
    Location,
    Reward,
    Rule,
)
from lootman.services.evaluator import TriggerEvent


# Saturday 2026-01-03 10:00 in New York
NOW = datetime(2026, 1, 3, 15, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def business(db):
    """Create a test business."""
    return Business.objects.create(
        code="BIZ-001",
        name="Harbor Coffee",
        timezone="America/New_York",
    )


@pytest.fixture
def other_business(db):
    return Business.objects.create(code="BIZ-002", name="Other Bakery")


@pytest.fixture
def location_a(business):
    return Location.objects.create(business=business, code="LOC-A", name="Downtown", icon="🏙")


@pytest.fixture
def location_b(business):
    return Location.objects.create(business=business, code="LOC-B", name="Harbor", icon="⚓")


@pytest.fixture
def location_c(business):
    return Location.objects.create(business=business, code="LOC-C", name="Airport")


@pytest.fixture
def customer(db):
    """Create a test customer."""
    return Customer.objects.create(code="CUST-001", name="Ana Lima", phone="5550001")


@pytest.fixture
def other_customer(db):
    return Customer.objects.create(code="CUST-002", name="Ben Ortiz", phone="5550002")


@pytest.fixture
def enrollment(customer, business):
    """CUST-001 enrolled at BIZ-001 with zero points."""
    return Enrollment.objects.create(customer=customer, business=business)


@pytest.fixture
def other_enrollment(other_customer, business):
    return Enrollment.objects.create(customer=other_customer, business=business)


@pytest.fixture
def reward(business):
    """Create a reward redeemable for 30 days."""
    return Reward.objects.create(
        business=business,
        code="FREE-COFFEE",
        name="Free coffee",
        expires_days=30,
    )


@pytest.fixture
def make_rule(business):
    """Factory for active rules of BIZ-001."""

    def _make(code, awards, trigger_kind="visit", **kwargs):
        kwargs.setdefault("name", code.replace("-", " ").title())
        kwargs.setdefault("is_active", True)
        return Rule.objects.create(
            business=business,
            code=code,
            trigger_kind=trigger_kind,
            awards=awards,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_event():
    """Factory for trigger events of CUST-001 at BIZ-001."""

    def _make(kind="visit", **kwargs):
        kwargs.setdefault("customer_code", "CUST-001")
        kwargs.setdefault("business_code", "BIZ-001")
        kwargs.setdefault("occurred_at", NOW)
        return TriggerEvent(kind=kind, **kwargs)

    return _make


@pytest.fixture
def location_choice_rule(make_rule, reward, location_a, location_b):
    """Milestone rule: Location A unlocks a reward, Location B gives 100 points."""
    return make_rule(
        "TENTH-VISIT",
        {
            "operator": "OR",
            "groups": [
                {"location_id": "LOC-A", "awards": [{"type": "unlock_reward", "reward_id": "FREE-COFFEE"}]},
                {"location_id": "LOC-B", "awards": [{"type": "bonus_points", "value": 100}]},
            ],
        },
        trigger_kind="milestone",
    )


@pytest.fixture
def pending_choice(enrollment, location_choice_rule, make_event):
    """A pending two-option choice for CUST-001."""
    from lootman.service import AwardService

    outcome = AwardService.record_trigger(make_event("milestone"))
    return outcome.pending_choices[0]
