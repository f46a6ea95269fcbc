"""Lootman models.

Tenancy and identity:
- Business, Location, Customer, Enrollment, LocationVisit

Award targets:
- Reward, CustomerReward, CustomerTag, Voyage, VoyageProgress

Engine state:
- Rule, RuleTrigger, PendingAwardChoice, AwardGrant
"""

from lootman.models.business import Business, Location
from lootman.models.visit import LocationVisit
from lootman.models.customer import Customer
from lootman.models.enrollment import Enrollment
from lootman.models.reward import Reward, CustomerReward, RewardStatus, RewardSource
from lootman.models.tag import CustomerTag, TagSource
from lootman.models.voyage import Voyage, VoyageProgress, VoyageStatus
from lootman.models.rule import Rule, RuleTrigger, TriggerKind
from lootman.models.choice import PendingAwardChoice, ChoiceStatus
from lootman.models.award_grant import AwardGrant

__all__ = [
    "Business",
    "Location",
    "LocationVisit",
    "Customer",
    "Enrollment",
    "Reward",
    "CustomerReward",
    "RewardStatus",
    "RewardSource",
    "CustomerTag",
    "TagSource",
    "Voyage",
    "VoyageProgress",
    "VoyageStatus",
    "Rule",
    "RuleTrigger",
    "TriggerKind",
    "PendingAwardChoice",
    "ChoiceStatus",
    # Idempotency receipts
    "AwardGrant",
]
