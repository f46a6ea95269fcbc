"""
Django Lootman - Award resolution and pending-choice claims.

Usage:
    from lootman import AwardService, TriggerEvent

    outcome = AwardService.record_trigger(
        TriggerEvent(kind="visit", customer_code="CUST-001", business_code="BIZ-001")
    )
    choices = AwardService.list_pending_choices("CUST-001", "BIZ-001")
    result = AwardService.claim_choice(choices[0].pk, "CUST-001", group_index=1)
"""


def __getattr__(name):
    if name == "AwardService":
        from lootman.service import AwardService

        return AwardService
    if name == "TriggerEvent":
        from lootman.services.evaluator import TriggerEvent

        return TriggerEvent
    if name == "LootmanError":
        from lootman.exceptions import LootmanError

        return LootmanError
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["AwardService", "TriggerEvent", "LootmanError"]
__version__ = "0.1.0"
