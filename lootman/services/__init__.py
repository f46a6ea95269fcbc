"""Lootman services.

Engine building blocks, composed by lootman.service.AwardService:
- lootman.services.evaluator: TriggerEvaluator, TriggerEvent, EnrollmentSnapshot
- lootman.services.planner: build_plan, choice_expiry
- lootman.services.applier: AwardApplier
- lootman.services.choices: ChoiceService
- lootman.services.voyages: VoyageService
"""

from lootman.services import evaluator
from lootman.services import planner
from lootman.services import applier
from lootman.services import choices
from lootman.services import voyages

__all__ = ["evaluator", "planner", "applier", "choices", "voyages"]
