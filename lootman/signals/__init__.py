"""
Lootman signals: public event API.

All signals are sent from transaction.on_commit(), so receivers only ever
observe committed state.

Emitted signals:
- award_granted: Emitted by AwardApplier after a batch of awards is applied
- choice_created: Emitted when a multi-group plan becomes a PendingAwardChoice
- choice_claimed: Emitted by ChoiceService.claim()
- choice_expired: Emitted by the expiration sweep and by claims past expiry
- choice_cancelled: Emitted by ChoiceService.cancel()
- voyage_completed: Emitted when the last step of a voyage fires
"""

from django.dispatch import Signal

award_granted = Signal()  # sender=Enrollment, enrollment=, results=, source_key=
choice_created = Signal()  # sender=PendingAwardChoice, choice=
choice_claimed = Signal()  # sender=PendingAwardChoice, choice=, result=
choice_expired = Signal()  # sender=PendingAwardChoice, choice_id=
choice_cancelled = Signal()  # sender=PendingAwardChoice, choice=
voyage_completed = Signal()  # sender=VoyageProgress, progress=
