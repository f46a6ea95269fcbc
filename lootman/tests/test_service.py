"""
Tests for the Lootman public API (AwardService).

record_trigger:
1. Single-group rule → applied immediately, no choice
2. Multi-group rule → exactly one pending choice
3. Misconfigured rule → skipped, sibling rules still apply
4. Replayed event_ref → earlier outcome, nothing granted twice
5. Voyage steps → progress and completion
6. time_window / location_visit conditions → evaluated against visit history

claim_choice:
7. Location choice → claimed location + awards
8. Second claim → StateConflictError with the original result
9. Lost race → StateConflictError, no double credit
10. Expired / forbidden / invalid selection / not found
"""

from datetime import timedelta
from unittest import mock

import pytest

from lootman.exceptions import (
    AuthorizationError,
    ExpiredError,
    InvalidSelectionError,
    NotFoundError,
    StateConflictError,
)
from lootman.models import (
    AwardGrant,
    ChoiceStatus,
    CustomerReward,
    Enrollment,
    LocationVisit,
    PendingAwardChoice,
    RuleTrigger,
    Voyage,
    VoyageProgress,
    VoyageStatus,
)
from lootman.service import AwardService
from lootman.services.choices import ChoiceService
from lootman.signals import choice_claimed, choice_created, voyage_completed


pytestmark = pytest.mark.django_db


def balance(enrollment):
    enrollment.refresh_from_db()
    return enrollment.points_balance


# ═══════════════════════════════════════════════════════════════════
# record_trigger
# ═══════════════════════════════════════════════════════════════════


class TestRecordTriggerImmediate:
    def test_spend_threshold_bonus(self, enrollment, make_rule, make_event):
        make_rule(
            "SPEND-10",
            [{"type": "bonus_points", "value": 50}],
            trigger_kind="spend_threshold",
            conditions={"type": "spend_amount", "params": {"comparison": ">=", "value": 10}},
        )

        outcome = AwardService.record_trigger(make_event("spend_threshold", amount_q=1500))

        assert balance(enrollment) == 50
        assert outcome.points_balance == 50
        assert outcome.pending_choices == []
        assert [a.points_awarded for a in outcome.awards] == [50]
        assert not PendingAwardChoice.objects.exists()

    def test_rule_trigger_is_recorded(self, enrollment, make_rule, make_event):
        make_rule("VISIT", [{"type": "bonus_points", "value": 10}])

        outcome = AwardService.record_trigger(make_event(location_code="LOC-A"))

        rule_trigger = RuleTrigger.objects.get()
        assert rule_trigger.pk == outcome.rules[0].rule_trigger_id
        assert rule_trigger.points_awarded == 10
        assert rule_trigger.deferred is False
        assert rule_trigger.context["location_id"] == "LOC-A"
        assert rule_trigger.awards_given[0]["type"] == "bonus_points"

    def test_condition_not_met(self, enrollment, make_rule, make_event):
        make_rule(
            "BIG-SPEND",
            [{"type": "bonus_points", "value": 50}],
            trigger_kind="spend_threshold",
            conditions={"type": "spend_amount", "params": {"comparison": ">=", "value": 100}},
        )

        outcome = AwardService.record_trigger(make_event("spend_threshold", amount_q=1500))

        assert outcome.rules == []
        assert balance(enrollment) == 0

    def test_one_group_or_is_immediate(self, enrollment, make_rule, make_event, location_a):
        make_rule("ONLY-A", {
            "operator": "OR",
            "groups": [{"location_id": "LOC-A", "awards": [{"type": "bonus_points", "value": 30}]}],
        })

        AwardService.record_trigger(make_event())

        assert balance(enrollment) == 30
        assert not PendingAwardChoice.objects.exists()

    def test_every_matching_rule_applies(self, enrollment, make_rule, make_event):
        make_rule("VISIT-A", [{"type": "bonus_points", "value": 10}])
        make_rule("VISIT-B", [{"type": "apply_tag", "tag": "regular"}])

        outcome = AwardService.record_trigger(make_event())

        assert sorted(o.rule_code for o in outcome.rules) == ["VISIT-A", "VISIT-B"]
        assert balance(enrollment) == 10

    def test_non_repeatable_rule_fires_once(self, enrollment, make_rule, make_event, now):
        make_rule("WELCOME", [{"type": "bonus_points", "value": 25}])

        AwardService.record_trigger(make_event())
        AwardService.record_trigger(make_event(occurred_at=now + timedelta(days=1)))

        assert balance(enrollment) == 25

    def test_repeatable_rule_with_cooldown(self, enrollment, make_rule, make_event, now):
        make_rule("DAILY", [{"type": "bonus_points", "value": 5}], is_repeatable=True, cooldown_days=1)

        AwardService.record_trigger(make_event())
        AwardService.record_trigger(make_event(occurred_at=now + timedelta(hours=2)))
        AwardService.record_trigger(make_event(occurred_at=now + timedelta(days=2)))

        assert balance(enrollment) == 10

    def test_not_enrolled(self, customer, business, make_event):
        with pytest.raises(NotFoundError):
            AwardService.record_trigger(make_event())


class TestRecordTriggerDeferred:
    def test_location_rule_creates_one_pending_choice(self, enrollment, location_choice_rule, make_event):
        outcome = AwardService.record_trigger(make_event("milestone"))

        choice = PendingAwardChoice.objects.get()
        assert outcome.pending_choices == [choice]
        assert choice.status == ChoiceStatus.PENDING
        assert len(choice.award_options) == 2
        assert choice.expires_at is None
        assert choice.rule_trigger.deferred is True
        assert outcome.awards == []
        assert balance(enrollment) == 0

    def test_choice_window(self, enrollment, location_choice_rule, make_event, now):
        location_choice_rule.choice_window_hours = 24
        location_choice_rule.save()

        outcome = AwardService.record_trigger(make_event("milestone"))

        assert outcome.pending_choices[0].expires_at == now + timedelta(hours=24)

    def test_three_groups_round_trip(self, enrollment, make_rule, make_event, location_a, location_b):
        groups = [
            {"location_id": None, "awards": [{"type": "bonus_points", "value": 25}]},
            {"location_id": "LOC-A", "awards": [{"type": "apply_tag", "tag": "downtown"}]},
            {"location_id": "LOC-B", "awards": [{"type": "multiplier", "value": "2", "duration": "days", "duration_days": 7}]},
        ]
        make_rule("PICK-ONE", {"operator": "OR", "groups": groups})

        AwardService.record_trigger(make_event())

        stored = PendingAwardChoice.objects.get()
        assert stored.award_options == groups
        assert [g.location for g in stored.groups] == [None, "LOC-A", "LOC-B"]

    def test_unknown_location_skips_rule(self, enrollment, make_rule, make_event, location_a):
        make_rule("BAD-LOC", {
            "operator": "OR",
            "groups": [
                {"location_id": "LOC-A", "awards": [{"type": "bonus_points", "value": 5}]},
                {"location_id": "LOC-NOWHERE", "awards": [{"type": "bonus_points", "value": 5}]},
            ],
        })

        outcome = AwardService.record_trigger(make_event())

        assert outcome.rules == []
        assert not PendingAwardChoice.objects.exists()
        assert not RuleTrigger.objects.exists()

    def test_choice_created_signal(self, enrollment, location_choice_rule, make_event, django_capture_on_commit_callbacks):
        received = []
        choice_created.connect(lambda sender, choice, **kw: received.append(choice.pk), weak=False, dispatch_uid="t")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                outcome = AwardService.record_trigger(make_event("milestone"))
        finally:
            choice_created.disconnect(dispatch_uid="t")

        assert received == [outcome.pending_choices[0].pk]


class TestRecordTriggerFailures:
    def test_misconfigured_rule_does_not_block_siblings(self, enrollment, make_rule, make_event, caplog):
        make_rule("BROKEN-AWARD", [{"type": "confetti"}], priority=10)
        make_rule("BROKEN-CONDITION", [{"type": "bonus_points", "value": 1}], conditions={"type": "moon"})
        make_rule("GOOD", [{"type": "bonus_points", "value": 20}])

        outcome = AwardService.record_trigger(make_event())

        assert [o.rule_code for o in outcome.rules] == ["GOOD"]
        assert balance(enrollment) == 20
        assert "BROKEN-AWARD" in caplog.text

    @pytest.mark.parametrize(
        "conditions",
        [
            {"type": "customer_tag", "params": {"tags": 5}},
            {"type": "day_of_week", "params": {"days": 5}},
            {"type": "rule_triggered", "params": {"rule_ids": [{"x": 1}]}},
            {"type": "location_visit", "params": {"location_ids": 7}},
        ],
    )
    def test_wrongly_typed_condition_does_not_block_siblings(self, enrollment, make_rule, make_event, conditions, caplog):
        make_rule("BAD", [{"type": "bonus_points", "value": 1}], conditions=conditions, priority=10)
        make_rule("GOOD", [{"type": "bonus_points", "value": 10}])

        outcome = AwardService.record_trigger(make_event())

        assert [o.rule_code for o in outcome.rules] == ["GOOD"]
        assert balance(enrollment) == 10
        assert "BAD" in caplog.text

    def test_oversized_multiplier_does_not_block_siblings(self, enrollment, make_rule, make_event, caplog):
        make_rule("BIG-MULT", [{"type": "multiplier", "value": 100000}], priority=10)
        make_rule("GOOD", [{"type": "bonus_points", "value": 10}])

        outcome = AwardService.record_trigger(make_event())

        assert [o.rule_code for o in outcome.rules] == ["GOOD"]
        assert balance(enrollment) == 10
        assert enrollment.points_multiplier == 1
        assert "BIG-MULT" in caplog.text

    def test_failing_rule_rolls_back_alone(self, enrollment, make_rule, make_event, reward):
        make_rule(
            "HALF-BROKEN",
            [{"type": "bonus_points", "value": 100}, {"type": "unlock_reward", "reward_id": "MISSING"}],
            priority=10,
        )
        make_rule("GOOD", [{"type": "bonus_points", "value": 20}])

        outcome = AwardService.record_trigger(make_event())

        assert outcome.points_balance == 20
        assert balance(enrollment) == 20
        assert RuleTrigger.objects.filter(rule__code="HALF-BROKEN").count() == 0

    def test_empty_awards_record_nothing(self, enrollment, make_rule, make_event, caplog):
        make_rule("NOTHING", [])

        outcome = AwardService.record_trigger(make_event())

        assert outcome.rules == []
        assert not RuleTrigger.objects.exists()
        assert "NOTHING" in caplog.text


class TestRecordTriggerConditions:
    def test_time_window_is_a_modifier(self, enrollment, make_rule, make_event):
        make_rule(
            "TW",
            [{"type": "bonus_points", "value": 7}],
            conditions={
                "operator": "AND",
                "items": [
                    {"type": "time_window", "params": {"value": 30, "unit": "days"}},
                    {"type": "spend_amount", "params": {"scope": "single_transaction", "comparison": ">=", "value": 1}},
                ],
            },
        )

        AwardService.record_trigger(make_event(amount_q=500))

        assert balance(enrollment) == 7

    def test_location_visit_any_scope(self, enrollment, location_a, make_rule, make_event):
        make_rule(
            "EXPLORER",
            [{"type": "bonus_points", "value": 7}],
            conditions={"type": "location_visit", "params": {"scope": "any", "comparison": ">=", "value": 1}},
        )

        AwardService.record_trigger(make_event(location_code="LOC-A"))

        assert balance(enrollment) == 7

    def test_visit_is_recorded_once_per_event_ref(self, enrollment, make_event):
        AwardService.record_trigger(make_event(location_code="LOC-A", event_ref="txn:1"))
        AwardService.record_trigger(make_event(location_code="LOC-A", event_ref="txn:1"))
        AwardService.record_trigger(make_event(location_code="LOC-A"))
        AwardService.record_trigger(make_event())

        assert LocationVisit.objects.filter(enrollment=enrollment, location_code="LOC-A").count() == 2
        assert LocationVisit.objects.count() == 2

    def test_visit_counts_include_current_visit(self, enrollment, location_a, location_b, make_rule, make_event):
        make_rule(
            "BOTH-STORES",
            [{"type": "bonus_points", "value": 25}],
            conditions={"type": "location_visit", "params": {"scope": "all"}},
        )

        AwardService.record_trigger(make_event(location_code="LOC-A", event_ref="txn:1"))
        assert balance(enrollment) == 0

        AwardService.record_trigger(make_event(location_code="LOC-B", event_ref="txn:2"))
        assert balance(enrollment) == 25

    def test_spend_events_do_not_record_visits(self, enrollment, make_event):
        AwardService.record_trigger(make_event("spend_threshold", location_code="LOC-A"))

        assert not LocationVisit.objects.exists()


class TestRecordTriggerReplay:
    def test_same_event_ref_grants_once(self, enrollment, make_rule, make_event):
        make_rule("SPEND", [{"type": "bonus_points", "value": 50}], trigger_kind="spend_threshold", is_repeatable=True)

        first = AwardService.record_trigger(make_event("spend_threshold", event_ref="txn:42"))
        second = AwardService.record_trigger(make_event("spend_threshold", event_ref="txn:42"))

        assert balance(enrollment) == 50
        assert RuleTrigger.objects.count() == 1
        assert second.rules[0].replayed is True
        assert second.rules[0].awards == first.rules[0].awards

    def test_replay_returns_pending_choice(self, enrollment, location_choice_rule, make_event):
        first = AwardService.record_trigger(make_event("milestone", event_ref="visit:10"))
        second = AwardService.record_trigger(make_event("milestone", event_ref="visit:10"))

        assert PendingAwardChoice.objects.count() == 1
        assert second.pending_choices == first.pending_choices

    def test_different_event_refs_both_grant(self, enrollment, make_rule, make_event):
        make_rule("SPEND", [{"type": "bonus_points", "value": 50}], trigger_kind="spend_threshold", is_repeatable=True)

        AwardService.record_trigger(make_event("spend_threshold", event_ref="txn:1"))
        AwardService.record_trigger(make_event("spend_threshold", event_ref="txn:2"))

        assert balance(enrollment) == 100


class TestVoyages:
    @pytest.fixture
    def voyage(self, business, make_rule):
        voyage = Voyage.objects.create(business=business, code="CITY-TOUR", name="City tour")
        for order, step in enumerate(["STEP-1", "STEP-2"], start=1):
            make_rule(
                step,
                [{"type": "bonus_points", "value": 10}],
                trigger_kind="voyage_step",
                voyage=voyage,
                sequence_order=order,
                conditions={"type": "voyage_step", "params": {"voyage_id": "CITY-TOUR", "step_id": step}},
            )
        return voyage

    def test_steps_progress_and_complete(self, enrollment, voyage, make_event, django_capture_on_commit_callbacks):
        completed = []
        voyage_completed.connect(lambda sender, progress, **kw: completed.append(progress.pk), weak=False, dispatch_uid="t")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                AwardService.record_trigger(make_event("voyage_step", voyage_code="CITY-TOUR", step_code="STEP-1"))
            progress = VoyageProgress.objects.get(voyage=voyage, enrollment=enrollment)
            assert progress.current_step == 1
            assert progress.status == VoyageStatus.IN_PROGRESS

            with django_capture_on_commit_callbacks(execute=True):
                AwardService.record_trigger(make_event("voyage_step", voyage_code="CITY-TOUR", step_code="STEP-2"))
        finally:
            voyage_completed.disconnect(dispatch_uid="t")

        progress.refresh_from_db()
        assert progress.status == VoyageStatus.COMPLETED
        assert progress.completed_rule_codes == ["STEP-1", "STEP-2"]
        assert completed == [progress.pk]
        assert balance(enrollment) == 20


# ═══════════════════════════════════════════════════════════════════
# claim_choice
# ═══════════════════════════════════════════════════════════════════


class TestClaimChoice:
    def test_claim_location_b(self, enrollment, pending_choice):
        result = AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

        pending_choice.refresh_from_db()
        assert pending_choice.status == ChoiceStatus.CLAIMED
        assert pending_choice.claimed_group_index == 1
        assert pending_choice.claimed_location_id == "LOC-B"
        assert pending_choice.claimed_at is not None
        assert pending_choice.awards_given[0]["points_awarded"] == 100
        assert balance(enrollment) == 100
        assert result.location_code == "LOC-B"
        assert result.awards_given[0].balance_after == 100

    def test_claim_location_a_unlocks_reward(self, enrollment, pending_choice, now):
        AwardService.claim_choice(str(pending_choice.pk), "CUST-001", 0, now=now)

        assert CustomerReward.objects.filter(enrollment=enrollment, reward__code="FREE-COFFEE").count() == 1
        assert balance(enrollment) == 0

    def test_second_claim_conflicts_with_original_result(self, enrollment, pending_choice):
        first = AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

        with pytest.raises(StateConflictError) as exc:
            AwardService.claim_choice(pending_choice.pk, "CUST-001", 0)

        assert exc.value.result.group_index == first.group_index
        assert exc.value.as_dict()["data"]["result"]["location_id"] == "LOC-B"
        assert balance(enrollment) == 100

    def test_lost_race_grants_nothing(self, enrollment, pending_choice):
        stale = PendingAwardChoice.objects.select_related("customer", "business", "rule").get(pk=pending_choice.pk)
        AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

        # The loser read the row while it was still pending
        with mock.patch.object(ChoiceService, "_get_for_update", return_value=stale):
            with pytest.raises(StateConflictError):
                AwardService.claim_choice(pending_choice.pk, "CUST-001", 0)

        pending_choice.refresh_from_db()
        assert pending_choice.claimed_group_index == 1
        assert balance(enrollment) == 100
        assert not CustomerReward.objects.exists()

    def test_lost_race_with_same_group_does_not_double_credit(self, enrollment, pending_choice):
        stale = PendingAwardChoice.objects.select_related("customer", "business", "rule").get(pk=pending_choice.pk)
        AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

        with mock.patch.object(ChoiceService, "_get_for_update", return_value=stale):
            with pytest.raises(StateConflictError):
                AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

        assert balance(enrollment) == 100
        assert AwardGrant.objects.filter(source_key=f"choice:{pending_choice.pk}").count() == 1

    def test_other_customer_is_forbidden(self, enrollment, other_enrollment, pending_choice):
        with pytest.raises(AuthorizationError) as exc:
            AwardService.claim_choice(pending_choice.pk, "CUST-002", 1)

        assert exc.value.data == {}
        pending_choice.refresh_from_db()
        assert pending_choice.status == ChoiceStatus.PENDING

    @pytest.mark.parametrize("index", [-1, 2, "1", True, None])
    def test_invalid_selection(self, enrollment, pending_choice, index):
        with pytest.raises(InvalidSelectionError):
            AwardService.claim_choice(pending_choice.pk, "CUST-001", index)

        pending_choice.refresh_from_db()
        assert pending_choice.status == ChoiceStatus.PENDING

    def test_unknown_choice(self, enrollment):
        with pytest.raises(NotFoundError):
            AwardService.claim_choice("00000000-0000-0000-0000-000000000000", "CUST-001", 0)

    def test_malformed_id(self, enrollment):
        with pytest.raises(NotFoundError):
            AwardService.claim_choice("not-a-uuid", "CUST-001", 0)

    def test_claimed_signal(self, enrollment, pending_choice, django_capture_on_commit_callbacks):
        received = []
        choice_claimed.connect(lambda sender, result, **kw: received.append(result.group_index), weak=False, dispatch_uid="t")
        try:
            with django_capture_on_commit_callbacks(execute=True):
                AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)
        finally:
            choice_claimed.disconnect(dispatch_uid="t")

        assert received == [1]


class TestClaimExpiry:
    @pytest.fixture
    def expiring_choice(self, pending_choice, now):
        pending_choice.expires_at = now + timedelta(hours=24)
        pending_choice.save()
        return pending_choice

    def test_claim_at_expiry_succeeds(self, enrollment, expiring_choice, now):
        AwardService.claim_choice(expiring_choice.pk, "CUST-001", 1, now=now + timedelta(hours=24))

        expiring_choice.refresh_from_db()
        assert expiring_choice.status == ChoiceStatus.CLAIMED

    def test_claim_after_expiry(self, enrollment, expiring_choice, now):
        with pytest.raises(ExpiredError):
            AwardService.claim_choice(expiring_choice.pk, "CUST-001", 1, now=now + timedelta(hours=25))

        expiring_choice.refresh_from_db()
        assert expiring_choice.status == ChoiceStatus.EXPIRED
        assert expiring_choice.resolved_at is not None
        assert balance(enrollment) == 0

    def test_claim_after_sweep_conflicts(self, enrollment, expiring_choice, now):
        AwardService.expire_choices(now=now + timedelta(hours=25))

        with pytest.raises(StateConflictError):
            AwardService.claim_choice(expiring_choice.pk, "CUST-001", 1, now=now + timedelta(hours=26))


# ═══════════════════════════════════════════════════════════════════
# Listing, cancelling, sweeping
# ═══════════════════════════════════════════════════════════════════


class TestListPendingChoices:
    def test_lists_own_pending(self, enrollment, other_enrollment, pending_choice):
        assert AwardService.list_pending_choices("CUST-001", "BIZ-001") == [pending_choice]
        assert AwardService.list_pending_choices("CUST-002", "BIZ-001") == []

    def test_excludes_claimed(self, enrollment, pending_choice):
        AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)
        assert AwardService.list_pending_choices("CUST-001", "BIZ-001") == []

    def test_expired_are_swept_on_read(self, enrollment, pending_choice, now):
        pending_choice.expires_at = now
        pending_choice.save()

        assert AwardService.list_pending_choices("CUST-001", "BIZ-001", now=now + timedelta(minutes=1)) == []
        pending_choice.refresh_from_db()
        assert pending_choice.status == ChoiceStatus.EXPIRED

    def test_expired_hidden_without_sweep(self, enrollment, pending_choice, now, settings):
        settings.LOOTMAN = {"EXPIRE_ON_READ": False}
        pending_choice.expires_at = now
        pending_choice.save()

        assert AwardService.list_pending_choices("CUST-001", "BIZ-001", now=now + timedelta(minutes=1)) == []
        pending_choice.refresh_from_db()
        assert pending_choice.status == ChoiceStatus.PENDING


class TestCancelAndSweep:
    def test_cancel(self, enrollment, pending_choice):
        AwardService.cancel_choice(pending_choice.pk, reason="duplicate")

        pending_choice.refresh_from_db()
        assert pending_choice.status == ChoiceStatus.CANCELLED
        with pytest.raises(StateConflictError):
            AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

    def test_cancel_resolved_conflicts(self, enrollment, pending_choice):
        AwardService.claim_choice(pending_choice.pk, "CUST-001", 1)

        with pytest.raises(StateConflictError):
            AwardService.cancel_choice(pending_choice.pk)

    def test_cancel_unknown(self, db):
        with pytest.raises(NotFoundError):
            AwardService.cancel_choice("00000000-0000-0000-0000-000000000000")

    def test_sweep_only_touches_overdue(self, enrollment, pending_choice, now):
        pending_choice.expires_at = now
        pending_choice.save()

        assert AwardService.expire_choices(now=now) == 0
        assert AwardService.expire_choices(now=now + timedelta(seconds=1)) == 1
        assert AwardService.expire_choices(now=now + timedelta(seconds=2)) == 0


class TestEnrollAndManualGrant:
    def test_enroll_is_idempotent(self, customer, business):
        first = AwardService.enroll("CUST-001", "BIZ-001")
        second = AwardService.enroll("CUST-001", "BIZ-001")

        assert first == second
        assert Enrollment.objects.count() == 1

    def test_enroll_unknown_business(self, customer):
        with pytest.raises(NotFoundError) as exc:
            AwardService.enroll("CUST-001", "NOPE")
        assert exc.value.code == "BUSINESS_NOT_FOUND"

    def test_apply_awards(self, enrollment):
        AwardService.apply_awards("CUST-001", "BIZ-001", [{"type": "bonus_points", "value": 15}], source_key="goodwill:1")
        AwardService.apply_awards("CUST-001", "BIZ-001", [{"type": "bonus_points", "value": 15}], source_key="goodwill:1")

        assert balance(enrollment) == 15
