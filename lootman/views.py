"""
Lootman JSON endpoints.

Customer endpoints read the customer code from the X-Customer-Code header,
set by the upstream authentication layer:

    GET  choices/?business=CODE      - Pending choices
    GET  choices/<uuid>/             - One choice
    POST choices/<uuid>/claim/       - {"group_index": n}

Staff/collaborator endpoint:

    POST triggers/                   - Record a trigger event

Errors render as {"success": false, "error": {"code", "message", "data"}}
with the LootmanError status.
"""

import json
import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.utils.dateparse import parse_datetime
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from lootman.exceptions import LootmanError
from lootman.models import Location, PendingAwardChoice
from lootman.service import AwardService
from lootman.services.evaluator import TriggerEvent

logger = logging.getLogger(__name__)

CUSTOMER_HEADER = "X-Customer-Code"


def error_response(code: str, message: str, status: int, **data) -> JsonResponse:
    return JsonResponse(
        {"success": False, "error": {"code": code, "message": message, "data": data}},
        status=status,
    )


def lootman_error_response(exc: LootmanError) -> JsonResponse:
    return JsonResponse({"success": False, "error": exc.as_dict()}, status=exc.status)


def _parse_body(request) -> dict:
    try:
        data = json.loads(request.body or b"{}")
    except (json.JSONDecodeError, ValueError):
        raise ValueError("Invalid JSON")
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object")
    return data


def _locations(choices) -> dict:
    codes = {g.location for choice in choices for g in choice.groups if g.location}
    return {loc.code: loc for loc in Location.objects.filter(code__in=codes)}


def serialize_choice(choice: PendingAwardChoice, locations: dict | None = None) -> dict:
    """Choice payload for the "choose your reward" UI."""
    groups = choice.groups
    if locations is None:
        locations = _locations([choice])

    options = []
    for index, group in enumerate(groups):
        location = locations.get(group.location) if group.location else None
        options.append({
            "index": index,
            "location_id": group.location,
            "location_name": location.name if location else None,
            "location_icon": location.icon if location else None,
            "awards": [award.to_dict() for award in group.awards],
            "descriptions": group.describe(),
        })

    return {
        "id": str(choice.pk),
        "rule_id": choice.rule.code,
        "rule_name": choice.rule.display_name or choice.rule.name,
        "rule_icon": choice.rule.icon,
        "status": choice.status,
        "options": options,
        "claimed_group_index": choice.claimed_group_index,
        "claimed_location_id": choice.claimed_location_id,
        "awards_given": choice.awards_given,
        "created_at": choice.created_at.isoformat(),
        "expires_at": choice.expires_at.isoformat() if choice.expires_at else None,
    }


class CustomerView(View):
    """Base for endpoints acting on behalf of the header-identified customer."""

    def dispatch(self, request, *args, **kwargs):
        self.customer_code = request.headers.get(CUSTOMER_HEADER, "").strip()
        if not self.customer_code:
            return error_response("UNAUTHENTICATED", "Customer identity required", 401)
        try:
            return super().dispatch(request, *args, **kwargs)
        except LootmanError as exc:
            return lootman_error_response(exc)
        except ValueError as exc:
            return error_response("BAD_REQUEST", str(exc), 400)


class ChoiceListView(CustomerView):
    """GET pending choices of the customer at one business."""

    def get(self, request):
        business_code = request.GET.get("business", "").strip()
        if not business_code:
            return error_response("BAD_REQUEST", "Missing 'business' parameter", 400)

        choices = AwardService.list_pending_choices(self.customer_code, business_code)
        locations = _locations(choices)

        return JsonResponse({
            "success": True,
            "data": {
                "choices": [serialize_choice(c, locations) for c in choices],
                "total": len(choices),
            },
        })


class ChoiceDetailView(CustomerView):
    def get(self, request, choice_id):
        choice = AwardService.get_choice(choice_id, self.customer_code)
        return JsonResponse({"success": True, "data": serialize_choice(choice)})


@method_decorator(csrf_exempt, name="dispatch")
class ChoiceClaimView(CustomerView):
    """
    POST a claim.

    Expects:
        {"group_index": 0}
    """

    def post(self, request, choice_id):
        data = _parse_body(request)
        group_index = data.get("group_index")
        if isinstance(group_index, bool) or not isinstance(group_index, int):
            return error_response("BAD_REQUEST", "'group_index' must be an integer", 400)

        result = AwardService.claim_choice(choice_id, self.customer_code, group_index)
        return JsonResponse({"success": True, "data": result.as_dict()})


@method_decorator(csrf_exempt, name="dispatch")
class TriggerView(View):
    """
    POST a trigger event (visit-recording collaborator).

    Expects:
        {
            "kind": "visit" | "spend_threshold" | "voyage_step" | "milestone",
            "customer_id": "CUST-001",
            "business_id": "BIZ-001",
            "amount_q": 1250,
            "location_id": "LOC-A",
            "voyage_id": "...", "step_id": "...",
            "event_ref": "txn:123",
            "occurred_at": "2026-01-05T12:00:00Z"
        }
    """

    def post(self, request):
        try:
            event = self._event(_parse_body(request))
            outcome = AwardService.record_trigger(event)
        except LootmanError as exc:
            return lootman_error_response(exc)
        except ValueError as exc:
            logger.warning("Rejected trigger payload: %s", exc)
            return error_response("BAD_REQUEST", str(exc), 400)

        return JsonResponse({"success": True, "data": outcome.as_dict()})

    @staticmethod
    def _event(data: dict) -> TriggerEvent:
        for key in ("kind", "customer_id", "business_id"):
            if not data.get(key):
                raise ValueError(f"Missing '{key}'")

        occurred_at = None
        if data.get("occurred_at"):
            occurred_at = parse_datetime(str(data["occurred_at"]))
            if occurred_at is None or occurred_at.tzinfo is None:
                raise ValueError("'occurred_at' must be an ISO datetime with timezone")

        amount_q = data.get("amount_q", 0)
        if isinstance(amount_q, bool) or not isinstance(amount_q, int):
            raise ValueError("'amount_q' must be an integer (cents)")

        return TriggerEvent(
            kind=str(data["kind"]),
            customer_code=str(data["customer_id"]),
            business_code=str(data["business_id"]),
            amount_q=amount_q,
            location_code=str(data.get("location_id") or ""),
            voyage_code=str(data.get("voyage_id") or ""),
            step_code=str(data.get("step_id") or ""),
            event_ref=str(data.get("event_ref") or ""),
            occurred_at=occurred_at,
            payload=data.get("payload") or {},
        )
