"""Lootman exceptions."""


class LootmanError(Exception):
    """
    Structured exception for award operations.

    Carries a stable ``code``, a human ``message`` and free-form ``data``.
    ``status`` is the HTTP-equivalent used at the API boundary.

    Usage:
        try:
            AwardService.claim_choice(choice_id, "CUST-001", 0)
        except LootmanError as e:
            if e.code == "CHOICE_EXPIRED":
                explain_expiry()
    """

    status = 400

    _default_messages = {
        "RULE_MISCONFIGURED": "Rule configuration is invalid",
        "INVALID_AWARD": "Award definition is invalid",
        "INVALID_CONDITION": "Rule condition is invalid",
        "INVALID_MULTIPLIER_POLICY": "Unknown multiplier policy",
        "ENROLLMENT_NOT_FOUND": "Customer not enrolled with this business",
        "CUSTOMER_NOT_FOUND": "Customer not found",
        "BUSINESS_NOT_FOUND": "Business not found",
        "CHOICE_NOT_FOUND": "Award choice not found",
        "REWARD_NOT_FOUND": "Reward not found",
        "CHOICE_FORBIDDEN": "Not allowed to access this award choice",
        "CHOICE_ALREADY_RESOLVED": "Award choice already resolved",
        "CHOICE_EXPIRED": "This award choice has expired",
        "INVALID_GROUP": "Invalid group index",
    }

    def __init__(self, code: str, message: str | None = None, **data):
        self.code = code
        self.message = message or self._default_messages.get(code, code)
        self.data = data
        super().__init__(f"{code}: {self.message}")

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "data": self.data}


class ConfigurationError(LootmanError):
    """Malformed rule, condition or award template. Logged, never user-facing."""

    status = 422


class NotFoundError(LootmanError):
    status = 404


class AuthorizationError(LootmanError):
    """Customer tried to touch a choice that is not theirs."""

    status = 403

    def __init__(self, code: str = "CHOICE_FORBIDDEN", message: str | None = None):
        # No data: the error must not describe the choice to its non-owner
        super().__init__(code, message)


class StateConflictError(LootmanError):
    """
    Choice is no longer pending (claimed, expired, cancelled, or a concurrent
    claim won the race).

    ``result`` holds the original ClaimResult when the same customer retries
    an already-claimed choice.
    """

    status = 409

    def __init__(self, code: str = "CHOICE_ALREADY_RESOLVED", message: str | None = None, result=None, **data):
        self.result = result
        super().__init__(code, message, **data)

    def as_dict(self) -> dict:
        d = super().as_dict()
        if self.result is not None:
            d["data"]["result"] = self.result.as_dict()
        return d


class ExpiredError(LootmanError):
    status = 410


class InvalidSelectionError(LootmanError):
    status = 400
