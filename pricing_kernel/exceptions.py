"""
Typed Exception Hierarchy for the Pricing Kernel.

Every error a caller can act on has its own class, a static ``code``
class attribute (machine-readable, API-safe), and structured attributes
carrying the offending data.  Callers catch by type and report by code;
they never parse messages.

    PricingEngineError (base)
    |
    +-- InvalidInputError
    |   +-- AmountCeilingExceededError
    |
    +-- NotFoundError
    |
    +-- ConfigurationError

Code                        | When Raised
----------------------------|-----------------------------------------------
INVALID_INPUT               | Non-positive quantity/price, percentage outside
                            | [0, 100], float where Decimal is required,
                            | contradictory fixed+percentage tier
AMOUNT_CEILING_EXCEEDED     | Line amount above the configured ceiling
NOT_FOUND                   | Product, customer, rate or group id absent
                            | from the supplied snapshot
INVALID_CONFIGURATION       | Engine settings failed validation

Non-fatal conditions (ambiguous exemptions, no matching jurisdiction, a tax
source not effective on the evaluation date) are not exceptions.  They are
reported as ``WarningCode`` values on the calculation result.

Bulk calculation converts any ``PricingEngineError`` into a failed line
item carrying ``code`` so the rest of the batch keeps going.
"""

from typing import Any


class PricingEngineError(Exception):
    """
    Base exception for all pricing engine errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "PRICING_ENGINE_ERROR"


class InvalidInputError(PricingEngineError):
    """An input value is outside the range the engine accepts."""

    code: str = "INVALID_INPUT"

    def __init__(self, field: str, reason: str, value: Any = None):
        self.field = field
        self.reason = reason
        self.value = None if value is None else str(value)
        detail = f" (got {self.value})" if value is not None else ""
        super().__init__(f"Invalid {field}: {reason}{detail}")


class AmountCeilingExceededError(InvalidInputError):
    """A line amount exceeds the configured sanity ceiling."""

    code: str = "AMOUNT_CEILING_EXCEEDED"

    def __init__(self, field: str, amount: Any, ceiling: Any):
        self.amount = str(amount)
        self.ceiling = str(ceiling)
        super().__init__(field, f"exceeds ceiling {ceiling}", amount)


class NotFoundError(PricingEngineError):
    """A referenced entity is absent from the supplied snapshot."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class ConfigurationError(PricingEngineError):
    """Engine settings are malformed."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, setting: str, reason: str):
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid setting {setting}: {reason}")
