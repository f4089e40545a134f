"""Action execution with closed sentinel and calculation registries."""
import copy
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import structlog

from .conditions import as_number, get_field_value, set_field_value
from .errors import RuleDefinitionError
from .models import Action, ActionType
from .results import ActionOutcome, FieldDirective, FieldFailure

log = structlog.get_logger()


def _title_case(value: str) -> str:
    return " ".join(word.capitalize() for word in value.split(" "))


# Sentinel values recognized in setField/setValue. Each maps to a transform
# of the target field's current value. Any other value is assigned literally.
FIELD_TRANSFORMS: dict[str, Callable[[str], str]] = {
    "TITLE_CASE": _title_case,
    "UPPER_CASE": str.upper,
    "LOWER_CASE": str.lower,
    "TRIM": str.strip,
}

# Resolves to the derived value of the same rule's check table.
LOOKUP_RESULT = "LOOKUP_RESULT"

DEFAULT_TIER_RATES = {
    "platinum": 0.15,
    "gold": 0.10,
    "silver": 0.05,
    "bronze": 0.02,
}


def _field_parameter(parameters: Mapping[str, Any], name: str, default: str) -> str:
    field = parameters.get(name, default)
    if not isinstance(field, str) or not field:
        raise RuleDefinitionError(f"Calculation parameter '{name}' must be a field name")
    return field


def _tier_rates(parameters: Mapping[str, Any]) -> dict[str, float]:
    rates = parameters.get("rates", DEFAULT_TIER_RATES)
    if not isinstance(rates, Mapping):
        raise RuleDefinitionError("Calculation parameter 'rates' must map tiers to rates")
    parsed = {}
    for tier, rate in rates.items():
        number = _as_float(rate)
        if number is None:
            raise RuleDefinitionError(f"Rate for tier '{tier}' is not a number")
        parsed[str(tier).lower()] = number
    return parsed


def _as_float(value: Any) -> float | None:
    """Finite float form of a value, or None."""
    number = as_number(value)
    if number is None:
        return None
    try:
        number = float(number)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _rounded(amount: float) -> float | None:
    return round(amount, 2) if math.isfinite(amount) else None


def calculate_discount(record: Mapping[str, Any], parameters: Mapping[str, Any]) -> float | None:
    """
    Discount amount by customer tier.

    Parameters:
        rates: tier -> rate overrides (defaults to DEFAULT_TIER_RATES)
        tierField: field holding the tier (default "customerTier")
        valueField: field holding the order value (default "orderValue")

    Raises:
        RuleDefinitionError: If a parameter has the wrong shape
    """
    rates = _tier_rates(parameters)
    tier = get_field_value(record, _field_parameter(parameters, "tierField", "customerTier"))
    order_value = _as_float(get_field_value(record, _field_parameter(parameters, "valueField", "orderValue")))
    if order_value is None:
        return None
    rate = rates.get(str(tier).lower(), 0.0) if tier is not None else 0.0
    return _rounded(order_value * rate)


def calculate_line_total(record: Mapping[str, Any], parameters: Mapping[str, Any]) -> float | None:
    """Quantity times unit price."""
    quantity = _as_float(get_field_value(record, _field_parameter(parameters, "quantityField", "quantity")))
    unit_price = _as_float(get_field_value(record, _field_parameter(parameters, "priceField", "unitPrice")))
    if quantity is None or unit_price is None:
        return None
    return _rounded(quantity * unit_price)


CALCULATIONS: dict[str, Callable[[Mapping[str, Any], Mapping[str, Any]], Any]] = {
    "CALCULATED_DISCOUNT": calculate_discount,
    "LINE_TOTAL": calculate_line_total,
}


@dataclass
class LookupValue:
    """Check-table outcome made available to LOOKUP_RESULT."""
    value: Any = None
    matched: bool = False


def resolve_value(
    action: Action,
    record: Mapping[str, Any],
    lookup: LookupValue | None,
) -> tuple[bool, Any]:
    """
    Work out what a setField/setValue action writes.

    Returns:
        (write, value) - write is False when the action degrades to a no-op

    Raises:
        RuleDefinitionError: LOOKUP_RESULT used by a rule without a check table
    """
    value = action.value
    if not isinstance(value, str):
        return True, copy.deepcopy(value)

    if value == LOOKUP_RESULT:
        if lookup is None:
            raise RuleDefinitionError("LOOKUP_RESULT used but the rule has no check table")
        if not lookup.matched:
            return False, None
        return True, lookup.value

    transform = FIELD_TRANSFORMS.get(value)
    if transform is None:
        return True, value

    current = get_field_value(record, action.field)
    if current is None:
        return False, None
    return True, transform(str(current))


def apply_actions(
    actions: Sequence[Action],
    record: Mapping[str, Any],
    conditions_met: bool = True,
    lookup: LookupValue | None = None,
    errors: list[RuleDefinitionError] | None = None,
    location: str = "actions",
) -> ActionOutcome:
    """
    Apply actions in list order to a copy of the record.

    When conditions_met is True every action except `validate` runs, and later
    actions see the writes of earlier ones. When it is False only `validate`
    actions run, each adding a failure for its field.

    Args:
        actions: Actions to apply
        record: Input record (not mutated)
        conditions_met: Outcome of the paired condition set
        lookup: Check-table outcome for LOOKUP_RESULT
        errors: Optional list collecting definition errors
        location: Where the actions sit in the rule, for error reports

    Returns:
        ActionOutcome with the updated record, messages, failures and directives
    """
    outcome = ActionOutcome(record=copy.deepcopy(dict(record)))

    for index, action in enumerate(actions):
        where = f"{location}[{index}]"
        try:
            if not conditions_met:
                if action.type == ActionType.VALIDATE:
                    outcome.failures.append(FieldFailure(field=action.field, message=action.message))
                continue
            _apply_action(action, outcome, lookup)
        except RuleDefinitionError as e:
            e.location = e.location or where
            log.warning("rule.definition_error", error=e.message, location=e.location)
            if errors is not None:
                errors.append(e)

    return outcome


def _apply_action(action: Action, outcome: ActionOutcome, lookup: LookupValue | None):
    """Apply one action to the outcome in place."""
    record = outcome.record

    if action.type in (ActionType.SET_FIELD, ActionType.SET_VALUE):
        write, value = resolve_value(action, record, lookup)
        if write:
            set_field_value(record, action.field, value)

    elif action.type == ActionType.CLEAR_FIELD:
        set_field_value(record, action.field, None)

    elif action.type == ActionType.SHOW_FIELD:
        outcome.directives.append(FieldDirective(field=action.field, visible=True))

    elif action.type == ActionType.HIDE_FIELD:
        outcome.directives.append(FieldDirective(field=action.field, visible=False))

    elif action.type == ActionType.SHOW_MESSAGE:
        outcome.messages.append(action.message)

    elif action.type == ActionType.CALCULATE:
        calculation = CALCULATIONS.get(action.value) if isinstance(action.value, str) else None
        if calculation is None:
            raise RuleDefinitionError(f"Unknown calculation '{action.value}'")
        try:
            result = calculation(record, action.parameters)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise RuleDefinitionError(f"Calculation '{action.value}' failed: {e}") from e
        if result is not None:
            set_field_value(record, action.field, result)

    elif action.type == ActionType.VALIDATE:
        # Conditions held, so the validation passed
        pass

    else:
        raise RuleDefinitionError(f"Unknown action type '{action.type}'")

    log.debug("action.applied", type=action.type, field=action.field)
