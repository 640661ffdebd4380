"""Rule conditions: parsing at the storage boundary and evaluation against an email."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from pydantic import BaseModel, ConfigDict, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ConditionParseError, UnknownFieldError, ValidationError

if TYPE_CHECKING:
    from .models import Email


class ConditionField(str, Enum):
    SENDER = "sender"
    SUBJECT = "subject"
    SNIPPET = "snippet"
    BODY = "body"
    HAS_ATTACHMENT = "hasAttachment"


class Operator(str, Enum):
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"


@dataclass(frozen=True)
class TextCondition:
    """Case-insensitive string test against one email attribute."""

    field: ConditionField
    operator: Operator
    value: str


@dataclass(frozen=True)
class AttachmentCondition:
    """True when the email has at least one attachment."""


@dataclass(frozen=True)
class UnknownCondition:
    """A stored condition on a field this version does not recognize."""

    field: str


Condition = Union[TextCondition, AttachmentCondition, UnknownCondition]


class _ConditionPayload(BaseModel):
    """Shape of one serialized condition."""

    model_config = ConfigDict(extra="ignore")

    field: str
    operator: str | None = None
    value: Any = None


_payload_list = TypeAdapter(list[_ConditionPayload])

_FIELDS = {f.value: f for f in ConditionField}
_OPERATORS = {o.value: o for o in Operator}


def parse_conditions(raw: str | list, strict: bool = True) -> tuple[Condition, ...]:
    """Parse serialized conditions into condition variants.

    ``raw`` may be JSON text or an already-decoded list. In strict mode (rule
    creation and update) every condition must name a known field and operator
    and carry a non-empty value, and the list must not be empty. In lenient
    mode (rules loaded from storage) unknown fields become
    :class:`UnknownCondition`; anything else malformed raises
    :class:`ConditionParseError`.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConditionParseError(f"Invalid rule condition format: {e}") from e

    if not isinstance(raw, list):
        raise ConditionParseError("Conditions must be an array")

    try:
        payloads = _payload_list.validate_python(raw)
    except PydanticValidationError as e:
        raise ConditionParseError(f"Invalid condition format: {e.errors()[0]['msg']}") from e

    if strict and not payloads:
        raise ValidationError("A rule needs at least one condition")

    return tuple(_to_condition(p, strict) for p in payloads)


def _to_condition(payload: _ConditionPayload, strict: bool) -> Condition:
    field = _FIELDS.get(payload.field)
    if field is None:
        if strict:
            raise ValidationError(f"Unknown condition field: {payload.field!r}")
        return UnknownCondition(payload.field)

    if field is ConditionField.HAS_ATTACHMENT:
        return AttachmentCondition()

    operator = _OPERATORS.get(payload.operator or "")
    if operator is None:
        raise ConditionParseError(f"Unknown operator {payload.operator!r} for field {field.value!r}")

    value = payload.value
    if not isinstance(value, str) or not value:
        if strict or not isinstance(value, str):
            raise ConditionParseError(f"Condition on {field.value!r} needs a non-empty value")

    return TextCondition(field=field, operator=operator, value=value)


def serialize_conditions(conditions: tuple[Condition, ...] | list[Condition]) -> str:
    """Render conditions as the canonical JSON stored with a rule."""
    out: list[dict[str, Any]] = []
    for c in conditions:
        if isinstance(c, TextCondition):
            out.append({"field": c.field.value, "operator": c.operator.value, "value": c.value})
        elif isinstance(c, AttachmentCondition):
            out.append({"field": ConditionField.HAS_ATTACHMENT.value, "operator": "equals", "value": "true"})
        else:
            out.append({"field": c.field})
    return json.dumps(out)


def parse_condition_shorthand(text: str) -> dict[str, str]:
    """Parse a ``field:operator:value`` shorthand into a condition payload.

    ``hasAttachment`` needs no operator or value.
    """
    parts = text.split(":", 2)
    if parts[0] == ConditionField.HAS_ATTACHMENT.value:
        return {"field": parts[0], "operator": "equals", "value": "true"}
    if len(parts) != 3:
        raise ValidationError(f"Expected field:operator:value, got {text!r}")
    field, operator, value = parts
    return {"field": field, "operator": operator, "value": value}


def resolve_field(field: ConditionField, email: Email) -> str:
    """Return the email attribute a text condition is tested against."""
    if field is ConditionField.SENDER:
        return email.sender or ""
    if field is ConditionField.SUBJECT:
        return email.subject or ""
    if field is ConditionField.SNIPPET:
        return email.snippet or email.body or ""
    if field is ConditionField.BODY:
        return email.body or email.snippet or ""
    raise ValueError(f"{field.value!r} is not a text field")


def evaluate(condition: Condition, email: Email, unknown_field_policy: str = "match") -> bool:
    """Decide whether a single condition holds for an email."""
    if isinstance(condition, AttachmentCondition):
        return email.has_attachment

    if isinstance(condition, UnknownCondition):
        if unknown_field_policy == "error":
            raise UnknownFieldError(condition.field)
        return unknown_field_policy == "match"

    actual = resolve_field(condition.field, email).lower()
    expected = condition.value.lower()

    if condition.operator is Operator.CONTAINS:
        return expected in actual
    if condition.operator is Operator.EQUALS:
        return actual == expected
    if condition.operator is Operator.STARTS_WITH:
        return actual.startswith(expected)
    return actual.endswith(expected)
