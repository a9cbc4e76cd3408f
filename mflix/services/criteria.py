"""Compile loosely-typed filter documents into MongoDB query predicates.

A filter document maps field names to either a literal (equality) or an
operator map such as ``{"$gte": 2000, "$lt": 2010}``. Only the operators in
:class:`ComparisonOperator` are accepted; anything else is rejected instead of
being silently turned into an equality match on the whole map.

Values targeting the identity field are parsed into :class:`bson.ObjectId`
so callers may pass the 24-hex representation they received from the API.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from bson import ObjectId

from mflix.models import MovieFields
from mflix.services.errors import (
    InvalidIdentifierError,
    UnsupportedOperatorError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ComparisonOperator(str, Enum):
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    NE = "$ne"
    IN = "$in"
    NIN = "$nin"
    REGEX = "$regex"
    EXISTS = "$exists"


_SET_OPERATORS = {ComparisonOperator.IN, ComparisonOperator.NIN}
_ORDERED_OPERATORS = {
    ComparisonOperator.GT,
    ComparisonOperator.GTE,
    ComparisonOperator.LT,
    ComparisonOperator.LTE,
    ComparisonOperator.NE,
}


def parse_object_id(value: Any) -> ObjectId:
    """Return ``value`` as an ObjectId or raise :class:`InvalidIdentifierError`."""

    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value.strip()):
        return ObjectId(value.strip())
    raise InvalidIdentifierError(value)


def compile_criteria(field: str, value: Any) -> dict[str, Any]:
    """Compile a single ``field -> value`` pair into a predicate fragment."""

    if field.startswith("$"):
        raise UnsupportedOperatorError(field, field)

    is_identity = field == MovieFields.ID
    if not isinstance(value, Mapping):
        if is_identity and isinstance(value, str):
            value = parse_object_id(value)
        return {field: value}

    if not value:
        raise ValidationError(f"Operator map for field '{field}' is empty")

    predicate: dict[str, Any] = {}
    for raw_operator, operand in value.items():
        try:
            operator = ComparisonOperator(raw_operator)
        except ValueError:
            raise UnsupportedOperatorError(field, str(raw_operator)) from None
        predicate[operator.value] = _compile_operand(field, operator, operand, is_identity)
    return {field: predicate}


def _compile_operand(
    field: str, operator: ComparisonOperator, operand: Any, is_identity: bool
) -> Any:
    if operator in _SET_OPERATORS:
        if not isinstance(operand, (list, tuple)):
            raise ValidationError(f"Operator '{operator.value}' on field '{field}' requires a list")
        if is_identity:
            return [parse_object_id(item) for item in operand]
        return list(operand)
    if operator is ComparisonOperator.EXISTS:
        if not isinstance(operand, bool):
            raise ValidationError(f"Operator '$exists' on field '{field}' requires a boolean")
        return operand
    if operator is ComparisonOperator.REGEX:
        return str(operand)
    if operator in _ORDERED_OPERATORS and is_identity and isinstance(operand, str):
        return parse_object_id(operand)
    return operand


def compile_filter(filter_doc: Mapping[str, Any] | None) -> dict[str, Any]:
    """Compile a whole filter document into one conjunctive predicate.

    An empty document compiles to ``{}`` (matches everything). Destructive
    callers must reject that case before reaching the store.
    """

    if filter_doc is None:
        return {}
    if not isinstance(filter_doc, Mapping):
        raise ValidationError("Filter must be an object")

    query: dict[str, Any] = {}
    for field in sorted(filter_doc):
        query.update(compile_criteria(field, filter_doc[field]))
    logger.debug("Compiled filter %s -> %s", dict(filter_doc), query)
    return query
