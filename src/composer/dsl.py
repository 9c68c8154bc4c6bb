# src/composer/dsl.py — v1
"""Applies-when predicate language.

Predicates are JSON documents discriminated on "op". They are validated
when a rule is written (schema plus pattern safety) and evaluated against
a flat context dict when a rule is answered. Evaluation never raises on
user data: a missing field or an incomparable value is simply false.

Example:
    {"op": "and", "args": [
        {"op": "cmp", "field": "turnover", "cmp": "gte", "value": 85000},
        {"op": "in", "field": "country", "values": ["DE", "AT"]}]}
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

import regex
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from regtruth.core.errors import PredicateValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PATTERN_LENGTH = 100
DEFAULT_MAX_INPUT_LENGTH = 10_000
DEFAULT_REGEX_TIMEOUT_S = 0.05

# Quantified group followed by another quantifier, e.g. (a+)+ or (\w*)*
_NESTED_QUANTIFIER = regex.compile(r"\((?:[^()\\]|\\.)*[+*}]\)(?:[+*]|\{\d)")

CmpOp = Literal["eq", "neq", "gt", "gte", "lt", "lte"]


# === AST ===


class TruePredicate(BaseModel):
    op: Literal["true"] = "true"


class FalsePredicate(BaseModel):
    op: Literal["false"] = "false"


class AndPredicate(BaseModel):
    op: Literal["and"] = "and"
    args: list[Predicate] = Field(min_length=1)


class OrPredicate(BaseModel):
    op: Literal["or"] = "or"
    args: list[Predicate] = Field(min_length=1)


class NotPredicate(BaseModel):
    op: Literal["not"] = "not"
    arg: Predicate


class CmpPredicate(BaseModel):
    op: Literal["cmp"] = "cmp"
    field: str
    cmp: CmpOp
    value: Any


class InPredicate(BaseModel):
    op: Literal["in"] = "in"
    field: str
    values: list[Any]


class ExistsPredicate(BaseModel):
    op: Literal["exists"] = "exists"
    field: str


class BetweenPredicate(BaseModel):
    """Inclusive range check."""

    op: Literal["between"] = "between"
    field: str
    low: Any
    high: Any


class MatchesPredicate(BaseModel):
    op: Literal["matches"] = "matches"
    field: str
    pattern: str


class DateInEffectPredicate(BaseModel):
    """True when the context date lies in [start, end]; open ends allowed."""

    op: Literal["date_in_effect"] = "date_in_effect"
    field: str = "as_of"
    start: date | None = None
    end: date | None = None


Predicate = Annotated[
    Union[
        TruePredicate,
        FalsePredicate,
        AndPredicate,
        OrPredicate,
        NotPredicate,
        CmpPredicate,
        InPredicate,
        ExistsPredicate,
        BetweenPredicate,
        MatchesPredicate,
        DateInEffectPredicate,
    ],
    Field(discriminator="op"),
]

for _model in (AndPredicate, OrPredicate, NotPredicate):
    _model.model_rebuild()

_PREDICATE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Predicate)


# === Validation ===


def check_pattern(pattern: str, max_length: int = DEFAULT_MAX_PATTERN_LENGTH) -> None:
    """Reject regexes that are too long, invalid, or prone to backtracking."""
    if len(pattern) > max_length:
        raise PredicateValidationError(
            f"pattern longer than {max_length} characters: {pattern[:40]!r}..."
        )
    try:
        regex.compile(pattern)
    except regex.error as e:
        raise PredicateValidationError(f"pattern does not compile: {e}") from e
    if _NESTED_QUANTIFIER.search(pattern):
        raise PredicateValidationError(f"nested quantifier in pattern {pattern!r}")


def _walk(node: BaseModel):
    yield node
    if isinstance(node, (AndPredicate, OrPredicate)):
        for child in node.args:
            yield from _walk(child)
    elif isinstance(node, NotPredicate):
        yield from _walk(node.arg)


def parse_predicate(
    data: dict[str, Any], max_pattern_length: int = DEFAULT_MAX_PATTERN_LENGTH
) -> BaseModel:
    """Validate a predicate document at write time.

    Raises:
        PredicateValidationError: On schema errors or unsafe patterns.
    """
    try:
        node = _PREDICATE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise PredicateValidationError(f"invalid predicate: {e.error_count()} error(s): {e}") from e
    for sub in _walk(node):
        if isinstance(sub, MatchesPredicate):
            check_pattern(sub.pattern, max_pattern_length)
    return node


# === Evaluation ===


class PredicateEvaluator:
    """Evaluate predicates against a context dict."""

    def __init__(
        self,
        max_input_length: int = DEFAULT_MAX_INPUT_LENGTH,
        regex_timeout_s: float = DEFAULT_REGEX_TIMEOUT_S,
    ) -> None:
        self._max_input_length = max_input_length
        self._regex_timeout_s = regex_timeout_s

    @classmethod
    def from_settings(cls, settings: Any) -> PredicateEvaluator:
        return cls(
            max_input_length=settings.dsl_max_input_length,
            regex_timeout_s=settings.dsl_regex_timeout_s,
        )

    def evaluate(self, predicate: BaseModel | dict[str, Any], context: dict[str, Any]) -> bool:
        node = parse_predicate(predicate) if isinstance(predicate, dict) else predicate
        return self._eval(node, context)

    def _eval(self, node: BaseModel, ctx: dict[str, Any]) -> bool:
        if isinstance(node, TruePredicate):
            return True
        if isinstance(node, FalsePredicate):
            return False
        if isinstance(node, AndPredicate):
            return all(self._eval(a, ctx) for a in node.args)
        if isinstance(node, OrPredicate):
            return any(self._eval(a, ctx) for a in node.args)
        if isinstance(node, NotPredicate):
            return not self._eval(node.arg, ctx)
        if isinstance(node, ExistsPredicate):
            return ctx.get(node.field) is not None
        if isinstance(node, DateInEffectPredicate):
            return self._date_in_effect(node, ctx)

        value = ctx.get(node.field)  # type: ignore[attr-defined]
        if value is None:
            return False
        if isinstance(node, CmpPredicate):
            return _compare(value, node.cmp, node.value)
        if isinstance(node, InPredicate):
            return value in node.values
        if isinstance(node, BetweenPredicate):
            return _compare(value, "gte", node.low) and _compare(value, "lte", node.high)
        if isinstance(node, MatchesPredicate):
            return self._matches(node, value)
        raise PredicateValidationError(f"unsupported predicate op {node.op!r}")  # type: ignore[attr-defined]

    def _matches(self, node: MatchesPredicate, value: Any) -> bool:
        text = str(value)
        if len(text) > self._max_input_length:
            logger.warning(
                "matches on %r skipped: input length %d exceeds %d",
                node.field, len(text), self._max_input_length,
            )
            return False
        try:
            return regex.search(node.pattern, text, timeout=self._regex_timeout_s) is not None
        except TimeoutError:
            logger.warning(
                "matches on %r timed out after %.3fs (pattern %r)",
                node.field, self._regex_timeout_s, node.pattern,
            )
            return False

    @staticmethod
    def _date_in_effect(node: DateInEffectPredicate, ctx: dict[str, Any]) -> bool:
        as_of = _to_date(ctx.get(node.field))
        if as_of is None:
            return False
        if node.start is not None and as_of < node.start:
            return False
        if node.end is not None and as_of > node.end:
            return False
        return True


# --- Helpers ---


def _to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    """Bring both operands to a comparable type where that is unambiguous."""
    if isinstance(left, bool) or isinstance(right, bool):
        return left, right
    if isinstance(left, (int, float)) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return left, right
    if isinstance(left, str) and isinstance(right, (int, float)):
        try:
            return float(left), right
        except ValueError:
            return left, right
    if isinstance(left, (date, datetime)) or isinstance(right, (date, datetime)):
        l_date, r_date = _to_date(left), _to_date(right)
        if l_date is not None and r_date is not None:
            return l_date, r_date
    return left, right


def _compare(left: Any, op: str, right: Any) -> bool:
    left, right = _coerce_pair(left, right)
    try:
        if op == "eq":
            return left == right
        if op == "neq":
            return left != right
        if op == "gt":
            return left > right
        if op == "gte":
            return left >= right
        if op == "lt":
            return left < right
        if op == "lte":
            return left <= right
    except TypeError:
        return False
    raise PredicateValidationError(f"unknown comparison {op!r}")
