"""Condition evaluation for policy statements.

A condition block maps operator names to key/value requirements:

    {
        "StringEquals": {"resource:env": "prod"},
        "IpAddress": {"ip": ["10.0.0.0/8", "192.168.1.10"]}
    }

Every operator and every key must hold (AND). A list of expected values is
any-of (OR). A key absent from the context fails the operator, negated
operators included.
"""

import ipaddress
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from iamcore.authz.matcher import matches

logger = logging.getLogger(__name__)

OperatorFn = Callable[[Any, Any], bool]


@dataclass(frozen=True)
class ConditionOperator:
    """A registered condition operator.

    ``fn`` compares one expected value with the actual context value.
    Negated operators hold only when ``fn`` matches none of the expected values.
    """

    name: str
    fn: OperatorFn
    negated: bool = False

    def apply(self, expected: Any, actual: Any) -> bool:
        candidates = expected if isinstance(expected, (list, tuple)) else [expected]
        hit = any(self.fn(candidate, actual) for candidate in candidates)
        return not hit if self.negated else hit


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def string_equals(expected: Any, actual: Any) -> bool:
    return _text(expected) == _text(actual)


def string_equals_ignore_case(expected: Any, actual: Any) -> bool:
    return _text(expected).casefold() == _text(actual).casefold()


def string_like(expected: Any, actual: Any) -> bool:
    return matches(_text(expected), _text(actual))


def bool_equals(expected: Any, actual: Any) -> bool:
    want = _as_bool(expected)
    got = _as_bool(actual)
    if want is None or got is None:
        return False
    return want == got


def numeric_equals(expected: Any, actual: Any) -> bool:
    if isinstance(expected, bool) or isinstance(actual, bool):
        return False
    try:
        return Decimal(str(expected)) == Decimal(str(actual))
    except InvalidOperation:
        return False


def ip_address_match(expected: Any, actual: Any) -> bool:
    try:
        address = ipaddress.ip_address(_text(actual).strip())
        if "/" in _text(expected):
            return address in ipaddress.ip_network(_text(expected).strip(), strict=False)
        return address == ipaddress.ip_address(_text(expected).strip())
    except ValueError:
        return False


DEFAULT_OPERATORS: tuple[ConditionOperator, ...] = (
    ConditionOperator("StringEquals", string_equals),
    ConditionOperator("StringNotEquals", string_equals, negated=True),
    ConditionOperator("StringEqualsIgnoreCase", string_equals_ignore_case),
    ConditionOperator("StringLike", string_like),
    ConditionOperator("Bool", bool_equals),
    ConditionOperator("NumericEquals", numeric_equals),
    ConditionOperator("IpAddress", ip_address_match),
)


class UnknownOperatorError(ValueError):
    """A condition names an operator that is not registered."""


class ConditionEvaluator:
    """Evaluates statement conditions against a request context.

    Usage:
        evaluator = ConditionEvaluator()
        evaluator.register("StringStartsWith", lambda e, a: str(a).startswith(str(e)))

        evaluator.evaluate({"StringEquals": {"resource:env": "prod"}}, context)
    """

    def __init__(self, operators: tuple[ConditionOperator, ...] = DEFAULT_OPERATORS):
        self._operators: dict[str, ConditionOperator] = {op.name: op for op in operators}

    def register(self, name: str, fn: OperatorFn, negated: bool = False) -> None:
        """Add or replace an operator."""
        self._operators[name] = ConditionOperator(name, fn, negated)
        logger.debug("Registered condition operator: %s", name)

    def is_supported(self, name: str) -> bool:
        return name in self._operators

    @property
    def operators(self) -> list[str]:
        return sorted(self._operators)

    def validate(self, condition: Mapping[str, Mapping[str, Any]]) -> None:
        """Raise UnknownOperatorError if any operator is not registered."""
        for name in condition:
            if name not in self._operators:
                raise UnknownOperatorError(f"Unsupported condition operator: {name}")

    def evaluate(
        self,
        condition: Mapping[str, Mapping[str, Any]] | None,
        context: Mapping[str, Any],
    ) -> bool:
        """Check whether all requirements of a condition hold."""
        if not condition:
            return True

        for name, requirements in condition.items():
            operator = self._operators.get(name)
            if operator is None:
                raise UnknownOperatorError(f"Unsupported condition operator: {name}")

            for key, expected in requirements.items():
                actual = context.get(key)
                if actual is None:
                    return False
                if not operator.apply(expected, actual):
                    return False

        return True
