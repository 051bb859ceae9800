# src/assembly/typed_value.py — v1
"""Typed-value detection for a fact's object string.

Rules are anchored full-string patterns tried in order; the first match
wins, so a money string never also yields a plain number. The typed value
enriches the fact; ``object`` keeps the original string.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

_AMOUNT = r"[+-]?(?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d+)?"

_NUMBER = re.compile(rf"^{_AMOUNT}$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_YEAR = re.compile(r"^(?:18|19|20)\d{2}$")
_MONEY_PREFIX = re.compile(rf"^(?P<ccy>[A-Z]{{3}})\s?(?P<amount>{_AMOUNT})$")
_MONEY_SUFFIX = re.compile(rf"^(?P<amount>{_AMOUNT})\s?(?P<ccy>[A-Z]{{3}})$")
_PERCENT = re.compile(rf"^(?P<amount>{_AMOUNT})\s?(?:%|percent)$", re.IGNORECASE)
_COUNTRY = re.compile(r"^[A-Z]{2}$")

_TIME_PREDICATE_HINTS = ("year", "date", "founded", "established", "incorporated", "since")
_CODE_PREDICATE_HINTS = ("industry", "legal_form", "status")


@dataclass(frozen=True)
class TypedValue:
    kind: str
    number: float | None = None
    date_value: date | None = None
    money_amount: float | None = None
    money_currency: str | None = None
    percentage: float | None = None
    country: str | None = None
    code: str | None = None
    entity_id: str | None = None

    def as_columns(self) -> dict[str, Any]:
        """Map onto the ``value_*`` columns of a fact record."""
        return {
            "value_number": self.number,
            "value_date": self.date_value,
            "value_money_amount": self.money_amount,
            "value_money_ccy": self.money_currency,
            "value_pct": self.percentage,
            "value_country": self.country,
            "value_code": self.code,
            "value_entity_id": self.entity_id,
        }


def _amount(text: str) -> float:
    return float(text.replace(",", ""))


def _iso_date(obj: str, predicate: str) -> TypedValue | None:
    if not _ISO_DATE.match(obj):
        return None
    try:
        return TypedValue(kind="date", date_value=date.fromisoformat(obj))
    except ValueError:
        return None


def _year(obj: str, predicate: str) -> TypedValue | None:
    if not _YEAR.match(obj):
        return None
    if not any(hint in predicate for hint in _TIME_PREDICATE_HINTS):
        return None
    return TypedValue(kind="date", date_value=date(int(obj), 1, 1))


def _number(obj: str, predicate: str) -> TypedValue | None:
    if not _NUMBER.match(obj):
        return None
    return TypedValue(kind="number", number=_amount(obj))


def _money(obj: str, predicate: str) -> TypedValue | None:
    match = _MONEY_PREFIX.match(obj) or _MONEY_SUFFIX.match(obj)
    if match is None:
        return None
    return TypedValue(
        kind="money",
        money_amount=_amount(match.group("amount")),
        money_currency=match.group("ccy"),
    )


def _percentage(obj: str, predicate: str) -> TypedValue | None:
    match = _PERCENT.match(obj)
    if match is None:
        return None
    return TypedValue(kind="percentage", percentage=round(_amount(match.group("amount")), 2))


def _country(obj: str, predicate: str) -> TypedValue | None:
    if not _COUNTRY.match(obj):
        return None
    return TypedValue(kind="country", country=obj)


def _code(obj: str, predicate: str) -> TypedValue | None:
    if not any(hint in predicate for hint in _CODE_PREDICATE_HINTS):
        return None
    return TypedValue(kind="code", code=obj)


# Year before number: "1998" under a "founded" predicate is a date.
_RULES: tuple[Callable[[str, str], TypedValue | None], ...] = (
    _year,
    _number,
    _iso_date,
    _money,
    _percentage,
    _country,
    _code,
)


def detect_typed_value(
    obj: str,
    predicate: str = "",
    entity_index: dict[str, str] | None = None,
) -> TypedValue | None:
    """Detect at most one typed interpretation of an object string.

    Args:
        obj: Untyped object string.
        predicate: Fact predicate; gates the year and code rules.
        entity_index: Lower-cased entity name to stored entity id, used
            as a last resort to link the object to a known entity.
    """
    text = obj.strip()
    if not text:
        return None
    pred = predicate.lower()
    for rule in _RULES:
        value = rule(text, pred)
        if value is not None:
            return value
    if entity_index:
        entity_id = entity_index.get(text.lower())
        if entity_id:
            return TypedValue(kind="entity", entity_id=entity_id)
    return None
