# tests/unit/assembly/test_unit_typed_value.py — v1
"""Tests for assembly/typed_value.py — one typed interpretation per object."""

from __future__ import annotations

from datetime import date

import pytest

from factgraph.assembly.typed_value import TypedValue, detect_typed_value


class TestNumbers:
    @pytest.mark.parametrize(
        "obj,expected", [("230", 230.0), ("1,200", 1200.0), ("-3.5", -3.5), ("+12", 12.0)]
    )
    def test_plain_numbers(self, obj, expected):
        value = detect_typed_value(obj, "employees")
        assert value.kind == "number"
        assert value.number == expected

    def test_malformed_grouping_not_a_number(self):
        assert detect_typed_value("1,20,0", "employees") is None


class TestDates:
    def test_iso_date(self):
        value = detect_typed_value("2020-05-01", "filed_on")
        assert value.kind == "date"
        assert value.date_value == date(2020, 5, 1)

    def test_impossible_iso_date(self):
        assert detect_typed_value("2020-13-45", "filed_on") is None

    def test_year_with_time_predicate(self):
        value = detect_typed_value("1998", "founded")
        assert value.kind == "date"
        assert value.date_value == date(1998, 1, 1)

    def test_year_without_time_predicate_is_number(self):
        value = detect_typed_value("1998", "employees")
        assert value.kind == "number"
        assert value.date_value is None


class TestMoney:
    def test_prefix_currency(self):
        value = detect_typed_value("USD 1,200,000", "revenue")
        assert value == TypedValue(kind="money", money_amount=1_200_000.0, money_currency="USD")

    def test_suffix_currency(self):
        value = detect_typed_value("45.5 SEK", "revenue")
        assert value.money_amount == 45.5
        assert value.money_currency == "SEK"

    def test_money_is_not_also_a_number(self):
        columns = detect_typed_value("USD 1,200,000", "revenue").as_columns()
        assert columns["value_number"] is None
        assert sum(v is not None for v in columns.values()) == 2


class TestOtherKinds:
    @pytest.mark.parametrize("obj", ["12.5%", "12.5 %", "12.5 percent"])
    def test_percentage(self, obj):
        value = detect_typed_value(obj, "margin")
        assert value.kind == "percentage"
        assert value.percentage == 12.5

    def test_country(self):
        assert detect_typed_value("SE", "country").country == "SE"

    def test_code_needs_predicate(self):
        assert detect_typed_value("Software", "industry").code == "Software"
        assert detect_typed_value("Software", "product") is None

    def test_entity_link(self):
        value = detect_typed_value("Beta AB", "subsidiary_of", {"beta ab": "e-1"})
        assert value.kind == "entity"
        assert value.entity_id == "e-1"

    def test_no_match(self):
        assert detect_typed_value("Stockholm", "headquarters") is None

    def test_blank(self):
        assert detect_typed_value("   ", "employees") is None
