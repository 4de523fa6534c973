"""Tests for odds parsing and conversion."""

import pytest

from race_predictor.errors import InvalidOddsFormat
from race_predictor.odds import (
    OddsValue,
    format_odds,
    from_numerator,
    implied_probability,
    parse_odds,
    to_decimal,
    try_parse_odds,
)


class TestParseOdds:
    def test_fractional(self):
        odds = parse_odds("5/2")
        assert odds.numerator == 5
        assert odds.denominator == 2
        assert to_decimal(odds) == pytest.approx(3.5)

    def test_fractional_with_whitespace(self):
        odds = parse_odds(" 11 / 4 ")
        assert odds == OddsValue(11, 4)

    def test_decimal_style(self):
        odds = parse_odds("4.0")
        assert odds.numerator == pytest.approx(3.0)
        assert odds.denominator == 1
        assert to_decimal(odds) == pytest.approx(4.0)

    def test_decimal_with_dollar_sign(self):
        assert to_decimal(parse_odds("$2.50")) == pytest.approx(2.5)

    @pytest.mark.parametrize("text", ["", "   ", "abc", "5/", "/2", "5/0", "0/1", "-3/1", "1", "0.5", "1/2/3"])
    def test_invalid_inputs_raise(self, text):
        with pytest.raises(InvalidOddsFormat):
            parse_odds(text)

    def test_non_string_raises(self):
        with pytest.raises(InvalidOddsFormat):
            parse_odds(None)

    def test_try_parse_never_raises(self):
        odds, result = try_parse_odds("nope")
        assert odds is None
        assert not result.is_valid
        assert result.errors

        odds, result = try_parse_odds("3/1")
        assert odds == OddsValue(3, 1)
        assert result.is_valid


class TestOddsValue:
    def test_rejects_zero_denominator(self):
        with pytest.raises(InvalidOddsFormat):
            OddsValue(3, 0)

    def test_rejects_negative_numerator(self):
        with pytest.raises(InvalidOddsFormat):
            OddsValue(-1, 1)

    def test_even_money(self):
        odds = OddsValue(1, 1)
        assert to_decimal(odds) == 2.0
        assert implied_probability(odds) == 0.5

    @pytest.mark.parametrize("num,den", [(0, 1), (1, 10), (2, 1), (5, 2), (100, 1), (1, 3)])
    def test_probability_in_unit_interval(self, num, den):
        odds = OddsValue(num, den)
        assert 0 < implied_probability(odds) <= 1
        assert to_decimal(odds) >= 1
        if num > 0:
            assert to_decimal(odds) > 1

    def test_is_immutable(self):
        odds = OddsValue(2, 1)
        with pytest.raises(AttributeError):
            odds.numerator = 3

    def test_dict_round_trip(self):
        odds = OddsValue(7, 2)
        assert OddsValue.from_dict(odds.to_dict()) == odds


class TestFormatting:
    def test_whole_numbers(self):
        assert format_odds(OddsValue(5, 1)) == "5/1"

    def test_fractional_numbers(self):
        assert format_odds(OddsValue(2.5, 1)) == "2.5/1"

    def test_from_numerator(self):
        assert from_numerator(29) == OddsValue(29, 1)
        with pytest.raises(InvalidOddsFormat):
            from_numerator(0)
