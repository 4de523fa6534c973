"""Odds model: parse fractional or decimal odds into a canonical quote.

Accepted inputs:
  "5/2"   → OddsValue(numerator=5, denominator=2)   decimal 3.5
  "4"     → OddsValue(numerator=3, denominator=1)   decimal 4.0 (decimal-style, must be > 1)
  "4/1"   → OddsValue(numerator=4, denominator=1)   decimal 5.0
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from race_predictor.errors import InvalidOddsFormat, ValidationResult

_FRACTIONAL = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*/\s*([0-9]*\.?[0-9]+)\s*$")
_DECIMAL = re.compile(r"^\s*\$?\s*([0-9]*\.?[0-9]+)\s*$")


@dataclass(frozen=True)
class OddsValue:
    """A fractional odds quote, immutable once captured for a round."""

    numerator: float
    denominator: float = 1.0

    def __post_init__(self):
        if not (math.isfinite(self.numerator) and math.isfinite(self.denominator)):
            raise InvalidOddsFormat("Odds must be finite numbers")
        if self.denominator <= 0:
            raise InvalidOddsFormat("Odds denominator must be greater than 0")
        if self.numerator < 0:
            raise InvalidOddsFormat("Odds numerator cannot be negative")

    @property
    def fractional(self) -> float:
        """Profit per unit staked (numerator / denominator)."""
        return self.numerator / self.denominator

    @property
    def decimal_odds(self) -> float:
        return self.fractional + 1

    @property
    def implied_probability(self) -> float:
        return 1 / self.decimal_odds

    def to_dict(self) -> dict[str, float]:
        return {
            "numerator": self.numerator,
            "denominator": self.denominator,
            "decimal": round(self.decimal_odds, 6),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OddsValue":
        return cls(
            numerator=float(data["numerator"]),
            denominator=float(data.get("denominator", 1.0)),
        )

    def __str__(self) -> str:
        return format_odds(self)


def parse_odds(text: str) -> OddsValue:
    """Parse fractional ("X/Y") or decimal-style ("D", D > 1) odds text.

    Raises InvalidOddsFormat for anything else, including zero-profit
    quotes ("0/1" or "1") which carry no usable price.
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidOddsFormat("Odds are required")

    m = _FRACTIONAL.match(text)
    if m:
        numerator = float(m.group(1))
        denominator = float(m.group(2))
        if denominator <= 0:
            raise InvalidOddsFormat(f"Invalid odds '{text}': denominator must be greater than 0")
        if numerator <= 0:
            raise InvalidOddsFormat(f"Invalid odds '{text}': must be greater than 0")
        return OddsValue(numerator, denominator)

    m = _DECIMAL.match(text)
    if m:
        decimal = float(m.group(1))
        if decimal <= 1:
            raise InvalidOddsFormat(f"Invalid odds '{text}': decimal odds must be greater than 1")
        return OddsValue(round(decimal - 1, 10), 1.0)

    raise InvalidOddsFormat(f"Invalid odds '{text}': expected 'X/Y' or a decimal price")


def try_parse_odds(text: str) -> tuple[Optional[OddsValue], ValidationResult]:
    """Boundary variant of parse_odds that never raises."""
    try:
        return parse_odds(text), ValidationResult.ok()
    except InvalidOddsFormat as e:
        return None, ValidationResult.failed(str(e))


def from_numerator(numerator: float) -> OddsValue:
    """Build an "N/1" quote from a bare numerator."""
    if numerator is None or numerator <= 0:
        raise InvalidOddsFormat("Odds must be greater than 0")
    return OddsValue(float(numerator), 1.0)


def to_decimal(odds: OddsValue) -> float:
    return odds.decimal_odds


def implied_probability(odds: OddsValue) -> float:
    return odds.implied_probability


def format_odds(odds: OddsValue) -> str:
    """Render as "X/Y", dropping trailing .0 on whole numbers."""
    return f"{_fmt_number(odds.numerator)}/{_fmt_number(odds.denominator)}"


def _fmt_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
