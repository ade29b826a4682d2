"""
Variance evaluation for cash reconciliation.

variance = expected - actual
    positive -> shortfall (less cash than expected)
    negative -> overage

A variance is disputed when its magnitude exceeds
max(absolute_floor, percent_of_expected * expected); otherwise matched.

Pure functions only. Negative actual amounts are rejected by the callers
before they get here.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app, has_app_context

from ..validation import quantize_money


MATCHED = "matched"
DISPUTED = "disputed"

DEFAULT_ABSOLUTE_FLOOR = Decimal("100")
DEFAULT_PERCENT_OF_EXPECTED = Decimal("0.02")


@dataclass(frozen=True)
class ToleranceConfig:
    absolute_floor: Decimal = DEFAULT_ABSOLUTE_FLOOR
    percent_of_expected: Decimal = DEFAULT_PERCENT_OF_EXPECTED

    def threshold_for(self, expected: Decimal) -> Decimal:
        # A zero (or negative) expectation leaves only the floor.
        percent_term = self.percent_of_expected * expected if expected > 0 else Decimal("0")
        return max(self.absolute_floor, percent_term)


@dataclass(frozen=True)
class VarianceResult:
    variance: Decimal
    status: str
    threshold: Decimal

    @property
    def is_matched(self) -> bool:
        return self.status == MATCHED

    def to_dict(self) -> dict:
        return {
            "variance": str(self.variance),
            "status": self.status,
            "threshold": str(self.threshold),
        }


def evaluate(expected: Decimal, actual: Decimal, tolerance: ToleranceConfig | None = None) -> VarianceResult:
    """Compare an expected amount with what was actually counted."""
    tolerance = tolerance or ToleranceConfig()
    expected = Decimal(expected)
    actual = Decimal(actual)

    variance = quantize_money(expected - actual)
    threshold = tolerance.threshold_for(expected)
    status = DISPUTED if abs(variance) > threshold else MATCHED

    return VarianceResult(variance=variance, status=status, threshold=threshold)


def matched_exactly() -> VarianceResult:
    """Result used by accept-as-is confirmations: actual == expected."""
    return VarianceResult(variance=Decimal("0.00"), status=MATCHED, threshold=Decimal("0"))


def tolerance_from_config() -> ToleranceConfig:
    """Build the tolerance policy from app config, falling back to defaults."""
    if not has_app_context():
        return ToleranceConfig()
    floor = current_app.config.get("VARIANCE_ABSOLUTE_FLOOR", DEFAULT_ABSOLUTE_FLOOR)
    percent = current_app.config.get("VARIANCE_PERCENT_OF_EXPECTED", DEFAULT_PERCENT_OF_EXPECTED)
    return ToleranceConfig(absolute_floor=Decimal(str(floor)), percent_of_expected=Decimal(str(percent)))


def variance_band(variance: Decimal, expected: Decimal) -> str:
    """
    Reporting band for settlement history: ok, review (> 1%) or
    investigate (> 3%) of expected cash.
    """
    expected = Decimal(expected)
    magnitude = abs(Decimal(variance))
    if magnitude > expected * Decimal("0.03"):
        return "investigate"
    if magnitude > expected * Decimal("0.01"):
        return "review"
    return "ok"
