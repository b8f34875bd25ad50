"""Financial summary derivation for Myers Construct.

The sell price is derived from the estimate's base cost so that markup
and overhead are expressed as a share of the final price:

    final = base / (1 - (markup + overhead) / 100)

This is a pure derivation, recomputed whenever markup or overhead change.
"""

import math
from typing import Iterable, Protocol

from pydantic import BaseModel, Field

from config.errors import FinancialsUndefined


DEFAULT_MARKUP = 35.0
DEFAULT_OVERHEAD = 15.0

# Slider ranges used by the dashboard; informational, not enforced here
MARKUP_RANGE = (10.0, 50.0)
OVERHEAD_RANGE = (5.0, 25.0)


class _HasTotal(Protocol):
    total: float


class FinancialSummary(BaseModel):
    """Derived pricing for an estimate. Never persisted by the pipeline."""

    base: float = Field(description="Sum of line item totals")
    markup: float = Field(description="Net profit target, percent of final price")
    overhead: float = Field(description="Burden overhead, percent of final price")
    final: float = Field(description="Sell price")
    margin_amount: float = Field(alias="marginAmount", description="final - base")

    class Config:
        populate_by_name = True
        frozen = True


def compute_financial_summary(
    items: Iterable[_HasTotal],
    markup: float = DEFAULT_MARKUP,
    overhead: float = DEFAULT_OVERHEAD
) -> FinancialSummary:
    """Derive the sell price for a set of line items.

    Args:
        items: Line items (anything with a ``total``).
        markup: Profit percentage.
        overhead: Overhead percentage.

    Returns:
        FinancialSummary.

    Raises:
        FinancialsUndefined: If markup + overhead >= 100 or is not a finite number.
    """
    load = markup + overhead
    if not math.isfinite(load) or load >= 100:
        raise FinancialsUndefined(markup=markup, overhead=overhead)

    base = sum(item.total for item in items)
    final = base / (1 - load / 100)

    return FinancialSummary(
        base=base,
        markup=markup,
        overhead=overhead,
        final=final,
        margin_amount=final - base,
    )
