"""
Pricing-plan synthesis from part-worth utilities.

Plans are built as a spectrum of tiers: tier 0 takes the lowest-utility level
of every attribute and the last tier the highest, with the tiers in between
interpolated linearly through each attribute's utility-sorted levels.  Each
tier is priced from the submitted price levels or from a utility-driven
willingness-to-pay estimate, then the tiers are ordered by the selected
optimization goal and relabelled Good / Better / Best / ...
"""

# Import modules
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from cbc.errors import ConfigurationError
from cbc.models import (
    DEFAULT_CURRENCY,
    Attribute,
    Goal,
    PricingStrategy,
    find_price_attribute,
)

PLAN_NAMES = (
    "Good",
    "Better",
    "Best",
    "Premium",
    "Enterprise",
    "Starter",
    "Professional",
    "Ultimate",
    "Advanced",
    "Elite",
)
MAX_PLANS = 10

# Goal-dependent pricing constants
PRICE_MULTIPLIER = {Goal.REVENUE: 0.95, Goal.PURCHASES: 0.75}
UTILITY_INFLUENCE = {Goal.REVENUE: 7.0, Goal.PURCHASES: 3.0}
UTILITY_MULTIPLIER = {Goal.REVENUE: 25.0, Goal.PURCHASES: 15.0}

DEFAULT_BASE_PRICE = 10.0
FALLBACK_LEVEL_PRICE = 50.0

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


# =====================================================================
# Result containers
# =====================================================================

@dataclass
class Plan:
    """A recommended subscription tier."""

    name: str
    features: dict[str, str]
    suggested_price: float
    willingness_to_pay: float
    currency: str
    rationale: str
    # Internal ranking score; not part of the exported plan
    total_utility: float = field(default=0.0, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "features": dict(self.features),
            "suggestedPrice": self.suggested_price,
            "willingnessToPay": self.willingness_to_pay,
            "currency": self.currency,
            "rationale": self.rationale,
        }


@dataclass
class PlanSet:
    plans: list[Plan]
    warning: str | None = None


# =====================================================================
# Helpers
# =====================================================================

def label_for(index: int) -> str:
    """Name of the plan at position *index* (0-based)."""
    return PLAN_NAMES[index] if index < len(PLAN_NAMES) else f"Plan {index + 1}"


def parse_price(level: str) -> float | None:
    """First number in a level string ("$1,200/mo" -> 1200.0), or ``None``."""
    match = _NUMBER.search(level.replace(",", ""))
    return float(match.group()) if match else None


def price_levels(attribute: Attribute | None) -> list[float]:
    """Numeric prices parsed from the price attribute's levels, ascending."""
    if attribute is None:
        return []
    prices = [p for p in (parse_price(lv) for lv in attribute.levels) if p is not None]
    return sorted(prices)


def format_price(amount: float, currency: str) -> str:
    text = f"{amount:,.2f}".rstrip("0").rstrip(".")
    return f"${text}" if currency == "USD" else f"{text} {currency}"


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def sort_levels_by_utility(
    attributes: list[Attribute],
    utilities: dict[str, float],
) -> dict[str, list[tuple[str, float]]]:
    """Each attribute's ``(level, utility)`` pairs, ascending by utility."""
    return {
        attr.name: sorted(
            ((lv, utilities.get(attr.key(lv), 0.0)) for lv in attr.levels),
            key=lambda pair: pair[1],
        )
        for attr in attributes
    }


def _level_index(tier: float, n_levels: int) -> int:
    return min(int(math.floor(tier * n_levels)), n_levels - 1)


def _describe(attr_name: str, level: str, index: int, n_levels: int) -> str:
    if index == 0:
        return f"{attr_name} at {level} keeps costs low"
    if index == n_levels - 1:
        return f"{attr_name} at {level} maximizes value"
    return f"{attr_name} at {level} provides balance"


def _goal_score(plan: Plan, goal: Goal) -> float:
    if goal == Goal.REVENUE:
        # Expected-revenue proxy
        return plan.suggested_price * math.exp(plan.total_utility / 10)
    # Adoption proxy
    return plan.total_utility - plan.suggested_price * 0.1


def _best_plan_note(best: Plan, priciest: Plan, goal: Goal) -> str:
    best_price = format_price(best.suggested_price, best.currency)
    other_price = format_price(priciest.suggested_price, priciest.currency)
    if goal == Goal.REVENUE:
        return (
            f'Note: "{best.name}" ({best_price}) is recommended as the best plan for revenue, '
            f'even though "{priciest.name}" ({other_price}) is more expensive. This is because '
            f'"{best.name}" has a better combination of price and features that maximizes '
            f"expected revenue through higher conversion rates."
        )
    return (
        f'Note: "{best.name}" ({best_price}) is recommended as the best plan for maximizing '
        f'purchases. While "{priciest.name}" ({other_price}) is more expensive, "{best.name}" '
        f"offers the optimal balance of features and affordability to maximize customer adoption."
    )


# =====================================================================
# Synthesis
# =====================================================================

def synthesize(
    num_plans: int,
    attributes: list[Attribute],
    utilities: dict[str, float],
    pricing_strategy: PricingStrategy | str = PricingStrategy.SUGGESTED,
    goal: Goal | str = Goal.REVENUE,
) -> PlanSet:
    """
    Build *num_plans* pricing tiers from the utility table.

    Returns the plans ordered ascending by the goal's score (the last plan is
    the recommended one) and an optional warning for the caller to display.
    """
    if not 1 <= num_plans <= MAX_PLANS:
        raise ConfigurationError(f"Number of plans must be between 1 and {MAX_PLANS}")
    strategy = PricingStrategy(pricing_strategy)
    goal = Goal(goal)

    price_attr = find_price_attribute(attributes)
    currency = price_attr.currency if price_attr else DEFAULT_CURRENCY
    prices = price_levels(price_attr)
    min_price = prices[0] if prices else 1.0

    warnings: list[str] = []
    if strategy == PricingStrategy.SUBMITTED and price_attr and len(prices) < num_plans:
        warnings.append(
            f"Warning: You requested {num_plans} plans but only have {len(prices)} price "
            f"levels. Plan Builder will recommend pricing for the additional plans."
        )

    sorted_levels = sort_levels_by_utility(attributes, utilities)
    price_multiplier = PRICE_MULTIPLIER[goal]
    utility_influence = UTILITY_INFLUENCE[goal]
    utility_multiplier = UTILITY_MULTIPLIER[goal]

    plans: list[Plan] = []
    for i in range(num_plans):
        tier = i / max(num_plans - 1, 1)
        features: dict[str, str] = {}
        descriptions: list[str] = []
        total_utility = 0.0

        for attr in attributes:
            levels = sorted_levels[attr.name]
            idx = _level_index(tier, len(levels))
            level, utility = levels[idx]
            features[attr.name] = level
            total_utility += utility
            descriptions.append(_describe(attr.name, level, idx, len(levels)))

        if strategy == PricingStrategy.SUBMITTED and prices:
            if i < len(prices):
                suggested = max(min_price, prices[i])
                wtp = max(min_price, suggested + total_utility * utility_influence)
            else:
                wtp = max(min_price, prices[-1] + total_utility * utility_multiplier)
                suggested = max(min_price, _round_half_up(wtp * price_multiplier))
        elif price_attr is not None:
            base = parse_price(features[price_attr.name])
            base = FALLBACK_LEVEL_PRICE if base is None else base
            wtp = max(min_price, base + total_utility * utility_influence)
            suggested = max(min_price, _round_half_up(wtp * price_multiplier))
        else:
            wtp = max(min_price, DEFAULT_BASE_PRICE + total_utility * utility_multiplier)
            suggested = max(min_price, _round_half_up(wtp * price_multiplier))

        plans.append(
            Plan(
                name=label_for(i),
                features=features,
                suggested_price=suggested,
                willingness_to_pay=wtp,
                currency=currency,
                rationale=", ".join(descriptions) + ".",
                total_utility=total_utility,
            )
        )

    plans.sort(key=lambda p: _goal_score(p, goal))
    for idx, plan in enumerate(plans):
        plan.name = label_for(idx)

    if len(plans) >= 3:
        best = plans[-1]
        priciest = max(plans, key=lambda p: p.suggested_price)
        if priciest.suggested_price > best.suggested_price:
            warnings.append(_best_plan_note(best, priciest, goal))

    return PlanSet(plans=plans, warning="\n\n".join(warnings) or None)
