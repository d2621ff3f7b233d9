"""
Part-worth utility and attribute-importance estimation.

Counting-based logit transform:

1. For every level, the selection rate ``chosen / (chosen + not_chosen)`` is
   clamped to ``[0.01, 0.99]`` and turned into log-odds.  Levels that were
   never shown get a neutral utility of 0.
2. Utilities are zero-centred within each attribute so they are comparable
   across attributes.
3. The importance of an attribute is the range (max - min) of its centred
   utilities, normalized so all importances sum to 100.
"""

# Import modules
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from cbc.aggregation import LevelCounts
from cbc.models import Attribute

RATE_FLOOR = 0.01
RATE_CEILING = 0.99


@dataclass
class Estimates:
    """Utility table (``"Attribute:Level" -> float``) and importance table (attribute -> %)."""

    utilities: dict[str, float]
    importances: dict[str, float]


def _raw_utilities(attr: Attribute, counts: LevelCounts) -> np.ndarray:
    chosen = np.array([counts.chosen[attr.key(lv)] for lv in attr.levels], dtype=float)
    total = chosen + np.array([counts.not_chosen[attr.key(lv)] for lv in attr.levels], dtype=float)

    observed = total > 0
    rate = np.divide(chosen, total, out=np.full_like(total, 0.5), where=observed)
    rate = np.clip(rate, RATE_FLOOR, RATE_CEILING)
    return np.where(observed, np.log(rate / (1.0 - rate)), 0.0)


def estimate(counts: LevelCounts, attributes: list[Attribute]) -> Estimates:
    """Convert chosen / not-chosen counts into utilities and importances."""
    utilities: dict[str, float] = {}
    ranges: dict[str, float] = {}

    for attr in attributes:
        raw = _raw_utilities(attr, counts)
        centred = raw - raw.mean() if raw.size else raw
        for lv, value in zip(attr.levels, centred):
            utilities[attr.key(lv)] = float(value)
        ranges[attr.name] = float(centred.max() - centred.min()) if centred.size else 0.0

    total = sum(ranges.values())
    if total > 0:
        importances = {name: 100.0 * value / total for name, value in ranges.items()}
    else:
        # Nothing observed at all: keep every importance at 0
        importances = dict(ranges)

    return Estimates(utilities=utilities, importances=importances)
