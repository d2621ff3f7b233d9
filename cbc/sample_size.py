"""
Sample-size guidance for choice-based conjoint studies.

Uses Orme's CBC rule of thumb for the ~80% confidence baseline,
``n >= 500 * c / (t * a)`` where *c* is the total number of levels, *t* the
tasks per respondent and *a* the alternatives per task (excluding "none").
The 70% and 90% recommendations rescale the baseline by the squared ratio of
the corresponding z-scores.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

Z70 = 1.04
Z80 = 1.28
Z90 = 1.64


@dataclass
class SampleSize:
    """Recommended respondent counts at three confidence tiers."""

    n70: int
    n80: int
    n90: int
    total_levels: int
    tasks_per_respondent: int
    alternatives_per_task: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "n70": self.n70,
            "n80": self.n80,
            "n90": self.n90,
            "totalLevels": self.total_levels,
            "tasksPerRespondent": self.tasks_per_respondent,
            "alternativesPerTask": self.alternatives_per_task,
        }


def recommend(
    total_levels: int,
    tasks_per_respondent: int,
    alts_per_task: int,
) -> SampleSize:
    """Closed-form respondent recommendations for a design of the given shape."""
    tasks = tasks_per_respondent if tasks_per_respondent > 0 else 1
    alts = alts_per_task if alts_per_task > 0 else 2

    n80 = math.ceil(500 * total_levels / (tasks * alts))
    n70 = math.ceil(n80 * ((Z70 * Z70) / (Z80 * Z80)))
    n90 = math.ceil(n80 * ((Z90 * Z90) / (Z80 * Z80)))

    return SampleSize(
        n70=n70,
        n80=n80,
        n90=n90,
        total_levels=total_levels,
        tasks_per_respondent=tasks,
        alternatives_per_task=alts,
    )
