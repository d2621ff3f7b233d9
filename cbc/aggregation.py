"""
Response aggregation: turn raw task answers into per-level choice counts.

For each response the full alternative set of its task is looked up in the
design that was shown.  Every level of the chosen alternative counts as
*chosen*; every level of the other real alternatives counts as *not chosen*.
Answers that picked "None of these" carry no attribute-level preference and
are removed before counting.
"""

# import modules
from __future__ import annotations
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from cbc.models import NONE_LEVEL, Response, Task, level_key

logger = logging.getLogger(__name__)


@dataclass
class LevelCounts:
    """Chosen / not-chosen tallies keyed by ``"Attribute:Level"``."""

    chosen: Counter[str] = field(default_factory=Counter)
    not_chosen: Counter[str] = field(default_factory=Counter)

    def total(self, key: str) -> int:
        return self.chosen[key] + self.not_chosen[key]

    def __add__(self, other: "LevelCounts") -> "LevelCounts":
        return LevelCounts(
            chosen=self.chosen + other.chosen,
            not_chosen=self.not_chosen + other.not_chosen,
        )


def _index_design(design: Iterable[Task]) -> dict[int, Task]:
    return {task.id: task for task in design}


def is_none_response(response: Response, task: Task | None) -> bool:
    return task is not None and response.selected_alt == task.none_alternative_id


def filter_none_responses(
    responses: Iterable[Response],
    design: Iterable[Task],
) -> list[Response]:
    """Drop every response that selected its task's "none" alternative."""
    tasks = _index_design(design)
    return [r for r in responses if not is_none_response(r, tasks.get(r.task_id))]


def aggregate(responses: Iterable[Response], design: Iterable[Task]) -> LevelCounts:
    """
    Count how often each level appeared in a chosen vs. non-chosen alternative.

    Responses whose task is missing from *design* are skipped without failing
    the batch.  The "none" alternative's levels are never counted.
    """
    tasks = _index_design(design)
    counts = LevelCounts()
    skipped = 0

    for response in responses:
        task = tasks.get(response.task_id)
        if task is None:
            skipped += 1
            continue
        if is_none_response(response, task):
            continue

        for alt in task.alternatives:
            if alt.id == task.none_alternative_id:
                continue
            target = counts.chosen if alt.id == response.selected_alt else counts.not_chosen
            for attr_name, level in alt.levels.items():
                if level == NONE_LEVEL:
                    continue
                target[level_key(attr_name, level)] += 1

    if skipped:
        logger.debug("Skipped %d responses with no matching task in the design", skipped)
    return counts
