"""
Choice-task design generation.

Responsibilities:
- Build the random choice tasks a survey shows to every respondent: each task
  has ``alts_per_task`` alternatives with one uniformly drawn level per
  attribute, plus a trailing "None of these" alternative.
- Keep alternatives within a task distinct, with a bounded number of redraws
  so generation always terminates.

A design is generated once per survey and then replayed from storage; nothing
in this module caches or persists anything.
"""

# Import modules
from __future__ import annotations
import random

from cbc.errors import ConfigurationError
from cbc.models import NONE_LEVEL, Alternative, Attribute, Task

DEFAULT_MAX_RETRIES = 50

# ------------------------------------------------------------------
# Alternative generation
# ------------------------------------------------------------------

def _random_alternative(
    alt_id: int,
    attributes: list[Attribute],
    rng: random.Random,
) -> Alternative:
    """Draw one level per attribute, uniformly and independently."""
    levels = {attr.name: attr.levels[rng.randrange(len(attr.levels))] for attr in attributes}
    return Alternative(id=alt_id, levels=levels)


def none_alternative(alt_id: int, attributes: list[Attribute]) -> Alternative:
    """The "choose none" alternative: every attribute set to the sentinel level."""
    return Alternative(id=alt_id, levels={attr.name: NONE_LEVEL for attr in attributes})


def _generate_task(
    task_id: int,
    attributes: list[Attribute],
    alts_per_task: int,
    rng: random.Random,
    max_retries: int,
) -> Task:
    alternatives: list[Alternative] = []
    seen: set[tuple[tuple[str, str], ...]] = set()

    for a in range(alts_per_task):
        candidate = _random_alternative(a + 1, attributes, rng)
        retries = 0
        while candidate.signature() in seen and retries < max_retries:
            retries += 1
            candidate = _random_alternative(a + 1, attributes, rng)
        # After max_retries the duplicate is accepted as is
        seen.add(candidate.signature())
        alternatives.append(candidate)

    none_id = alts_per_task + 1
    alternatives.append(none_alternative(none_id, attributes))
    return Task(id=task_id, alternatives=alternatives, none_alternative_id=none_id)


def generate_design(
    attributes: list[Attribute],
    num_tasks: int,
    alts_per_task: int,
    *,
    seed: int | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> list[Task]:
    """
    Generate *num_tasks* random choice tasks.

    Each task holds *alts_per_task* real alternatives (ids ``1..alts_per_task``)
    followed by one "None of these" alternative with id ``alts_per_task + 1``.
    An alternative that exactly repeats one already in the task is redrawn up
    to *max_retries* times and then kept.

    ``seed=None`` draws from system randomness; pass a seed only for
    reproducible tests.
    """
    if not attributes:
        raise ConfigurationError("Cannot generate a design without attributes")
    for attr in attributes:
        if len(attr.levels) < 2:
            raise ConfigurationError(
                f"Attribute '{attr.name}' needs at least two levels to build a design"
            )
    if num_tasks < 1:
        raise ConfigurationError("A survey needs at least one task")
    if alts_per_task < 1:
        raise ConfigurationError("A task needs at least one alternative")

    rng = random.Random(seed)
    return [
        _generate_task(t + 1, attributes, alts_per_task, rng, max_retries)
        for t in range(num_tasks)
    ]


def design_shape(tasks: list[Task]) -> tuple[int, int]:
    """Return ``(tasks, real alternatives in the first task)`` for a design."""
    if not tasks:
        return 0, 0
    return len(tasks), len(tasks[0].real_alternatives)
