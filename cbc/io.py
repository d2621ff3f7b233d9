"""
Row codecs between workbook tables and the study models.

Handles serialization / deserialization of:
- **Attributes**: one row per level; the attribute name and its flags are
  written on the first row only, later rows inherit the last name seen.
- **Config**: ``Setting, Value`` pairs.
- **Surveys**: one row per generated survey link.
- **Design**: one row per alternative, ``TaskID`` encoding the owning survey
  as ``<surveyId>_task<n>``.  Reading is tolerant of hand-edited sheets:
  headers are matched to attributes loosely and check/cross icons are mapped
  back onto Included / Not Included levels.
- **Responses** and **Donate**: one row per task answer / donation.

Malformed rows are skipped rather than failing the whole table.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from datetime import date
from typing import Any

from cbc.models import (
    DEFAULT_CURRENCY,
    NONE_LEVEL,
    Alternative,
    Attribute,
    Donation,
    Response,
    SurveyConfig,
    SurveyLink,
    Task,
)

logger = logging.getLogger(__name__)

ATTRIBUTE_HEADER = ["Attribute", "Level", "IsPriceAttribute", "Currency", "Type", "Description"]
CONFIG_HEADER = ["Setting", "Value"]
SURVEY_HEADER = ["Survey ID", "Name", "Token", "Created At"]
DESIGN_PREFIX = ["TaskID", "AltID"]
RESPONSE_HEADER = ["Response ID", "Survey ID", "Task ID", "Selected Alternative", "Timestamp"]
DONATE_HEADER = ["Response ID", "Survey ID", "Amount", "Timestamp"]

_TASK_ID = re.compile(r"^(?P<survey>.+)_task(?P<task>\d+)$")
_CHECKS = ("✓", "✔")
_CROSSES = ("✕", "✖")


def _cell(row: list[str], idx: int) -> str:
    return row[idx].strip() if idx < len(row) and row[idx] is not None else ""


def _to_int(value: str) -> int | None:
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return None


def analysis_tab_name(day: date | None = None) -> str:
    return f"Analysis_{(day or date.today()).isoformat()}"


# ------------------------------------------------------------------
# Attributes
# ------------------------------------------------------------------

def attributes_to_rows(attributes: list[Attribute]) -> list[list[str]]:
    rows = [list(ATTRIBUTE_HEADER)]
    for attr in attributes:
        for i, level in enumerate(attr.levels):
            if i == 0:
                rows.append(
                    [
                        attr.name,
                        level,
                        "TRUE" if attr.is_price_attribute else "FALSE",
                        attr.currency,
                        attr.type.value,
                        attr.description or "",
                    ]
                )
            else:
                rows.append(["", level, "", "", "", ""])
    return rows


def attributes_from_rows(
    rows: list[list[str]],
    *,
    default_currency: str = DEFAULT_CURRENCY,
) -> list[Attribute]:
    """
    Rebuild attributes from the Attributes table.

    Raises ``pydantic.ValidationError`` if a stored attribute is invalid
    (for example it has fewer than two levels).
    """
    specs: dict[str, dict[str, Any]] = {}
    last_name: str | None = None

    for row in rows[1:]:
        name = _cell(row, 0)
        level = _cell(row, 1)
        if name:
            last_name = name
            if name not in specs:
                specs[name] = {
                    "name": name,
                    "levels": [],
                    "is_price_attribute": _cell(row, 2).upper() == "TRUE",
                    "currency": _cell(row, 3) or default_currency,
                    "type": _cell(row, 4) or "standard",
                    "description": _cell(row, 5) or None,
                }
        if level and last_name:
            specs[last_name]["levels"].append(level)

    return [Attribute.model_validate(spec) for spec in specs.values()]


# ------------------------------------------------------------------
# Survey config
# ------------------------------------------------------------------

def config_to_rows(config: SurveyConfig) -> list[list[str]]:
    rows = [
        list(CONFIG_HEADER),
        ["Introduction", config.introduction],
        ["Question", config.question],
    ]
    if config.num_tasks is not None:
        rows.append(["NumTasks", str(config.num_tasks)])
    return rows


def config_from_rows(rows: list[list[str]], *, default_question: str | None = None) -> SurveyConfig:
    values: dict[str, Any] = {}
    if default_question:
        values["question"] = default_question
    for row in rows:
        key, value = _cell(row, 0), _cell(row, 1)
        if key == "Introduction":
            values["introduction"] = value
        elif key == "Question" and value:
            values["question"] = value
        elif key == "NumTasks":
            n = _to_int(value)
            if n is not None and n >= 1:
                values["num_tasks"] = n
    return SurveyConfig(**values)


# ------------------------------------------------------------------
# Survey links
# ------------------------------------------------------------------

def survey_to_row(link: SurveyLink) -> list[str]:
    return [link.survey_id, link.name, link.token, link.created_at]


def surveys_from_rows(rows: list[list[str]]) -> list[SurveyLink]:
    return [
        SurveyLink(
            survey_id=_cell(row, 0),
            name=_cell(row, 1),
            token=_cell(row, 2),
            created_at=_cell(row, 3),
        )
        for row in rows[1:]
        if _cell(row, 0)
    ]


# ------------------------------------------------------------------
# Design
# ------------------------------------------------------------------

def task_key(survey_id: str, task_id: int) -> str:
    return f"{survey_id}_task{task_id}"


def design_header(attributes: list[Attribute]) -> list[str]:
    return [*DESIGN_PREFIX, *(a.name for a in attributes)]


def design_to_rows(
    survey_id: str,
    tasks: list[Task],
    attribute_names: list[str],
) -> list[list[str]]:
    """Rows for one survey's design, in the column order of *attribute_names*."""
    return [
        [task_key(survey_id, task.id), str(alt.id), *(alt.levels.get(n, "") for n in attribute_names)]
        for task in tasks
        for alt in task.alternatives
    ]


def normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", (name or "").lower()).replace("(", "").replace(")", "").strip()


def map_headers(attributes: list[Attribute], headers: list[str]) -> dict[str, str]:
    """Map Design column headers onto canonical attribute names.

    Exact match after normalization wins; otherwise a prefix match in either
    direction.  Headers that match nothing are left out.
    """
    mapping: dict[str, str] = {}
    for header in headers:
        norm = normalize_name(header)
        if not norm:
            continue
        matched = next((a.name for a in attributes if normalize_name(a.name) == norm), None)
        if matched is None:
            matched = next(
                (
                    a.name
                    for a in attributes
                    if norm.startswith(normalize_name(a.name)) or normalize_name(a.name).startswith(norm)
                ),
                None,
            )
        if matched is not None:
            mapping[header] = matched
    return mapping


def canonical_level(attribute: Attribute | None, raw: str) -> str:
    """Map a stored level back onto the attribute's own spelling of it."""
    value = (raw or "").strip()
    if not value:
        return value
    lower = value.lower()
    if lower == NONE_LEVEL.lower() or value in ("—", "&#8212;"):
        return NONE_LEVEL
    if attribute is None or value in attribute.levels:
        return value

    levels = attribute.levels
    if lower == "included" or value in _CHECKS:
        match = next((lv for lv in levels if lv in _CHECKS), None) or next(
            (lv for lv in levels if "included" in lv.lower() and "not included" not in lv.lower()),
            None,
        )
        return match or value
    if lower == "not included" or value in _CROSSES:
        match = next((lv for lv in levels if lv in _CROSSES), None) or next(
            (lv for lv in levels if "not included" in lv.lower()), None
        )
        return match or value
    return value


def designs_from_rows(
    rows: list[list[str]],
    attributes: list[Attribute],
) -> dict[str, list[Task]]:
    """Parse the Design table into ``{survey_id: [Task, ...]}``."""
    if len(rows) <= 1:
        return {}

    headers = rows[0][len(DESIGN_PREFIX):]
    header_map = map_headers(attributes, headers)
    by_name = {a.name: a for a in attributes}
    columns = [header_map.get(h, h.strip()) for h in headers]

    raw: dict[str, dict[int, list[Alternative]]] = defaultdict(lambda: defaultdict(list))
    for row in rows[1:]:
        match = _TASK_ID.match(_cell(row, 0))
        alt_id = _to_int(_cell(row, 1))
        if match is None or alt_id is None or alt_id < 1:
            continue
        levels: dict[str, str] = {}
        for j, attr_name in enumerate(columns):
            level = canonical_level(by_name.get(attr_name), _cell(row, j + len(DESIGN_PREFIX)))
            if attr_name and level:
                levels[attr_name] = level
        raw[match["survey"]][int(match["task"])].append(Alternative(id=alt_id, levels=levels))

    designs: dict[str, list[Task]] = {}
    for survey_id, tasks in raw.items():
        parsed: list[Task] = []
        for task_id in sorted(tasks):
            alternatives = sorted(tasks[task_id], key=lambda a: a.id)
            none_id = next((alt.id for alt in alternatives if alt.is_none), None)
            if none_id is None:
                none_id = alternatives[-1].id + 1
                alternatives.append(
                    Alternative(id=none_id, levels={a.name: NONE_LEVEL for a in attributes})
                )
            parsed.append(Task(id=task_id, alternatives=alternatives, none_alternative_id=none_id))
        designs[survey_id] = parsed

    logger.debug("Parsed designs for %d surveys", len(designs))
    return designs


# ------------------------------------------------------------------
# Responses and donations
# ------------------------------------------------------------------

def responses_to_rows(responses: list[Response]) -> list[list[str]]:
    return [
        [r.response_id, r.survey_id, str(r.task_id), str(r.selected_alt), r.timestamp or ""]
        for r in responses
    ]


def _parse_task_id(value: str) -> int | None:
    match = _TASK_ID.match(value)
    return int(match["task"]) if match else _to_int(value)


def responses_from_rows(rows: list[list[str]]) -> list[Response]:
    responses: list[Response] = []
    skipped = 0
    for row in rows[1:]:
        task_id = _parse_task_id(_cell(row, 2))
        selected = _to_int(_cell(row, 3))
        if not _cell(row, 0) or task_id is None or selected is None:
            skipped += 1
            continue
        responses.append(
            Response(
                response_id=_cell(row, 0),
                survey_id=_cell(row, 1),
                task_id=task_id,
                selected_alt=selected,
                timestamp=_cell(row, 4) or None,
            )
        )
    if skipped:
        logger.warning("Skipped %d malformed response rows", skipped)
    return responses


def donation_to_row(donation: Donation) -> list[str]:
    return [donation.response_id, donation.survey_id, str(donation.amount), donation.timestamp or ""]


def donations_from_rows(rows: list[list[str]]) -> list[Donation]:
    donations: list[Donation] = []
    for row in rows[1:]:
        try:
            amount = float(_cell(row, 2))
        except ValueError:
            continue
        if amount != amount:  # NaN
            continue
        donations.append(
            Donation(
                response_id=_cell(row, 0),
                survey_id=_cell(row, 1),
                amount=amount,
                timestamp=_cell(row, 3) or None,
            )
        )
    return donations
