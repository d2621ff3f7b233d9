"""
Data models for the conjoint pricing study.

These Pydantic models define the study configuration (attributes and levels),
the choice-task design shown to respondents, the raw answers collected
against it, and the settings that drive the whole tool.

Models that travel over the JSON API use camelCase aliases
(``isPriceAttribute``, ``noneAlternativeId``...) but accept snake_case field
names too, so YAML study files can use either style.
"""

# Import modules
from __future__ import annotations
import enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from cbc.errors import ConfigurationError

# Sentinel level carried by the "choose none" alternative of every task
NONE_LEVEL = "None of these"
INCLUDED_LEVELS = ("Not Included", "Included")
DEFAULT_CURRENCY = "USD"
DEFAULT_QUESTION = "Which subscription plan would you prefer?"


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ------------------------------------------------------------------
# Attributes
# ------------------------------------------------------------------

class AttributeType(str, enum.Enum):
    """How the levels of an attribute are defined."""

    STANDARD = "standard"
    INCLUDED_NOT_INCLUDED = "included-not-included"


class Attribute(_ApiModel):
    """A product feature and the levels it can take."""

    name: str = Field(min_length=1)
    description: str | None = None
    type: AttributeType = AttributeType.STANDARD
    levels: list[str] = Field(min_length=2)
    is_price_attribute: bool = False
    currency: str = DEFAULT_CURRENCY

    @model_validator(mode="before")
    @classmethod
    def _fixed_included_levels(cls, data: object) -> object:
        # Included / Not Included attributes are not independently editable
        if isinstance(data, dict) and data.get("type") == AttributeType.INCLUDED_NOT_INCLUDED.value:
            data = {**data, "levels": list(INCLUDED_LEVELS)}
        return data

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Attribute name must not be blank")
        # Utility keys are "<attribute>:<level>"
        if ":" in value:
            raise ValueError("Attribute name must not contain ':'")
        return value

    @field_validator("levels")
    @classmethod
    def _validate_levels(cls, levels: list[str]) -> list[str]:
        cleaned = [lv.strip() for lv in levels]
        if any(not lv for lv in cleaned):
            raise ValueError("Levels must not be blank")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("Levels of an attribute must be distinct")
        if NONE_LEVEL in cleaned:
            raise ValueError(f"'{NONE_LEVEL}' is reserved and cannot be used as a level")
        return cleaned

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return (value or DEFAULT_CURRENCY).strip().upper()

    def key(self, level: str) -> str:
        """Utility-table key for one of this attribute's levels."""
        return level_key(self.name, level)


def level_key(attribute_name: str, level: str) -> str:
    return f"{attribute_name}:{level}"


def check_attributes(attributes: list[Attribute]) -> None:
    """Raise ``ConfigurationError`` unless *attributes* form a usable study."""
    if not attributes:
        raise ConfigurationError(
            "No attributes found. Please configure attributes before continuing."
        )
    names = [a.name for a in attributes]
    if len(names) != len(set(names)):
        raise ConfigurationError("Attribute names must be unique")
    for attr in attributes:
        if len(attr.levels) < 2:
            raise ConfigurationError(
                f"Attribute '{attr.name}' needs at least two levels"
            )
    if sum(1 for a in attributes if a.is_price_attribute) > 1:
        raise ConfigurationError("Only one attribute can be marked as the price attribute")


def find_price_attribute(attributes: list[Attribute]) -> Attribute | None:
    return next((a for a in attributes if a.is_price_attribute), None)


# ---------------------------------------------------------------------------
# Design: tasks and alternatives
# ---------------------------------------------------------------------------

class Alternative(_ApiModel):
    """One column of a choice task - one level per attribute."""

    id: int = Field(ge=1)
    levels: dict[str, str] = Field(
        description="Mapping of attribute name -> level shown"
    )

    @property
    def is_none(self) -> bool:
        return bool(self.levels) and all(lv == NONE_LEVEL for lv in self.levels.values())

    def signature(self) -> tuple[tuple[str, str], ...]:
        """Hashable identity of the level assignment (ignores the id)."""
        return tuple(sorted(self.levels.items()))


class Task(_ApiModel):
    """A choice task: several alternatives plus the "none" option."""

    id: int = Field(ge=1)
    alternatives: list[Alternative]
    none_alternative_id: int | None = None

    def alternative(self, alt_id: int) -> Alternative | None:
        return next((alt for alt in self.alternatives if alt.id == alt_id), None)

    @property
    def real_alternatives(self) -> list[Alternative]:
        return [alt for alt in self.alternatives if alt.id != self.none_alternative_id]


# ---------------------------------------------------------------------------
# Respondent answers
# ---------------------------------------------------------------------------

class Response(_ApiModel):
    """A single task answer; all answers of one sitting share ``response_id``."""

    response_id: str
    survey_id: str
    task_id: int
    selected_alt: int
    timestamp: str | None = None


class Donation(_ApiModel):
    """A respondent who would rather donate; ends their session immediately."""

    response_id: str
    survey_id: str
    amount: float
    timestamp: str | None = None


class PricingStrategy(str, enum.Enum):
    SUBMITTED = "submitted"
    SUGGESTED = "suggested"


class Goal(str, enum.Enum):
    REVENUE = "revenue"
    PURCHASES = "purchases"


# ---------------------------------------------------------------------------
# Surveys
# ---------------------------------------------------------------------------

class SurveyConfig(_ApiModel):
    """Respondent-facing copy and the number of tasks per survey."""

    introduction: str = ""
    question: str = DEFAULT_QUESTION
    num_tasks: int | None = Field(default=None, ge=1)


class SurveyLink(_ApiModel):
    survey_id: str
    name: str
    token: str
    created_at: str


class SurveyDefinition(_ApiModel):
    """Everything a respondent needs to take one survey."""

    survey_id: str
    introduction: str
    question: str
    tasks: list[Task]


# ------------------------------------------------------------------
# Settings (loaded from YAML)
# ------------------------------------------------------------------

class StudySettings(BaseModel):
    """Parameters that control design generation and analysis defaults."""

    num_tasks: int = Field(default=5, ge=1, le=10)
    min_tasks: int = Field(default=1, ge=1)
    max_tasks: int = Field(default=10, ge=1)
    alternatives_per_task: int = Field(default=3, ge=2, description="Real alternatives per task")
    max_duplicate_retries: int = Field(default=50, ge=0)
    default_num_plans: int = Field(default=3, ge=1, le=10)
    default_currency: str = DEFAULT_CURRENCY
    default_question: str = DEFAULT_QUESTION

    def clamp_tasks(self, requested: int | None) -> int:
        """Configured task count, bounded to ``[min_tasks, max_tasks]``."""
        value = self.num_tasks if requested is None else requested
        return max(self.min_tasks, min(self.max_tasks, value))


class AppSettings(BaseModel):
    """Top-level runtime configuration, typically loaded from a YAML file."""

    data_dir: Path = Path("data")
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000
    study: StudySettings = Field(default_factory=StudySettings)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppSettings":
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)


class StudyFile(BaseModel):
    """A study definition used to seed a new workbook from YAML."""

    name: str
    sheet_id: str | None = None
    introduction: str = ""
    question: str = DEFAULT_QUESTION
    num_tasks: int | None = Field(default=None, ge=1)
    attributes: list[Attribute] = Field(min_length=1)

    @model_validator(mode="after")
    def _validate_attributes(self) -> "StudyFile":
        names = [a.name for a in self.attributes]
        if len(names) != len(set(names)):
            raise ValueError("Attribute names must be unique")
        if sum(1 for a in self.attributes if a.is_price_attribute) > 1:
            raise ValueError("Only one attribute can be marked as the price attribute")
        return self

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, path: str | Path) -> "StudyFile":
        """Load a study definition from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data)

    def survey_config(self) -> SurveyConfig:
        return SurveyConfig(
            introduction=self.introduction,
            question=self.question,
            num_tasks=self.num_tasks,
        )
