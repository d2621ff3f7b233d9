"""
CBC - Choice-Based Conjoint pricing study toolkit

Generates randomized choice-task designs, collects respondent answers and
turns them into part-worth utilities, attribute importances and recommended
Good / Better / Best plans.  The study service is frontend-agnostic and is
driven by the JSON API (web/) and the terminal tools (cli/).
"""

from cbc.models import (
    Attribute,
    AttributeType,
    Goal,
    PricingStrategy,
    StudySettings,
    SurveyConfig,
    Task,
)
from cbc.errors import ConjointError, ConfigurationError, InvalidTokenError
from cbc.analysis import AnalysisResult, EmptyAnalysis, run_analysis
from cbc.service import StudyService

__all__ = [
    "Attribute",
    "AttributeType",
    "Goal",
    "PricingStrategy",
    "StudySettings",
    "SurveyConfig",
    "Task",
    "ConjointError",
    "ConfigurationError",
    "InvalidTokenError",
    "AnalysisResult",
    "EmptyAnalysis",
    "run_analysis",
    "StudyService",
]
