"""
Exceptions raised by the conjoint engine and the study service.

Every error carries a message that is safe to show to the researcher or the
respondent verbatim.  All of them subclass ``ValueError`` so callers that
only care about "bad input" can catch the built-in type.
"""

from __future__ import annotations


class ConjointError(ValueError):
    """Base class for all user-facing errors."""


class ConfigurationError(ConjointError):
    """The study is not set up well enough to run the requested operation."""


class InvalidTokenError(ConjointError):
    """A project key or survey token could not be resolved."""


class SurveyNotFoundError(ConjointError):
    """The requested survey does not exist in the workbook."""


class InvalidResponseError(ConjointError):
    """A respondent submission is malformed."""
