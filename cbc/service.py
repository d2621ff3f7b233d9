"""
Study service: the operations behind the API and the CLI.

The service is **frontend-agnostic**.  Researchers work through a project
key, respondents through a survey token; both are resolved by the injected
``TokenResolver`` and every read/write goes to the workbook ``Store`` the
key points at:

    service = StudyService(Workbooks("data"), TokenRegistry("data/tokens.json"))
    key = service.init_project("my-study")
    service.save_attributes(key, attributes)
    link = service.create_survey(key, "Launch wave")
    survey = service.load_survey(link.token)        # design generated once
    service.submit_responses(link.token, {1: 2, 2: 1, ...})
    result = service.run_analysis(key, num_plans=3)

Core computations live in the pure modules (design, aggregation, estimation,
plans, sample_size); this class only moves rows in and out of storage.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Any, Iterable

from pydantic import ValidationError

from cbc import io, storage
from cbc.analysis import AnalysisResult, EmptyAnalysis, run_analysis
from cbc.design import generate_design
from cbc.errors import (
    ConfigurationError,
    InvalidResponseError,
    InvalidTokenError,
    SurveyNotFoundError,
)
from cbc.models import (
    Attribute,
    Donation,
    Goal,
    PricingStrategy,
    Response,
    StudySettings,
    SurveyConfig,
    SurveyDefinition,
    SurveyLink,
    Task,
    check_attributes,
)
from cbc.plans import MAX_PLANS
from cbc.storage import Store, Workbooks
from cbc.tokens import TokenResolver

logger = logging.getLogger(__name__)

_TABLE_HEADERS = {
    storage.ATTRIBUTES: io.ATTRIBUTE_HEADER,
    storage.CONFIG: io.CONFIG_HEADER,
    storage.SURVEYS: io.SURVEY_HEADER,
    storage.RESPONSES: io.RESPONSE_HEADER,
    storage.DONATE: io.DONATE_HEADER,
}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part != "__root__")
    msg = err.get("msg", "Invalid value")
    return f"{loc}: {msg}" if loc else msg


def _ensure_header(store: Store, name: str, header: list[str]) -> None:
    store.ensure_table(name)
    if not store.read_table(name):
        store.write_table(name, [header])


class StudyService:
    """
    Workbook-backed conjoint study operations.

    Parameters
    ----------
    workbooks : Workbooks
        Resolves a workbook id to its row store.
    tokens : TokenResolver
        Wraps workbook / survey ids into opaque project keys and survey tokens.
    settings : StudySettings
        Design and analysis defaults.
    """

    def __init__(
        self,
        workbooks: Workbooks,
        tokens: TokenResolver,
        settings: StudySettings | None = None,
    ) -> None:
        self._workbooks = workbooks
        self._tokens = tokens
        self._settings = settings or StudySettings()
        # One lock per workbook serializes Design table writes
        self._design_locks: dict[str, threading.Lock] = {}
        self._design_locks_guard = threading.Lock()

    @property
    def settings(self) -> StudySettings:
        return self._settings

    # ------------------------------------------------------------------
    # Token resolution
    # ------------------------------------------------------------------

    def _resolve_project(self, project_key: str) -> tuple[str, Store]:
        payload = self._tokens.decrypt(project_key)
        sheet_id = payload.get("sheetId")
        if not sheet_id:
            raise InvalidTokenError("Invalid project key")
        return sheet_id, self._workbooks.open(sheet_id)

    def _survey_ids(self, token: str) -> tuple[str, str]:
        payload = self._tokens.decrypt(token)
        sheet_id, survey_id = payload.get("sheetId"), payload.get("surveyId")
        if not sheet_id or not survey_id:
            raise InvalidTokenError("Invalid survey token")
        return sheet_id, survey_id

    def _resolve_survey(self, token: str) -> tuple[str, Store]:
        sheet_id, survey_id = self._survey_ids(token)
        return survey_id, self._workbooks.open(sheet_id)

    def _design_lock(self, sheet_id: str) -> threading.Lock:
        with self._design_locks_guard:
            return self._design_locks.setdefault(sheet_id, threading.Lock())

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def init_project(self, sheet_id: str) -> str:
        """Prepare the workbook's tables and return its project key."""
        sheet_id = (sheet_id or "").strip()
        if not sheet_id:
            raise ConfigurationError("Sheet ID is required")
        logger.info("Initializing project for sheet: %s", sheet_id)

        store = self._workbooks.open(sheet_id)
        for name, header in _TABLE_HEADERS.items():
            _ensure_header(store, name, header)
        store.ensure_table(storage.DESIGN)
        return self._tokens.encrypt({"sheetId": sheet_id})

    def validate_key(self, project_key: str) -> str:
        """Return the workbook id behind *project_key*; raise if it is invalid."""
        if not project_key:
            raise InvalidTokenError("Project key is required")
        sheet_id, _ = self._resolve_project(project_key)
        return sheet_id

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def save_attributes(
        self,
        project_key: str,
        attributes: Iterable[Attribute | dict[str, Any]],
    ) -> list[Attribute]:
        _, store = self._resolve_project(project_key)
        try:
            parsed = [
                a if isinstance(a, Attribute) else Attribute.model_validate(a) for a in attributes
            ]
        except ValidationError as exc:
            raise ConfigurationError(_first_error(exc)) from None
        check_attributes(parsed)

        store.write_table(storage.ATTRIBUTES, io.attributes_to_rows(parsed))
        logger.info("Saved %d attributes", len(parsed))
        return parsed

    def _read_attributes(self, store: Store) -> list[Attribute]:
        try:
            return io.attributes_from_rows(
                store.read_table(storage.ATTRIBUTES),
                default_currency=self._settings.default_currency,
            )
        except ValidationError as exc:
            raise ConfigurationError(
                f"The Attributes table is invalid ({_first_error(exc)})"
            ) from None

    def get_attributes(self, project_key: str) -> list[Attribute]:
        _, store = self._resolve_project(project_key)
        return self._read_attributes(store)

    # ------------------------------------------------------------------
    # Survey config
    # ------------------------------------------------------------------

    def save_survey_config(self, project_key: str, config: SurveyConfig) -> SurveyConfig:
        _, store = self._resolve_project(project_key)
        store.write_table(storage.CONFIG, io.config_to_rows(config))
        logger.info("Survey config saved")
        return config

    def _read_config(self, store: Store) -> SurveyConfig:
        return io.config_from_rows(
            store.read_table(storage.CONFIG),
            default_question=self._settings.default_question,
        )

    def get_survey_config(self, project_key: str) -> SurveyConfig:
        _, store = self._resolve_project(project_key)
        return self._read_config(store)

    # ------------------------------------------------------------------
    # Survey links
    # ------------------------------------------------------------------

    def create_survey(self, project_key: str, name: str) -> SurveyLink:
        """Create a new survey and its respondent token."""
        sheet_id, store = self._resolve_project(project_key)
        survey_id = _new_id("survey")
        token = self._tokens.encrypt({"sheetId": sheet_id, "surveyId": survey_id})
        link = SurveyLink(
            survey_id=survey_id,
            name=(name or "").strip() or survey_id,
            token=token,
            created_at=_timestamp(),
        )
        _ensure_header(store, storage.SURVEYS, io.SURVEY_HEADER)
        store.append_rows(storage.SURVEYS, [io.survey_to_row(link)])
        logger.info("Survey link generated for %s", link.name)
        return link

    def list_surveys(self, project_key: str) -> list[SurveyLink]:
        _, store = self._resolve_project(project_key)
        return io.surveys_from_rows(store.read_table(storage.SURVEYS))

    def delete_survey(self, project_key: str, survey_id: str) -> None:
        _, store = self._resolve_project(project_key)
        rows = store.read_table(storage.SURVEYS)
        kept = [rows[0]] + [r for r in rows[1:] if not r or r[0] != survey_id] if rows else []
        if len(kept) == len(rows):
            raise SurveyNotFoundError("Survey not found")
        store.write_table(storage.SURVEYS, kept)
        logger.info("Deleted survey %s", survey_id)

    # ------------------------------------------------------------------
    # Design
    # ------------------------------------------------------------------

    def _read_designs(self, store: Store, attributes: list[Attribute]) -> dict[str, list[Task]]:
        return io.designs_from_rows(store.read_table(storage.DESIGN), attributes)

    def _append_design(
        self,
        store: Store,
        survey_id: str,
        tasks: list[Task],
        attributes: list[Attribute],
    ) -> None:
        rows = store.read_table(storage.DESIGN)
        if not rows:
            header = io.design_header(attributes)
            store.write_table(storage.DESIGN, [header])
        else:
            header = rows[0]
            mapped = io.map_headers(attributes, header[len(io.DESIGN_PREFIX):])
            missing = [a.name for a in attributes if a.name not in mapped.values()]
            if missing:
                # Attributes were added after earlier designs; widen the table
                header = header + missing
                width = len(header)
                store.write_table(
                    storage.DESIGN,
                    [header] + [r + [""] * (width - len(r)) for r in rows[1:]],
                )

        mapped = io.map_headers(attributes, header[len(io.DESIGN_PREFIX):])
        columns = [mapped.get(h, h) for h in header[len(io.DESIGN_PREFIX):]]
        store.append_rows(storage.DESIGN, io.design_to_rows(survey_id, tasks, columns))

    def load_survey(self, token: str) -> SurveyDefinition:
        """
        Return the survey a respondent should see.

        The design is generated the first time any respondent opens the
        survey and read back from the Design table on every later load, so
        all respondents of a survey answer the same tasks.  The read, the
        generation and the append run under the workbook's design lock, so
        concurrent first loads all replay the one design stored first.
        """
        sheet_id, survey_id = self._survey_ids(token)
        store = self._workbooks.open(sheet_id)
        config = self._read_config(store)
        attributes = self._read_attributes(store)
        if not attributes:
            raise ConfigurationError("No attributes configured. Please set up attributes first.")
        check_attributes(attributes)

        with self._design_lock(sheet_id):
            tasks = self._read_designs(store, attributes).get(survey_id)
            if not tasks:
                num_tasks = self._settings.clamp_tasks(config.num_tasks)
                tasks = generate_design(
                    attributes,
                    num_tasks,
                    self._settings.alternatives_per_task,
                    max_retries=self._settings.max_duplicate_retries,
                )
                self._append_design(store, survey_id, tasks, attributes)
                logger.info("Generated design for survey %s: %d tasks", survey_id, len(tasks))

        return SurveyDefinition(
            survey_id=survey_id,
            introduction=config.introduction,
            question=config.question,
            tasks=tasks,
        )

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def submit_responses(self, token: str, selections: dict[int, int]) -> str:
        """Record one respondent's answers (task id -> selected alternative id)."""
        survey_id, store = self._resolve_survey(token)
        if not selections:
            raise InvalidResponseError("No task responses were submitted")

        attributes = self._read_attributes(store)
        tasks = {t.id: t for t in self._read_designs(store, attributes).get(survey_id, [])}
        if not tasks:
            raise InvalidResponseError("Survey design not found. Please reload the survey.")

        response_id = _new_id("response")
        timestamp = _timestamp()
        responses: list[Response] = []
        for task_id, selected in selections.items():
            task = tasks.get(int(task_id))
            if task is None or task.alternative(int(selected)) is None:
                raise InvalidResponseError(
                    f"Invalid selection {selected} for task {task_id}"
                )
            responses.append(
                Response(
                    response_id=response_id,
                    survey_id=survey_id,
                    task_id=int(task_id),
                    selected_alt=int(selected),
                    timestamp=timestamp,
                )
            )

        _ensure_header(store, storage.RESPONSES, io.RESPONSE_HEADER)
        store.append_rows(storage.RESPONSES, io.responses_to_rows(responses))
        logger.info("Recorded %d task responses", len(responses))
        return response_id

    def submit_donation(self, token: str, amount: float) -> str:
        """Record a donation; the respondent's session ends here."""
        survey_id, store = self._resolve_survey(token)
        if not amount or amount <= 0:
            raise InvalidResponseError("Please enter a valid donation amount")

        donation = Donation(
            response_id=_new_id("response"),
            survey_id=survey_id,
            amount=float(amount),
            timestamp=_timestamp(),
        )
        _ensure_header(store, storage.DONATE, io.DONATE_HEADER)
        store.append_rows(storage.DONATE, [io.donation_to_row(donation)])
        logger.info("Recorded donation of %.2f", donation.amount)
        return donation.response_id

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def run_analysis(
        self,
        project_key: str,
        *,
        num_plans: int | None = None,
        pricing_strategy: PricingStrategy | str = PricingStrategy.SUGGESTED,
        goal: Goal | str = Goal.REVENUE,
        persist: bool = True,
    ) -> AnalysisResult | EmptyAnalysis:
        """
        Analyse every response collected for the project.

        With *persist* the report is also written to an ``Analysis_<date>``
        table in the workbook.
        """
        _, store = self._resolve_project(project_key)
        num_plans = self._settings.default_num_plans if num_plans is None else num_plans
        if not 1 <= num_plans <= MAX_PLANS:
            raise ConfigurationError(f"Number of plans must be between 1 and {MAX_PLANS}")
        try:
            pricing_strategy = PricingStrategy(pricing_strategy)
            goal = Goal(goal)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from None

        attributes = self._read_attributes(store)
        if not attributes:
            raise ConfigurationError(
                "No attributes found. Please configure attributes in the Attributes tab "
                "before running analysis."
            )

        result = run_analysis(
            attributes,
            self._read_designs(store, attributes),
            io.responses_from_rows(store.read_table(storage.RESPONSES)),
            num_plans=num_plans,
            pricing_strategy=pricing_strategy,
            goal=goal,
            donations=io.donations_from_rows(store.read_table(storage.DONATE)),
        )

        if persist and isinstance(result, AnalysisResult):
            tab = io.analysis_tab_name()
            store.write_table(tab, result.to_rows())
            result.analysis_tab_name = tab
            logger.info("Analysis complete and saved to %s", tab)
        return result
