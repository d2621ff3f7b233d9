"""
JSON API for the conjoint study service.

Researcher endpoints take a ``projectKey``; respondent endpoints take a
survey ``token``.  Request bodies use camelCase field names.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cbc.errors import ConjointError
from cbc.models import Goal, PricingStrategy, SurveyConfig
from cbc.service import StudyService

logger = logging.getLogger(__name__)

_service: StudyService | None = None


# ---------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------

class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitProjectBody(_Body):
    sheet_id: str


class ProjectKeyBody(_Body):
    project_key: str


class SaveAttributesBody(_Body):
    project_key: str
    attributes: list[dict[str, Any]]


class SaveConfigBody(_Body):
    project_key: str
    introduction: str = ""
    question: str | None = None
    num_tasks: int | None = Field(default=None, ge=1)


class CreateSurveyBody(_Body):
    project_key: str
    survey_name: str = ""


class SubmitBody(_Body):
    survey_token: str
    type: Literal["survey", "donation"] = "survey"
    responses: dict[int, int] = Field(default_factory=dict)
    donation_amount: float | None = None


class AnalysisBody(_Body):
    project_key: str
    num_plans: int | None = None
    pricing_strategy: PricingStrategy = PricingStrategy.SUGGESTED
    goal: Goal = Goal.REVENUE


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def _svc() -> StudyService:
    if _service is None:
        raise RuntimeError("create_app() has not been called")
    return _service


# ---------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------

def create_app(service: StudyService) -> FastAPI:

    global _service
    _service = service

    app = FastAPI(title="CBC Pricing Study")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    # --------------------------------------------------
    # Error handling
    # --------------------------------------------------

    @app.exception_handler(ConjointError)
    async def conjoint_error(request: Request, exc: ConjointError):
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # --------------------------------------------------
    # Projects
    # --------------------------------------------------

    @app.post("/api/projects")
    def init_project(body: InitProjectBody):
        return {"projectKey": _svc().init_project(body.sheet_id)}

    @app.post("/api/projects/validate")
    def validate_key(body: ProjectKeyBody):
        try:
            sheet_id = _svc().validate_key(body.project_key)
        except ConjointError:
            return {"valid": False}
        return {"valid": True, "sheetId": sheet_id}

    # --------------------------------------------------
    # Study setup
    # --------------------------------------------------

    @app.get("/api/attributes")
    def get_attributes(projectKey: str):
        return {"attributes": [_dump(a) for a in _svc().get_attributes(projectKey)]}

    @app.put("/api/attributes")
    def save_attributes(body: SaveAttributesBody):
        saved = _svc().save_attributes(body.project_key, body.attributes)
        return {"success": True, "attributes": [_dump(a) for a in saved]}

    @app.get("/api/survey-config")
    def get_survey_config(projectKey: str):
        return _dump(_svc().get_survey_config(projectKey))

    @app.put("/api/survey-config")
    def save_survey_config(body: SaveConfigBody):
        config = SurveyConfig(
            introduction=body.introduction,
            question=body.question or _svc().settings.default_question,
            num_tasks=body.num_tasks,
        )
        return {"success": True, **_dump(_svc().save_survey_config(body.project_key, config))}

    # --------------------------------------------------
    # Survey links
    # --------------------------------------------------

    @app.get("/api/surveys")
    def list_surveys(projectKey: str):
        return {"surveys": [_dump(s) for s in _svc().list_surveys(projectKey)]}

    @app.post("/api/surveys")
    def create_survey(body: CreateSurveyBody):
        return _dump(_svc().create_survey(body.project_key, body.survey_name))

    @app.delete("/api/surveys/{survey_id}")
    def delete_survey(survey_id: str, projectKey: str):
        _svc().delete_survey(projectKey, survey_id)
        return {"success": True}

    # --------------------------------------------------
    # Respondents
    # --------------------------------------------------

    @app.get("/api/survey")
    def load_survey(token: str):
        return _dump(_svc().load_survey(token))

    @app.post("/api/responses")
    def submit(body: SubmitBody):
        if body.type == "donation":
            response_id = _svc().submit_donation(body.survey_token, body.donation_amount or 0)
        else:
            response_id = _svc().submit_responses(body.survey_token, body.responses)
        return {"success": True, "responseId": response_id}

    # --------------------------------------------------
    # Analysis
    # --------------------------------------------------

    @app.post("/api/analysis")
    def analysis(body: AnalysisBody):
        result = _svc().run_analysis(
            body.project_key,
            num_plans=body.num_plans,
            pricing_strategy=body.pricing_strategy,
            goal=body.goal,
        )
        return result.to_dict()

    return app
