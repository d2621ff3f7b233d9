"""Pytest fixtures for the conjoint study tests."""

import pytest

from cbc.models import Alternative, Attribute, Response, StudySettings, Task, NONE_LEVEL
from cbc.service import StudyService
from cbc.storage import Workbooks
from cbc.tokens import TokenRegistry


@pytest.fixture
def storage_price_attributes() -> list[Attribute]:
    """A storage attribute and a three-level price attribute."""
    return [
        Attribute(name="Storage", levels=["10GB", "100GB", "1TB"]),
        Attribute(name="Price", levels=["$5", "$10", "$20"], is_price_attribute=True),
    ]


@pytest.fixture
def single_task_design() -> list[Task]:
    """
    One task with two real alternatives and the none option.

    Alt 1 is the cheap small plan, Alt 2 the expensive large one.
    """
    return [
        Task(
            id=1,
            alternatives=[
                Alternative(id=1, levels={"Storage": "10GB", "Price": "$5"}),
                Alternative(id=2, levels={"Storage": "1TB", "Price": "$20"}),
                Alternative(id=3, levels={"Storage": NONE_LEVEL, "Price": NONE_LEVEL}),
            ],
            none_alternative_id=3,
        )
    ]


@pytest.fixture
def ten_respondents() -> list[Response]:
    """Seven pick Alt 1, two pick Alt 2 and one picks "None of these"."""
    picks = [1] * 7 + [2] * 2 + [3]
    return [
        Response(response_id=f"r{i}", survey_id="s1", task_id=1, selected_alt=alt)
        for i, alt in enumerate(picks)
    ]


@pytest.fixture
def study_attributes() -> list[dict]:
    """Attribute payloads as the JSON API receives them."""
    return [
        {"name": "Video Quality", "levels": ["HD", "Full HD", "4K"]},
        {"name": "Offline Downloads", "type": "included-not-included", "levels": []},
        {
            "name": "Price",
            "levels": ["$8", "$12", "$18"],
            "isPriceAttribute": True,
            "currency": "usd",
        },
    ]


@pytest.fixture
def workbooks() -> Workbooks:
    return Workbooks()


@pytest.fixture
def service(workbooks) -> StudyService:
    """Service over in-memory workbooks with a small design."""
    return StudyService(
        workbooks,
        TokenRegistry(),
        StudySettings(num_tasks=4, alternatives_per_task=3),
    )


@pytest.fixture
def project_key(service, study_attributes) -> str:
    """A project with attributes saved."""
    key = service.init_project("sheet-1")
    service.save_attributes(key, study_attributes)
    return key
