"""Tests for the workbook-backed study service."""

import threading

import pytest

from cbc import storage
from cbc.analysis import AnalysisResult, EmptyAnalysis
from cbc.errors import (
    ConfigurationError,
    InvalidResponseError,
    InvalidTokenError,
    SurveyNotFoundError,
)
from cbc.models import StudySettings, SurveyConfig
from cbc.service import StudyService
from cbc.storage import Workbooks
from cbc.tokens import TokenRegistry


def _answer_all(service, token, pick):
    """Load the survey and answer every task with ``pick(task)``."""
    survey = service.load_survey(token)
    return service.submit_responses(token, {task.id: pick(task) for task in survey.tasks})


class TestProjects:
    """Tests for project keys."""

    def test_init_creates_tables(self, service, workbooks):
        key = service.init_project("sheet-9")
        book = workbooks.open("sheet-9")

        assert service.validate_key(key) == "sheet-9"
        assert book.read_table(storage.RESPONSES)[0][0] == "Response ID"
        assert book.has_table(storage.DESIGN)

    def test_init_requires_sheet_id(self, service):
        with pytest.raises(ConfigurationError):
            service.init_project("  ")

    def test_unknown_key(self, service):
        with pytest.raises(InvalidTokenError):
            service.validate_key("not-a-key")


class TestStudySetup:
    """Tests for attributes and survey config."""

    def test_attributes_saved_and_read(self, service, project_key):
        attrs = service.get_attributes(project_key)

        assert [a.name for a in attrs] == ["Video Quality", "Offline Downloads", "Price"]
        assert attrs[1].levels == ["Not Included", "Included"]
        assert attrs[2].currency == "USD"

    def test_invalid_attribute_becomes_configuration_error(self, service, project_key):
        with pytest.raises(ConfigurationError, match="levels"):
            service.save_attributes(project_key, [{"name": "Color", "levels": ["Red"]}])

    def test_two_price_attributes_rejected(self, service, project_key):
        attrs = [
            {"name": "Price", "levels": ["1", "2"], "isPriceAttribute": True},
            {"name": "Fee", "levels": ["1", "2"], "isPriceAttribute": True},
        ]
        with pytest.raises(ConfigurationError):
            service.save_attributes(project_key, attrs)

    def test_survey_config(self, service, project_key):
        assert service.get_survey_config(project_key).question == service.settings.default_question

        service.save_survey_config(
            project_key, SurveyConfig(introduction="Hi", question="Pick", num_tasks=6)
        )
        config = service.get_survey_config(project_key)
        assert (config.introduction, config.question, config.num_tasks) == ("Hi", "Pick", 6)


class TestSurveyLinks:
    """Tests for survey creation and deletion."""

    def test_create_list_delete(self, service, project_key):
        link = service.create_survey(project_key, "Wave 1")

        assert link.survey_id.startswith("survey_")
        assert [s.name for s in service.list_surveys(project_key)] == ["Wave 1"]

        service.delete_survey(project_key, link.survey_id)
        assert service.list_surveys(project_key) == []

    def test_delete_unknown_survey(self, service, project_key):
        with pytest.raises(SurveyNotFoundError):
            service.delete_survey(project_key, "survey_missing")


class TestLoadSurvey:
    """Tests for design generation and replay."""

    def test_design_generated_once(self, service, project_key, workbooks):
        token = service.create_survey(project_key, "A").token

        first = service.load_survey(token)
        second = service.load_survey(token)

        assert len(first.tasks) == 4
        assert first.tasks == second.tasks
        design_rows = workbooks.open("sheet-1").read_table(storage.DESIGN)
        assert len(design_rows) == 1 + 4 * 4

    def test_surveys_keep_their_own_designs(self, service, project_key, workbooks):
        a = service.create_survey(project_key, "A")
        b = service.create_survey(project_key, "B")
        tasks_a = service.load_survey(a.token).tasks
        service.load_survey(b.token)

        assert service.load_survey(a.token).tasks == tasks_a
        assert len(workbooks.open("sheet-1").read_table(storage.DESIGN)) == 1 + 2 * 16

    def test_task_count_from_config_is_clamped(self, service, project_key):
        service.save_survey_config(project_key, SurveyConfig(num_tasks=25))
        token = service.create_survey(project_key, "Long").token
        assert len(service.load_survey(token).tasks) == 10

    def test_new_attribute_widens_design_table(self, service, project_key, study_attributes):
        a = service.create_survey(project_key, "A").token
        tasks_a = service.load_survey(a).tasks

        service.save_attributes(
            project_key, study_attributes + [{"name": "Screens", "levels": ["1", "4"]}]
        )
        b = service.create_survey(project_key, "B").token
        tasks_b = service.load_survey(b).tasks

        assert "Screens" in tasks_b[0].real_alternatives[0].levels
        assert service.load_survey(a).tasks == tasks_a

    def test_concurrent_first_loads_share_one_design(self, tmp_path, study_attributes):
        """Test that respondents opening a new survey together all get the stored design."""
        service = StudyService(
            Workbooks(tmp_path),
            TokenRegistry(),
            StudySettings(num_tasks=4, alternatives_per_task=3),
        )
        key = service.init_project("sheet-csv")
        service.save_attributes(key, study_attributes)

        def load(token, barrier, results, errors):
            barrier.wait()
            try:
                results.append(service.load_survey(token).tasks)
            except Exception as exc:
                errors.append(exc)

        for trial in range(10):
            token = service.create_survey(key, f"Rush {trial}").token
            barrier = threading.Barrier(4)
            results, errors = [], []
            threads = [
                threading.Thread(target=load, args=(token, barrier, results, errors))
                for _ in range(4)
            ]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert errors == []
            stored = service.load_survey(token).tasks
            assert len(stored) == 4
            assert all(len(task.alternatives) == 3 + 1 for task in stored)
            assert all(tasks == stored for tasks in results)

        design_rows = Workbooks(tmp_path).open("sheet-csv").read_table(storage.DESIGN)
        assert len(design_rows) == 1 + 10 * 4 * 4

    def test_requires_attributes(self, service):
        key = service.init_project("empty")
        token = service.create_survey(key, "A").token
        with pytest.raises(ConfigurationError, match="No attributes"):
            service.load_survey(token)

    def test_invalid_token(self, service):
        with pytest.raises(InvalidTokenError):
            service.load_survey("bogus")


class TestSubmissions:
    """Tests for responses and donations."""

    def test_responses_recorded(self, service, project_key, workbooks):
        token = service.create_survey(project_key, "A").token
        response_id = _answer_all(service, token, lambda task: 1)

        rows = workbooks.open("sheet-1").read_table(storage.RESPONSES)
        assert len(rows) == 1 + 4
        assert {r[0] for r in rows[1:]} == {response_id}
        assert [r[2] for r in rows[1:]] == ["1", "2", "3", "4"]

    def test_unknown_alternative_rejected(self, service, project_key):
        token = service.create_survey(project_key, "A").token
        service.load_survey(token)
        with pytest.raises(InvalidResponseError):
            service.submit_responses(token, {1: 9})

    def test_unknown_task_rejected(self, service, project_key):
        token = service.create_survey(project_key, "A").token
        service.load_survey(token)
        with pytest.raises(InvalidResponseError):
            service.submit_responses(token, {42: 1})

    def test_empty_submission_rejected(self, service, project_key):
        token = service.create_survey(project_key, "A").token
        with pytest.raises(InvalidResponseError):
            service.submit_responses(token, {})

    def test_submission_before_design_rejected(self, service, project_key):
        token = service.create_survey(project_key, "A").token
        with pytest.raises(InvalidResponseError, match="design"):
            service.submit_responses(token, {1: 1})

    def test_donation(self, service, project_key, workbooks):
        token = service.create_survey(project_key, "A").token
        service.submit_donation(token, 7.5)

        rows = workbooks.open("sheet-1").read_table(storage.DONATE)
        assert rows[1][2] == "7.5"

    @pytest.mark.parametrize("amount", [0, -3])
    def test_non_positive_donation_rejected(self, service, project_key, amount):
        token = service.create_survey(project_key, "A").token
        with pytest.raises(InvalidResponseError):
            service.submit_donation(token, amount)


class TestServiceAnalysis:
    """Tests for analysis over stored responses."""

    def test_no_responses(self, service, project_key):
        result = service.run_analysis(project_key)
        assert isinstance(result, EmptyAnalysis)
        assert result.to_dict()["noResponses"] is True

    def test_full_analysis_persisted(self, service, project_key, workbooks):
        a = service.create_survey(project_key, "A").token
        b = service.create_survey(project_key, "B").token
        _answer_all(service, a, lambda task: 1)
        _answer_all(service, b, lambda task: 2)
        _answer_all(service, a, lambda task: task.none_alternative_id)
        service.submit_donation(b, 10)
        service.submit_donation(b, 20)

        result = service.run_analysis(project_key, num_plans=4, goal="purchases")

        assert isinstance(result, AnalysisResult)
        assert result.total_responses == 2
        assert result.none_selections == 4
        assert len(result.plans) == 4
        assert sum(result.importances.values()) == pytest.approx(100.0)
        assert result.donation_data.count == 2
        assert result.donation_data.average == pytest.approx(15.0)
        assert result.sample_size.tasks_per_respondent == 4
        assert result.sample_size.alternatives_per_task == 3
        assert result.sample_size.total_levels == 8

        tab = result.analysis_tab_name
        assert tab.startswith("Analysis_")
        assert workbooks.open("sheet-1").read_table(tab)[0] == ["Conjoint Analysis Results"]
        assert result.to_dict()["analysisTabName"] == tab

    def test_persist_can_be_skipped(self, service, project_key):
        token = service.create_survey(project_key, "A").token
        _answer_all(service, token, lambda task: 1)
        result = service.run_analysis(project_key, persist=False)
        assert result.analysis_tab_name is None

    @pytest.mark.parametrize("num_plans", [0, 11])
    def test_plan_count_bounds(self, service, project_key, num_plans):
        with pytest.raises(ConfigurationError):
            service.run_analysis(project_key, num_plans=num_plans)

    def test_unknown_goal(self, service, project_key):
        with pytest.raises(ConfigurationError):
            service.run_analysis(project_key, goal="profit")
