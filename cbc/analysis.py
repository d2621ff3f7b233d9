"""
End-to-end conjoint analysis for one study.

``run_analysis`` ties the pure pieces together:

1. **Aggregation**: responses are grouped by survey and counted against that
   survey's stored design ("None of these" answers excluded).
2. **Estimation**: log-odds part-worths, zero-centred per attribute, and
   range-based importances.
3. **Plan synthesis**: Good / Better / Best tiers priced for the chosen
   goal and strategy.
4. **Sample-size guidance**: Orme's CBC rule at 70/80/90% confidence.

All four produce plain data; ``AnalysisResult`` renders it as the JSON bundle
returned by the API and as report rows for the workbook.
"""

# Import modules
from __future__ import annotations

import csv
import io
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from cbc.aggregation import LevelCounts, aggregate, filter_none_responses
from cbc.design import design_shape
from cbc.errors import ConfigurationError
from cbc.estimation import estimate
from cbc.models import (
    DEFAULT_CURRENCY,
    Attribute,
    Donation,
    Goal,
    PricingStrategy,
    Response,
    Task,
    check_attributes,
    find_price_attribute,
)
from cbc.plans import Plan, format_price, synthesize
from cbc.sample_size import SampleSize, recommend

logger = logging.getLogger(__name__)

NO_RESPONSES_MESSAGE = (
    "No survey responses have been collected yet. Share your survey links and "
    "come back once respondents have completed the survey."
)

# =====================================================================
# Result containers
# =====================================================================

@dataclass
class DonationStats:
    """Descriptive statistics for respondents who chose to donate instead."""

    average: float
    count: int
    amounts: list[float]

    @classmethod
    def from_donations(cls, donations: Iterable[Donation]) -> "DonationStats | None":
        amounts = [d.amount for d in donations if d.amount > 0]
        if not amounts:
            return None
        return cls(average=sum(amounts) / len(amounts), count=len(amounts), amounts=amounts)

    def to_dict(self) -> dict[str, Any]:
        return {"average": self.average, "count": self.count, "amounts": list(self.amounts)}


@dataclass
class EmptyAnalysis:
    """Returned instead of a result when no responses exist yet."""

    message: str = NO_RESPONSES_MESSAGE
    no_responses: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "No responses found",
            "message": self.message,
            "noResponses": self.no_responses,
        }


@dataclass
class AnalysisResult:
    """Full analysis output."""

    utilities: dict[str, float]
    importances: dict[str, float]
    total_responses: int
    none_selections: int
    plans: list[Plan]
    sample_size: SampleSize
    currency: str = DEFAULT_CURRENCY
    price_mismatch_warning: str | None = None
    donation_data: DonationStats | None = None
    analysis_tab_name: str | None = None

    # ------------------------------------------------------------------
    # Export helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "importances": dict(self.importances),
            "utilities": dict(self.utilities),
            "totalResponses": self.total_responses,
            "noneSelections": self.none_selections,
            "currency": self.currency,
            "plans": [plan.to_dict() for plan in self.plans],
            "sampleSize": self.sample_size.to_dict(),
        }
        if self.price_mismatch_warning:
            payload["priceMismatchWarning"] = self.price_mismatch_warning
        if self.donation_data is not None:
            payload["donationData"] = self.donation_data.to_dict()
        if self.analysis_tab_name:
            payload["analysisTabName"] = self.analysis_tab_name
        return payload

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(["type", "key", "value"])
        for key, value in self.utilities.items():
            writer.writerow(["utility", key, f"{value:.4f}"])
        for attr, value in self.importances.items():
            writer.writerow(["importance", attr, f"{value:.2f}"])
        return buf.getvalue()

    def to_rows(self, generated_at: datetime | None = None) -> list[list[str]]:
        """Spreadsheet report: summary, sample-size guidance, utilities and plans."""
        generated_at = generated_at or datetime.now()
        ss = self.sample_size
        rows: list[list[str]] = [
            ["Conjoint Analysis Results"],
            [""],
            ["Total Unique Respondents:", str(self.total_responses)],
            ['"None" Selections Excluded:', str(self.none_selections)],
            ["Analysis Date:", generated_at.strftime("%Y-%m-%d %H:%M:%S")],
            [""],
            ["Sample Size Guidance (Orme CBC rule, approximate)"],
            ["Total Levels", str(ss.total_levels)],
            ["Tasks per Respondent (design)", str(ss.tasks_per_respondent)],
            ['Alternatives per Task (excluding "None")', str(ss.alternatives_per_task)],
            [""],
            ["Target Confidence", "Approx. Required Responses"],
            ["~70%", str(ss.n70)],
            ["~80% (baseline)", str(ss.n80)],
            ["~90%", str(ss.n90)],
            [""],
            ["Attribute Importances"],
            ["Attribute", "Importance (%)"],
        ]
        rows.extend([attr, f"{imp:.2f}"] for attr, imp in self.importances.items())

        rows.extend([[""], ["Attribute Level Utilities"], ["Attribute:Level", "Utility"]])
        rows.extend([key, f"{util:.3f}"] for key, util in self.utilities.items())

        if self.plans:
            rows.extend(
                [
                    [""],
                    ["Recommended Plans"],
                    ["Plan Name", "Suggested Price", "Willingness to Pay", "Features"],
                ]
            )
            for plan in self.plans:
                features = "; ".join(f"{attr}: {lv}" for attr, lv in plan.features.items())
                rows.append(
                    [
                        plan.name,
                        format_price(plan.suggested_price, plan.currency),
                        f"{plan.willingness_to_pay:.2f}",
                        features,
                    ]
                )

        if self.donation_data is not None:
            rows.extend(
                [
                    [""],
                    ["Donation Statistics"],
                    ["Total Donations:", str(self.donation_data.count)],
                    ["Average Donation:", f"{self.donation_data.average:.2f}"],
                ]
            )
        return rows


# =====================================================================
# Orchestration
# =====================================================================

def _group_by_survey(responses: Iterable[Response]) -> dict[str, list[Response]]:
    grouped: dict[str, list[Response]] = defaultdict(list)
    for response in responses:
        grouped[response.survey_id].append(response)
    return grouped


def run_analysis(
    attributes: list[Attribute],
    designs: dict[str, list[Task]],
    responses: list[Response],
    *,
    num_plans: int = 3,
    pricing_strategy: PricingStrategy | str = PricingStrategy.SUGGESTED,
    goal: Goal | str = Goal.REVENUE,
    donations: Iterable[Donation] = (),
) -> AnalysisResult | EmptyAnalysis:
    """
    Run the full analysis for one study.

    *designs* maps survey id -> the tasks shown to that survey's respondents.
    Returns ``EmptyAnalysis`` when there is nothing to analyse yet.
    """
    check_attributes(attributes)
    logger.info(
        "Running conjoint analysis with %d plans, pricing strategy: %s, goal: %s",
        num_plans,
        PricingStrategy(pricing_strategy).value,
        Goal(goal).value,
    )

    if not responses:
        return EmptyAnalysis()

    if not any(designs.values()):
        raise ConfigurationError(
            "No survey design found. Please generate survey links first; the survey "
            "design is created when the first respondent opens a survey."
        )

    n_tasks = sum(len(tasks) for tasks in designs.values())
    logger.info("Parsed %d tasks with design data across %d surveys", n_tasks, len(designs))

    counts = LevelCounts()
    kept: list[Response] = []
    none_selections = 0
    for survey_id, survey_responses in _group_by_survey(responses).items():
        design = designs.get(survey_id)
        if not design:
            logger.warning(
                "Skipping %d responses for survey %s: no stored design",
                len(survey_responses),
                survey_id,
            )
            continue
        answered = filter_none_responses(survey_responses, design)
        none_selections += len(survey_responses) - len(answered)
        kept.extend(answered)
        counts = counts + aggregate(answered, design)

    total_respondents = len({r.response_id for r in kept})
    logger.info(
        "Analyzing %d response rows from %d unique respondents (%d \"None\" responses excluded)",
        len(kept),
        total_respondents,
        none_selections,
    )

    estimates = estimate(counts, attributes)
    plan_set = synthesize(
        num_plans,
        attributes,
        estimates.utilities,
        pricing_strategy=pricing_strategy,
        goal=goal,
    )

    first_design = next(tasks for tasks in designs.values() if tasks)
    tasks_per_respondent, alts_per_task = design_shape(first_design)
    sample_size = recommend(
        sum(len(a.levels) for a in attributes),
        tasks_per_respondent,
        alts_per_task,
    )

    price_attr = find_price_attribute(attributes)
    donation_stats = DonationStats.from_donations(donations)
    if donation_stats is not None:
        logger.info(
            "Found %d donation responses with average %.2f",
            donation_stats.count,
            donation_stats.average,
        )

    return AnalysisResult(
        utilities=estimates.utilities,
        importances=estimates.importances,
        total_responses=total_respondents,
        none_selections=none_selections,
        plans=plan_set.plans,
        sample_size=sample_size,
        currency=price_attr.currency if price_attr else DEFAULT_CURRENCY,
        price_mismatch_warning=plan_set.warning,
        donation_data=donation_stats,
    )
