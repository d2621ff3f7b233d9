"""
CLI frontend for survey respondents.

Uses questionary for keyboard-driven prompts and rich for formatted
output (tables, panels).

This module is the **only** place the respondent flow touches terminal I/O;
the study service behind it is shared with the JSON API.
"""

# Import modules
from __future__ import annotations
import sys

import questionary
from questionary import Style
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from cbc.errors import ConjointError
from cbc.models import NONE_LEVEL, SurveyDefinition, Task
from cbc.service import StudyService

# Rich console for pretty output
console = Console()

# Questionary style
SURVEY_STYLE = Style(
    [
        ("qmark", "fg:cyan bold"),
        ("question", "bold"),
        ("answer", "fg:green bold"),
        ("pointer", "fg:cyan bold"),
        ("highlighted", "fg:cyan bold"),
        ("selected", "fg:green"),
    ]
)

DONATE = "donate"

# =====================================================================
# Task rendering
# =====================================================================

def _render_task_table(task: Task, attribute_names: list[str], *, title: str = "") -> Table:
    """Build a Rich Table showing the real alternatives of a task side-by-side."""
    table = Table(
        title=title,
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )

    table.add_column("Feature", style="bold", min_width=16)
    for i, _alt in enumerate(task.real_alternatives):
        table.add_column(f"Option {i + 1}", min_width=14, justify="center")

    for attr_name in attribute_names:
        row = [attr_name]
        for alt in task.real_alternatives:
            row.append(alt.levels.get(attr_name, "—"))
        table.add_row(*row)

    return table


def _attribute_names(survey: SurveyDefinition) -> list[str]:
    names: list[str] = []
    for task in survey.tasks:
        for alt in task.real_alternatives:
            names.extend(n for n in alt.levels if n not in names)
    return names

# =====================================================================
# Question handlers
# =====================================================================

def _cancelled() -> None:
    console.print("[red]Survey cancelled.[/red]")
    sys.exit(0)


def _ask_task(task: Task, number: int, total: int, question: str, attribute_names: list[str]):
    """Show one choice task; return the chosen alternative id or ``DONATE``."""
    console.print()
    console.print(
        Panel(
            f"[bold]Question {number} of {total}[/bold]\n\n{question}",
            border_style="magenta",
        )
    )
    console.print(_render_task_table(task, attribute_names))
    console.print()

    choices = [
        questionary.Choice(f"Option {i + 1}", value=alt.id)
        for i, alt in enumerate(task.real_alternatives)
    ]
    if task.none_alternative_id is not None:
        choices.append(questionary.Choice(NONE_LEVEL, value=task.none_alternative_id))
    choices.append(questionary.Choice("I'd rather donate instead", value=DONATE))

    answer = questionary.select("Your choice:", choices=choices, style=SURVEY_STYLE).ask()
    if answer is None:
        _cancelled()
    return answer


def _valid_amount(text: str) -> bool | str:
    try:
        value = float(text)
    except ValueError:
        return "Please enter a valid donation amount"
    return True if value > 0 else "Please enter a valid donation amount"


def _ask_donation() -> float:
    console.print(
        Panel(
            "Instead of subscribing, you can tell us how much you would rather donate.\n"
            "[dim]Submitting a donation ends the survey immediately.[/dim]",
            border_style="yellow",
        )
    )
    answer = questionary.text(
        "Donation amount:",
        validate=_valid_amount,
        style=SURVEY_STYLE,
    ).ask()
    if answer is None:
        _cancelled()
    return float(answer)

# =====================================================================
# Main survey runner
# =====================================================================

def run_survey(service: StudyService, token: str) -> str | None:
    """
    Take a survey in the terminal and submit the answers.

    Returns the response id, or ``None`` if the survey could not be loaded.
    """
    try:
        survey = service.load_survey(token)
    except ConjointError as exc:
        console.print(f"[red]{exc}[/red]")
        return None

    attr_names = _attribute_names(survey)
    total = len(survey.tasks)

    # Welcome
    console.print()
    intro = survey.introduction.strip()
    console.print(
        Panel(
            (f"{intro}\n\n" if intro else "")
            + f"This survey has {total} questions.\n\n"
            "Use [bold]arrow keys[/bold] to navigate and [bold]Enter[/bold] to select.",
            title="[bold]Welcome[/bold]",
            border_style="bright_blue",
            padding=(1, 2),
        )
    )

    selections: dict[int, int] = {}
    for number, task in enumerate(survey.tasks, start=1):
        answer = _ask_task(task, number, total, survey.question, attr_names)
        if answer == DONATE:
            response_id = service.submit_donation(token, _ask_donation())
            console.print("\n[bold green]Thank you! Your donation preference has been recorded.[/bold green]\n")
            return response_id
        selections[task.id] = answer

    response_id = service.submit_responses(token, selections)
    console.print(
        "\n[bold green]Thank you for completing the survey![/bold green]\n"
    )
    return response_id
