"""
Terminal report for a study's conjoint analysis.

Runs the analysis through the study service and renders importances,
utilities, recommended plans and sample-size guidance with rich.  With
``as_json`` the raw result bundle is printed instead.
"""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cbc.analysis import AnalysisResult, EmptyAnalysis
from cbc.errors import ConjointError
from cbc.models import Goal, PricingStrategy
from cbc.plans import format_price
from cbc.service import StudyService

console = Console()


def _display_importances(result: AnalysisResult) -> None:
    console.print()
    console.print("[bold underline]Attribute Importance[/bold underline]")
    console.print()

    imp = result.importances
    max_bar = 40
    max_imp = max(imp.values(), default=1.0)
    max_name = max((len(k) for k in imp), default=10)

    for attr in sorted(imp, key=lambda a: -imp[a]):
        bar_len = int((imp[attr] / max_imp) * max_bar) if max_imp > 0 else 0
        bar = "█" * bar_len
        console.print(f"  {attr.ljust(max_name)}  [cyan]{bar}[/cyan] {imp[attr]:5.1f}%")


def _display_utilities(result: AnalysisResult) -> None:
    console.print()
    console.print("[bold underline]Level Utilities (zero-centered per attribute)[/bold underline]")
    console.print()

    attrs_seen: list[str] = []
    entries_by_attr: dict[str, list[tuple[str, float]]] = {}
    for key, util in result.utilities.items():
        attr, level = key.split(":", 1)
        if attr not in entries_by_attr:
            attrs_seen.append(attr)
            entries_by_attr[attr] = []
        entries_by_attr[attr].append((level, util))

    for attr in attrs_seen:
        table = Table(
            title=attr, box=box.SIMPLE, show_header=True,
            header_style="bold", padding=(0, 1),
        )
        table.add_column("Level", min_width=16)
        table.add_column("Utility", justify="right", min_width=10)

        for lv, util in sorted(entries_by_attr[attr], key=lambda x: -x[1]):
            style = "green" if util > 0 else ("red" if util < 0 else "")
            table.add_row(lv, f"{util:+.3f}", style=style)
        console.print(table)


def _display_plans(result: AnalysisResult) -> None:
    if not result.plans:
        return
    console.print()
    console.print("[bold underline]Recommended Plans[/bold underline]")
    console.print()

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold green")
    table.add_column("Plan", min_width=10)
    table.add_column("Price", justify="right")
    table.add_column("WTP", justify="right")
    table.add_column("Features", min_width=30)
    for plan in result.plans:
        features = "\n".join(f"{attr}: {lv}" for attr, lv in plan.features.items())
        table.add_row(
            plan.name,
            format_price(plan.suggested_price, plan.currency),
            format_price(plan.willingness_to_pay, plan.currency),
            features,
        )
    console.print(table)

    if result.price_mismatch_warning:
        console.print(Panel(result.price_mismatch_warning, border_style="yellow", title="Note"))


def _display_sample_size(result: AnalysisResult) -> None:
    ss = result.sample_size
    console.print()
    console.print("[bold underline]Sample Size Guidance (Orme CBC rule, approximate)[/bold underline]")
    console.print()

    table = Table(box=box.SIMPLE, show_header=True, header_style="bold")
    table.add_column("Target Confidence")
    table.add_column("Approx. Required Responses", justify="right")
    table.add_row("~70%", str(ss.n70))
    table.add_row("~80% (baseline)", str(ss.n80))
    table.add_row("~90%", str(ss.n90))
    console.print(table)
    console.print(
        f"  [dim]{ss.total_levels} levels, {ss.tasks_per_respondent} tasks per respondent, "
        f"{ss.alternatives_per_task} alternatives per task[/dim]"
    )


def display_result(result: AnalysisResult) -> None:
    """Render an analysis result to the terminal."""
    console.print()
    lines = [
        "[bold]Conjoint Analysis Results[/bold]",
        f"Respondents: [cyan]{result.total_responses}[/cyan]   "
        f'"None" selections excluded: [cyan]{result.none_selections}[/cyan]',
    ]
    if result.donation_data is not None:
        lines.append(
            f"Donations: [cyan]{result.donation_data.count}[/cyan] "
            f"(average {result.donation_data.average:.2f} {result.currency})"
        )
    console.print(Panel("\n".join(lines), border_style="bright_blue"))

    _display_importances(result)
    _display_utilities(result)
    _display_plans(result)
    _display_sample_size(result)

    if result.analysis_tab_name:
        console.print(f"\n[green]Report saved → {result.analysis_tab_name}[/green]")


def run_analyze(
    service: StudyService,
    project_key: str,
    *,
    num_plans: int | None = None,
    pricing_strategy: PricingStrategy | str = PricingStrategy.SUGGESTED,
    goal: Goal | str = Goal.REVENUE,
    as_json: bool = False,
) -> int:
    """Run the analysis and print it; returns a process exit code."""
    try:
        with console.status("[bold cyan]Running analysis...[/bold cyan]"):
            result = service.run_analysis(
                project_key,
                num_plans=num_plans,
                pricing_strategy=pricing_strategy,
                goal=goal,
            )
    except ConjointError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if as_json:
        console.print_json(data=result.to_dict())
        return 0

    if isinstance(result, EmptyAnalysis):
        console.print(f"[yellow]{result.message}[/yellow]")
        return 0

    display_result(result)
    console.print("\n[bold green]Analysis complete.[/bold green]\n")
    return 0
