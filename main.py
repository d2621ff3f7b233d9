"""
Entry point for the CBC pricing study CLI and JSON API.

Usage:
    python main.py init --config configs/demo_subscription.yaml   # Create a study
    python main.py link --project-key KEY --name "Wave 1"         # New survey link
    python main.py respond --token TOKEN                          # Take a survey
    python main.py analyze --project-key KEY                      # Analysis report
    python main.py analyze --project-key KEY --plans 4 --goal purchases --json
    python main.py serve --port 9000                              # JSON API
    python main.py --data-dir ./my_data --log-level DEBUG ...     # Global options
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.logging import RichHandler

DEFAULT_SETTINGS = Path(__file__).parent / "configs" / "settings.yaml"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_service(settings):
    from cbc.service import StudyService
    from cbc.storage import Workbooks
    from cbc.tokens import TokenRegistry

    data_dir = settings.data_dir
    return StudyService(
        Workbooks(data_dir / "workbooks"),
        TokenRegistry(data_dir / "tokens.json"),
        settings.study,
    )


def _run_init(service, config_path: Path) -> int:
    from cbc.models import StudyFile

    if not config_path.exists():
        print(f"Error: config file not found: {config_path}", file=sys.stderr)
        return 1
    try:
        study = StudyFile.from_yaml(config_path)
    except ValidationError as exc:
        print(f"Error: invalid study file {config_path}:\n{exc}", file=sys.stderr)
        return 1

    key = service.init_project(study.sheet_id or study.name)
    service.save_attributes(key, study.attributes)
    service.save_survey_config(key, study.survey_config())
    print(f"Study '{study.name}' initialized.")
    print(f"Project key: {key}")
    return 0


def _run_link(service, project_key: str, name: str) -> int:
    link = service.create_survey(project_key, name)
    print(f"Survey '{link.name}' created ({link.survey_id}).")
    print(f"Survey token: {link.token}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="CBC: Choice-Based Conjoint pricing study",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=DEFAULT_SETTINGS,
        help=f"Path to YAML app settings (default: {DEFAULT_SETTINGS})",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding workbooks and tokens (default: ./data)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from settings, INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # ── Subcommand: init ────────────────────────────────────────────
    init_parser = subparsers.add_parser(
        "init",
        help="Create a study workbook from a YAML study file",
    )
    init_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to YAML study file",
    )

    # ── Subcommand: link ────────────────────────────────────────────
    link_parser = subparsers.add_parser(
        "link",
        help="Generate a survey link for respondents",
    )
    link_parser.add_argument("--project-key", required=True)
    link_parser.add_argument("--name", default="", help="Survey name")

    # ── Subcommand: respond ─────────────────────────────────────────
    respond_parser = subparsers.add_parser(
        "respond",
        help="Take a survey in the terminal",
    )
    respond_parser.add_argument("--token", required=True, help="Survey token")

    # ── Subcommand: analyze ─────────────────────────────────────────
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Run the conjoint analysis for a study",
    )
    analyze_parser.add_argument("--project-key", required=True)
    analyze_parser.add_argument(
        "--plans",
        type=int,
        default=None,
        help="Number of plans to recommend, 1-10 (default: from settings, 3)",
    )
    analyze_parser.add_argument(
        "--strategy",
        choices=["submitted", "suggested"],
        default="suggested",
        help="Price plans from the submitted price levels or suggest prices (default: suggested)",
    )
    analyze_parser.add_argument(
        "--goal",
        choices=["revenue", "purchases"],
        default="revenue",
        help="Optimization goal for plan pricing (default: revenue)",
    )
    analyze_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw result bundle as JSON",
    )

    # ── Subcommand: serve (JSON API) ────────────────────────────────
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the JSON API",
    )
    serve_parser.add_argument("--host", default=None, help="Host to bind to (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: 8000)")

    args = parser.parse_args()

    from cbc.models import AppSettings

    settings = AppSettings.from_yaml(args.settings) if args.settings.exists() else AppSettings()
    if args.data_dir is not None:
        settings.data_dir = args.data_dir
    _configure_logging(args.log_level or settings.log_level)

    from cbc.errors import ConjointError

    service = _build_service(settings)

    try:
        if args.command == "init":
            code = _run_init(service, args.config)
        elif args.command == "link":
            code = _run_link(service, args.project_key, args.name)
        elif args.command == "respond":
            from cli.survey import run_survey
            code = 0 if run_survey(service, args.token) else 1
        elif args.command == "analyze":
            from cli.analyze import run_analyze
            code = run_analyze(
                service,
                args.project_key,
                num_plans=args.plans,
                pricing_strategy=args.strategy,
                goal=args.goal,
                as_json=args.json,
            )
        else:
            import uvicorn
            from web.app import create_app

            host = args.host or settings.host
            port = args.port or settings.port
            app = create_app(service)
            print(f"Starting CBC study API at http://{host}:{port}")
            uvicorn.run(app, host=host, port=port)
            code = 0
    except ConjointError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
