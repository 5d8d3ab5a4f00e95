#!/usr/bin/env python3
"""
Campus Systems: environment tooling for the Token, Evaluation and Grading services.

Usage:
  python main.py check
  python main.py check --service grading --root /srv/app
  python main.py template
  python main.py template --output deploy/.env.template
  python main.py summary --service token
  python main.py serve --service grading

Exit codes (check):
  0  All required variables are set correctly
  1  One or more required variables are missing or invalid

Every command first merges the service's .env candidates into the
environment: <root>/.env, <root>/backend/.env, <root>/backend/<Service>/.env.
Variables already present in the process environment always win.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from core.checks import check_environment, render_env_template
from core.config import get_settings
from core.env import SERVICES, default_candidate_paths, load_sources, prefixed_keys, service_prefix
from core.formatter import disable_color, format_check_report, format_summary


def _load(service: str, root: Optional[str]) -> None:
    loaded = load_sources(default_candidate_paths(service, root))
    if loaded:
        for path in loaded:
            print(f"  Loaded {path}")
    else:
        print("  No .env files found, relying on system environment variables")
    print()


def cmd_check(args: argparse.Namespace) -> int:
    _load(args.service, args.root)
    report = check_environment(service_prefix(args.service))
    print(format_check_report(report))
    return 0 if report.ok else 1


def cmd_template(args: argparse.Namespace) -> int:
    path = Path(args.output).resolve()
    try:
        path.write_text(render_env_template(), encoding="utf-8")
    except OSError as e:
        print(f"  [!] Could not write '{path}': {e}")
        return 1
    print(f"  .env.template written to {path}")
    print()
    print("  1. Copy this file to .env")
    print("  2. Fill in the appropriate values for your environment")
    print('  3. Run "python main.py check" to verify your configuration')
    print()
    print("  [!] Never commit .env files to version control")
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    _load(args.service, args.root)
    try:
        settings = get_settings(args.service)
    except ValidationError as e:
        print(f"  [!] Configuration is invalid:\n{e}")
        return 1
    print(format_summary(settings.summary(), prefixed_keys(service_prefix(args.service))))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from api.main import build_settings, create_app

    settings = build_settings(args.service)
    uvicorn.run(create_app(settings), host=args.host, port=settings.port)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="campus-env",
        description="Check, template and summarize environment configuration for the campus services.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py check
  python main.py check --service token
  EVALUATION_PORT=4000 python main.py summary
  python main.py template --output .env.template
        """,
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI color codes in terminal output",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def add_service_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--service",
            choices=sorted(SERVICES),
            default="evaluation",
            help="Service whose prefix and .env locations to use (default: evaluation)",
        )
        p.add_argument(
            "--root",
            metavar="DIR",
            default=None,
            help="Project root to search for .env files (default: current directory)",
        )

    p_check = sub.add_parser("check", help="Validate required variables; exit 1 if any are missing")
    add_service_args(p_check)
    p_check.set_defaults(func=cmd_check)

    p_template = sub.add_parser("template", help="Write a .env.template with every known variable")
    p_template.add_argument(
        "--output",
        metavar="PATH",
        default=".env.template",
        help="Where to write the template (default: ./.env.template)",
    )
    p_template.set_defaults(func=cmd_template)

    p_summary = sub.add_parser("summary", help="Print the resolved configuration with secrets redacted")
    add_service_args(p_summary)
    p_summary.set_defaults(func=cmd_summary)

    p_serve = sub.add_parser("serve", help="Run the service's API on its configured PORT")
    p_serve.add_argument(
        "--service",
        choices=sorted(SERVICES),
        default="evaluation",
        help="Service to run (default: evaluation)",
    )
    p_serve.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0)")  # nosec B104
    p_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    if args.no_color:
        disable_color()

    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
