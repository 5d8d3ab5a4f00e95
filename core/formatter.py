"""
formatter.py -- Renders environment check reports and configuration summaries.
"""

import os
import sys
from typing import Any, Optional

from .checks import EnvReport

W = 48  # rule width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    Can be overridden by calling disable_color().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


# ---------------------------------------------------------------------------
# ANSI code helpers: return empty string when color is off
# ---------------------------------------------------------------------------


def _paint(code: str, text: str) -> str:
    if not _color_active():
        return text
    return f"{code}{text}\033[0m"


def _ok(text: str) -> str:
    return _paint("\033[92m", text)


def _bad(text: str) -> str:
    return _paint("\033[91m", text)


def _warn(text: str) -> str:
    return _paint("\033[93m", text)


def _heading(text: str) -> str:
    return _paint("\033[94m", text)


# ---------------------------------------------------------------------------
# Environment check report
# ---------------------------------------------------------------------------


def format_check_report(report: EnvReport) -> str:
    """Render an EnvReport the way `main.py check` prints it."""
    lines = [_heading("=== Checking Environment Variables ==="), ""]

    if report.database_source == "DATABASE_URL":
        lines.append(f"{_ok('✓')} DATABASE_URL is set")
    elif report.database_source == "parameters":
        lines.append(f"{_ok('✓')} All individual database parameters are set")
    else:
        lines.append(f"{_bad('✗')} No database configuration: set DATABASE_URL or all PG* parameters")
    lines.append("")

    lines.append(_heading("=== Environment Check Summary ==="))
    if report.ok:
        lines.append(_ok("✓ All required environment variables are properly set"))
    else:
        if report.missing:
            lines.append(_bad("✗ Some required environment variables are missing:"))
            lines.extend(f"  - {name}" for name in report.missing)
        for error in report.errors:
            lines.append(f"{_bad('✗')} {error}")

    if report.warnings:
        lines.append("")
        lines.append(_warn("Warnings:"))
        lines.extend(f"  - {warning}" for warning in report.warnings)

    if not report.ok:
        lines.append("")
        lines.append(_warn("To fix missing variables:"))
        lines.append("  1. Create a .env file in the project root")
        lines.append("  2. Add the missing variables with appropriate values")
        lines.append('  3. Run "python main.py template" to create a template')

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Configuration summary
# ---------------------------------------------------------------------------


def format_summary(summary: dict[str, Any], prefixed: list[str]) -> str:
    """Render ServiceSettings.summary() plus the service-prefixed names found."""
    lines = [_heading(f"--- Configuration Summary ({summary['service']}) ---")]
    lines.append(f"Environment: {summary['environment']}")
    for section in ("database", "server", "jwt"):
        lines.append(f"{section.title()}:")
        for key, value in summary[section].items():
            label = key.replace("_", " ").title()
            lines.append(f"  {label}: {value}")
    if prefixed:
        lines.append("Prefixed variables:")
        lines.extend(f"  - {name}" for name in prefixed)
    else:
        lines.append("Prefixed variables: none")
    lines.append("─" * W)
    return "\n".join(lines)
